"""
Fluid Budget - Source Package

A rolling ("fluid") daily budget engine. Each day the user gets the
daily base plus an even share of whatever was saved or overspent earlier
in the weekly cycle.

DESIGN PRINCIPLES:
1. Calculations are pure and rounded to cents
2. Exactly one active cycle per account, created lazily on access
3. Unique constraints are the only concurrency control
4. Not-found is a normal state, not an error
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Fluid Budget Team"
