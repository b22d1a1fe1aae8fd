"""
Dropshipper payout calculation and settlement scheduling.
"""
__version__ = '0.1.0'
