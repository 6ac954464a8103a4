"""
mongochain: MongoDB migration chains and index reconciliation.
"""

__version__ = "1.0.0"
