"""
Grid analytics: generation backfill and short-horizon pool price forecasting.
"""

__version__ = "0.1.0"
