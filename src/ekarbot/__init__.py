"""
EkarBot back-office authentication core.
"""

__version__ = "0.1.0"
