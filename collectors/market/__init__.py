"""
Market collector - odds, props and DFS pricing.
"""

from .collector import MarketCollector

__all__ = ["MarketCollector"]
