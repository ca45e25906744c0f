"""
Injury & weather collector.
"""

from .collector import InjuryWeatherCollector

__all__ = ["InjuryWeatherCollector"]
