"""
ESPN collector - live games and player info from the ESPN site API.
"""

from .collector import EspnCollector
from .parser import is_upcoming, parse_athlete, parse_game

__all__ = ["EspnCollector", "parse_game", "parse_athlete", "is_upcoming"]
