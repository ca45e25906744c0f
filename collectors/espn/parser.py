"""
ESPN parsers - turn scoreboard events and athlete entries into record payloads.
"""

import logging
from typing import Any, Dict, List, Optional

from core.exceptions import NormalizationError


logger = logging.getLogger(__name__)

UPCOMING_STATES = {"pre"}


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _side(competitors: List[Dict[str, Any]], home_away: str) -> Dict[str, Any]:
    for competitor in competitors:
        if competitor.get("homeAway") == home_away:
            team = competitor.get("team") or {}
            return {
                "team": team.get("abbreviation"),
                "name": team.get("displayName"),
                "score": _to_int(competitor.get("score")),
            }
    return {"team": None, "name": None, "score": 0}


def _weather(event: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    weather = event.get("weather")
    if not weather:
        return None
    return {
        "temperature": weather.get("temperature", 72),
        "wind": weather.get("windSpeed", 0),
        "precipitation": weather.get("precipitation", 0),
        "conditions": weather.get("conditions") or weather.get("displayValue") or "clear",
    }


def parse_game(event: Dict[str, Any], league: str) -> Dict[str, Any]:
    """Parse one scoreboard event into a GAME_DATA payload."""
    game_id = event.get("id")
    competitions = event.get("competitions") or []
    if not game_id or not competitions:
        raise NormalizationError(f"{league} event without id or competitions")

    competition = competitions[0]
    competitors = competition.get("competitors") or []
    status = event.get("status") or {}
    status_type = status.get("type") or {}
    venue = competition.get("venue") or {}

    game = {
        "game_id": str(game_id),
        "league": league,
        "name": event.get("name"),
        "start_time": event.get("date"),
        "status": status_type.get("name", "STATUS_UNKNOWN"),
        "state": status_type.get("state"),
        "period": status.get("period") or 0,
        "clock": status.get("displayClock") or "",
        "home": _side(competitors, "home"),
        "away": _side(competitors, "away"),
        "venue": {
            "name": venue.get("fullName"),
            "city": (venue.get("address") or {}).get("city"),
            "indoor": venue.get("indoor"),
        },
    }

    weather = _weather(event)
    if weather:
        game["weather"] = weather
    return game


def parse_athlete(entry: Dict[str, Any], league: str) -> Dict[str, Any]:
    """Parse one athlete entry into a PLAYER_STATS payload.

    Entries come either bare or wrapped in an ``athlete`` key.
    """
    athlete = entry.get("athlete", entry)
    player_id = athlete.get("id")
    if not player_id:
        raise NormalizationError(f"{league} athlete without id")

    player = {
        "player_id": str(player_id),
        "league": league,
        "name": athlete.get("fullName") or athlete.get("displayName"),
        "position": (athlete.get("position") or {}).get("abbreviation", "N/A"),
        "team": (athlete.get("team") or {}).get("abbreviation", "FA"),
        "injury_status": "healthy",
    }

    injuries = athlete.get("injuries") or []
    if injuries:
        injury = injuries[0]
        player["injury_status"] = str(injury.get("status", "unknown")).lower()
        player["injury"] = {
            "status": injury.get("status"),
            "description": (injury.get("details") or {}).get("detail", "Unknown"),
            "date": injury.get("date"),
        }
    return player


def is_upcoming(game: Dict[str, Any]) -> bool:
    """True for games that have not kicked off yet."""
    if game.get("state") in UPCOMING_STATES:
        return True
    return "SCHEDULED" in str(game.get("status", "")).upper()
