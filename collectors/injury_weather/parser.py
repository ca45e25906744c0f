"""
Injury and weather parsers.

Injury entries come from the ESPN injuries feed, weather from the OpenWeather
current conditions endpoint (imperial units).
"""

import logging
import re
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Tuple

from core.exceptions import NormalizationError


logger = logging.getLogger(__name__)

MM_PER_INCH = 25.4

# Extreme weather thresholds
MAX_WIND_MPH = 15
MAX_PRECIPITATION_IN = 0.3
MIN_TEMPERATURE_F = 32

_STATUS_MAP = {
    "out": "out",
    "injured reserve": "ir",
    "ir": "ir",
    "questionable": "questionable",
    "doubtful": "doubtful",
    "day-to-day": "day-to-day",
    "day to day": "day-to-day",
    "suspension": "out",
}

_COMPASS = ["N", "NE", "E", "SE", "S", "SW", "W", "NW"]


def normalize_status(value: Any) -> str:
    text = str(value or "").strip().lower()
    return _STATUS_MAP.get(text, text or "unknown")


def _slug(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", value.lower()).strip("_") or "unknown"


def injury_type(entry: Dict[str, Any]) -> str:
    details = entry.get("details") or {}
    return _slug(str(details.get("type") or (entry.get("type") or {}).get("name") or "unknown"))


def injury_confidence(entry: Dict[str, Any]) -> float:
    """How much to trust a feed entry: detailed reports beat bare status lines."""
    details = entry.get("details") or {}
    if details.get("returnDate") or details.get("detail"):
        return 0.95
    if entry.get("longComment") or entry.get("shortComment"):
        return 0.85
    return 0.75


def flatten_injury_feed(feed: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Team-grouped feed -> one entry per report, each carrying its team."""
    entries = []
    for team in (feed or {}).get("injuries") or []:
        team_name = team.get("displayName")
        for entry in team.get("injuries") or []:
            entries.append({**entry, "_team": team_name})
    return entries


def dedupe_injuries(entries: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Keep the most confident report per (player, injury type)."""
    best: Dict[Tuple[str, str], Dict[str, Any]] = {}
    passthrough = []
    for entry in entries:
        player_id = (entry.get("athlete") or {}).get("id")
        if not player_id:
            passthrough.append(entry)
            continue
        key = (str(player_id), injury_type(entry))
        existing = best.get(key)
        if existing is None or injury_confidence(entry) > injury_confidence(existing):
            best[key] = entry
    return list(best.values()) + passthrough


def parse_injury(entry: Dict[str, Any], league: str) -> Dict[str, Any]:
    athlete = entry.get("athlete") or {}
    player_id = athlete.get("id")
    if not player_id:
        raise NormalizationError(f"{league} injury entry without athlete id")

    details = entry.get("details") or {}
    team = (athlete.get("team") or {}).get("abbreviation") or entry.get("_team") or "UNK"
    return {
        "player_id": str(player_id),
        "player_name": athlete.get("displayName") or athlete.get("fullName"),
        "team": team,
        "position": (athlete.get("position") or {}).get("abbreviation", "N/A"),
        "league": league,
        "injury_type": injury_type(entry),
        "body_part": details.get("location") or details.get("type"),
        "status": normalize_status(entry.get("status")),
        "description": entry.get("shortComment") or details.get("detail") or "",
        "reported_date": entry.get("date"),
        "estimated_return": details.get("returnDate"),
        "source": "ESPN",
        "confidence": injury_confidence(entry),
    }


def parse_weather(game: Dict[str, Any], conditions: Dict[str, Any]) -> Dict[str, Any]:
    main = conditions.get("main")
    if not main:
        raise NormalizationError(f"weather for game {game.get('game_id')} has no readings")

    wind = conditions.get("wind") or {}
    rain_mm = (conditions.get("rain") or {}).get("1h", 0) + (conditions.get("snow") or {}).get("1h", 0)
    summary = (conditions.get("weather") or [{}])[0]
    degrees = wind.get("deg")
    venue = game.get("venue") or {}

    return {
        "game_id": game.get("game_id"),
        "venue": venue.get("name") or "Unknown Stadium",
        "city": venue.get("city"),
        "game_time": game.get("start_time"),
        "temperature": main.get("temp"),
        "feels_like": main.get("feels_like"),
        "humidity": main.get("humidity"),
        "pressure": main.get("pressure"),
        "wind_speed": wind.get("speed", 0),
        "wind_direction": _COMPASS[int((degrees % 360) / 45 + 0.5) % 8] if degrees is not None else None,
        "precipitation": round(rain_mm / MM_PER_INCH, 3),
        "conditions": str(summary.get("main", "clear")).lower(),
        "visibility_miles": round(conditions.get("visibility", 0) / 1609.34, 1),
    }


def is_extreme_weather(weather: Dict[str, Any]) -> bool:
    temperature = weather.get("temperature")
    return (
        (weather.get("wind_speed") or 0) > MAX_WIND_MPH
        or (weather.get("precipitation") or 0) > MAX_PRECIPITATION_IN
        or (temperature is not None and temperature < MIN_TEMPERATURE_F)
    )


def build_team_health(injuries: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """One health report per team from its current injury reports."""
    by_team: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
    for injury in injuries:
        by_team[injury["team"]].append(injury)

    reports = []
    for team, team_injuries in sorted(by_team.items()):
        injured = sum(1 for i in team_injuries if i["status"] in ("out", "ir"))
        questionable = sum(1 for i in team_injuries if i["status"] == "questionable")
        impact = "high" if injured > 3 else "medium" if injured > 1 else "low"
        reports.append({
            "team_id": team,
            "team_name": team,
            "injured_players": injured,
            "questionable_players": questionable,
            "health_score": max(0, 100 - injured * 15 - questionable * 5),
            "key_players_status": [
                {
                    "player": i["player_name"],
                    "position": i.get("position", "N/A"),
                    "status": i["status"],
                    "impact": impact,
                }
                for i in team_injuries
                if i["confidence"] > 0.8
            ],
        })
    return reports
