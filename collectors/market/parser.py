"""
Market parsers - betting lines and player props from The Odds API, DFS
pricing from DraftKings draftables, and trend detection between cycles.
"""

import logging
import re
from statistics import mean, median
from typing import Any, Dict, Iterable, List, Optional

from core.exceptions import NormalizationError


logger = logging.getLogger(__name__)

LEVERAGE_ALERT_THRESHOLD = 0.5
MAX_OPTIMAL_EXPOSURE = 40.0


def slug(value: Any) -> str:
    return re.sub(r"[^a-z0-9]+", "_", str(value).lower()).strip("_") or "unknown"


def _avg(values: List[float]) -> Optional[float]:
    return round(mean(values), 2) if values else None


def _book_odds(bookmaker: Dict[str, Any], home: str, away: str) -> Dict[str, Any]:
    odds: Dict[str, Any] = {}
    for market in bookmaker.get("markets") or []:
        outcomes = {o.get("name"): o for o in market.get("outcomes") or []}
        key = market.get("key")
        if key == "spreads" and home in outcomes:
            odds["spread"] = {
                "line": outcomes[home].get("point"),
                "juice": outcomes[home].get("price"),
            }
        elif key == "totals" and "Over" in outcomes:
            odds["total"] = {
                "line": outcomes["Over"].get("point"),
                "over_juice": outcomes["Over"].get("price"),
                "under_juice": (outcomes.get("Under") or {}).get("price"),
            }
        elif key == "h2h":
            odds["moneyline"] = {
                "home": (outcomes.get(home) or {}).get("price"),
                "away": (outcomes.get(away) or {}).get("price"),
            }
    return odds


def parse_betting_line(event: Dict[str, Any]) -> Dict[str, Any]:
    """One odds event -> BETTING_LINE payload with a mean consensus across books."""
    game_id = event.get("id")
    home, away = event.get("home_team"), event.get("away_team")
    if not game_id or not home or not away:
        raise NormalizationError("odds event without id or teams")

    books = {
        bookmaker.get("key", "unknown"): _book_odds(bookmaker, home, away)
        for bookmaker in event.get("bookmakers") or []
    }

    def collect(market: str, field: str) -> List[float]:
        values = []
        for odds in books.values():
            value = (odds.get(market) or {}).get(field)
            if value is not None:
                values.append(float(value))
        return values

    return {
        "game_id": str(game_id),
        "sport": event.get("sport_key"),
        "home_team": home,
        "away_team": away,
        "commence_time": event.get("commence_time"),
        "sportsbooks": books,
        "book_count": len(books),
        "consensus": {
            "spread": _avg(collect("spread", "line")),
            "total": _avg(collect("total", "line")),
            "home_ml": _avg(collect("moneyline", "home")),
            "away_ml": _avg(collect("moneyline", "away")),
        },
    }


def group_props(event: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Regroup event odds by (player, market) across bookmakers."""
    grouped: Dict[tuple, Dict[str, Any]] = {}
    for bookmaker in event.get("bookmakers") or []:
        book = bookmaker.get("key", "unknown")
        for market in bookmaker.get("markets") or []:
            for outcome in market.get("outcomes") or []:
                player = outcome.get("description")
                if not player:
                    continue
                key = (player, market.get("key"))
                group = grouped.setdefault(key, {
                    "event_id": event.get("id"),
                    "sport": event.get("sport_key"),
                    "player": player,
                    "market": market.get("key"),
                    "quotes": [],
                })
                group["quotes"].append({
                    "book": book,
                    "side": outcome.get("name"),
                    "point": outcome.get("point"),
                    "price": outcome.get("price"),
                })
    return list(grouped.values())


def parse_player_prop(group: Dict[str, Any]) -> Dict[str, Any]:
    """Median line across books, best price on each side."""
    quotes = group.get("quotes") or []
    points = [float(q["point"]) for q in quotes if q.get("side") == "Over" and q.get("point") is not None]
    if not points:
        raise NormalizationError(f"prop {group.get('player')} {group.get('market')} has no line")

    def best(side: str) -> Optional[Dict[str, Any]]:
        priced = [q for q in quotes if q.get("side") == side and q.get("price") is not None]
        if not priced:
            return None
        top = max(priced, key=lambda q: q["price"])
        return {"book": top["book"], "price": top["price"], "point": top.get("point")}

    return {
        "player_id": slug(group["player"]),
        "player_name": group["player"],
        "prop_type": group["market"],
        "event_id": group.get("event_id"),
        "sport": group.get("sport"),
        "line": round(median(points), 2),
        "best_over": best("Over"),
        "best_under": best("Under"),
        "book_count": len({q["book"] for q in quotes}),
    }


def _stat(draftable: Dict[str, Any], stat_id: int) -> Optional[float]:
    for attribute in draftable.get("draftStatAttributes") or []:
        if attribute.get("id") == stat_id:
            try:
                return float(attribute.get("value"))
            except (TypeError, ValueError):
                return None
    return None


def unique_draftables(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Draftables list one player per roster slot; keep the first per player."""
    seen = set()
    unique = []
    for draftable in (payload or {}).get("draftables") or []:
        player_id = draftable.get("playerId")
        if player_id in seen:
            continue
        seen.add(player_id)
        unique.append(draftable)
    return unique


def parse_dfs_pricing(
    draftable: Dict[str, Any],
    draft_group: Any,
    projection_stat_id: int = 90,
    ownership: Optional[Dict[str, float]] = None,
) -> Dict[str, Any]:
    player_id = draftable.get("playerId")
    salary = draftable.get("salary")
    if not player_id or not salary:
        raise NormalizationError("draftable without playerId or salary")

    name = draftable.get("displayName")
    projection = _stat(draftable, projection_stat_id)
    value = round(projection / salary * 1000, 3) if projection is not None else None

    pricing = {
        "player_id": str(player_id),
        "player_name": name,
        "position": draftable.get("position"),
        "team": draftable.get("teamAbbreviation"),
        "status": draftable.get("status"),
        "draft_group": str(draft_group),
        "platform": "draftkings",
        "salary": salary,
        "projection": projection,
        "value": value,
        "projected_ownership": None,
        "optimal_exposure": None,
        "leverage_score": None,
    }

    owned = (ownership or {}).get(name)
    if owned is None:
        owned = draftable.get("projectedOwnership")
    if owned and value is not None:
        optimal = min(MAX_OPTIMAL_EXPOSURE, value * 4)
        pricing["projected_ownership"] = owned
        pricing["optimal_exposure"] = round(optimal, 2)
        pricing["leverage_score"] = round((optimal - owned) / owned, 3)
    return pricing


def detect_trend(
    entity_type: str,
    entity_id: str,
    metric: str,
    previous: Optional[float],
    current: Optional[float],
) -> Optional[Dict[str, Any]]:
    """A MARKET_TREND payload when ``current`` moved away from ``previous``."""
    if previous is None or current is None or previous == current:
        return None
    magnitude = round(abs(current - previous) / abs(previous) * 100, 2) if previous else None
    return {
        "type": entity_type,
        "entity_id": entity_id,
        "metric": metric,
        "direction": "up" if current > previous else "down",
        "magnitude": magnitude,
        "previous": previous,
        "current": current,
    }


def trends_between(
    previous: Dict[str, Dict[str, float]],
    current: Iterable[Dict[str, Any]],
    entity_type: str,
    id_field: str,
    metrics: Dict[str, str],
) -> List[Dict[str, Any]]:
    """Compare each payload's metrics to the remembered ones, then remember them.

    ``metrics`` maps trend metric name -> dotted path into the payload.
    """
    trends = []
    for payload in current:
        entity_id = payload[id_field]
        seen = previous.setdefault(entity_id, {})
        for metric, path in metrics.items():
            value: Any = payload
            for part in path.split("."):
                value = (value or {}).get(part)
            trend = detect_trend(entity_type, entity_id, metric, seen.get(metric), value)
            if trend:
                trends.append(trend)
            if value is not None:
                seen[metric] = value
    return trends


def forget_missing(
    previous: Dict[str, Dict[str, float]],
    groups: Dict[str, Any],
    current: Iterable[Dict[str, Any]],
    id_field: str,
    group_field: str,
) -> List[str]:
    """Drop remembered entities that left a group listed this cycle.

    ``groups`` maps entity id -> group (sport, draft group) and is kept current.
    Groups missing from ``current`` entirely, e.g. after a failed fetch, keep
    their history.
    """
    listed = {payload[id_field]: payload.get(group_field) for payload in current}
    seen_groups = set(listed.values())
    dropped = [e for e, group in groups.items() if group in seen_groups and e not in listed]
    for entity_id in dropped:
        previous.pop(entity_id, None)
        del groups[entity_id]
    groups.update(listed)
    return dropped
