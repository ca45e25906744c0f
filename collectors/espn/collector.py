"""
ESPN league collector - scoreboards and athletes for each configured league.
"""

import logging
from functools import partial
from typing import List, Optional, Sequence

from core.collector import BaseCollector, SubFetch
from core.exceptions import FetchError
from core.infra.http import HttpClient
from core.models import DataType, NormalizedRecord, RawItem

from .parser import parse_athlete, parse_game


logger = logging.getLogger(__name__)

DEFAULT_LEAGUES = ("football/nfl", "basketball/nba", "baseball/mlb", "hockey/nhl")


class EspnCollector(BaseCollector):
    """Polls the ESPN site API for live games and player info."""

    name = "espn"
    display_name = "ESPN Data Aggregator"
    default_interval_seconds = 30.0

    BASE_URL = "https://site.api.espn.com/apis/site/v2/sports"

    def __init__(
        self,
        *,
        http: HttpClient,
        leagues: Optional[Sequence[str]] = None,
        player_limit: int = 50,
        base_url: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.http = http
        self.leagues = list(leagues or DEFAULT_LEAGUES)
        self.player_limit = player_limit
        self.base_url = (base_url or self.BASE_URL).rstrip("/")

    def sub_fetches(self) -> List[SubFetch]:
        return [SubFetch(league, partial(self.fetch_league, league)) for league in self.leagues]

    async def fetch_league(self, league: str) -> List[RawItem]:
        """Scoreboard events plus the league's athlete list."""
        scoreboard = await self.http.get_json(f"{self.base_url}/{league}/scoreboard")
        events = (scoreboard or {}).get("events") or []
        items = [RawItem(source=self.name, kind="game", payload={"league": league, "event": e}) for e in events]

        # Athletes are best effort; the scoreboard alone makes a good fetch
        try:
            athletes = await self.http.get_json(
                f"{self.base_url}/{league}/athletes", params={"limit": self.player_limit}
            )
        except FetchError as e:
            logger.warning(f"{league}: athlete list unavailable: {e}")
            athletes = {}

        entries = ((athletes or {}).get("items") or [])[: self.player_limit]
        items.extend(
            RawItem(source=self.name, kind="athlete", payload={"league": league, "athlete": a})
            for a in entries
        )
        logger.debug(f"{league}: {len(events)} games, {len(entries)} athletes")
        return items

    def normalize(self, raw: RawItem) -> List[NormalizedRecord]:
        league = raw.payload["league"]
        if raw.kind == "game":
            game = parse_game(raw.payload["event"], league)
            return [
                NormalizedRecord(
                    source_id=f"espn_game_{game['game_id']}",
                    data_type=DataType.GAME_DATA,
                    source="ESPN",
                    payload=game,
                    observed_at=raw.fetched_at,
                )
            ]
        if raw.kind == "athlete":
            player = parse_athlete(raw.payload["athlete"], league)
            return [
                NormalizedRecord(
                    source_id=f"espn_{player['player_id']}",
                    data_type=DataType.PLAYER_STATS,
                    source="ESPN",
                    payload=player,
                    observed_at=raw.fetched_at,
                )
            ]
        logger.debug(f"No ESPN handler for kind: {raw.kind}")
        return []
