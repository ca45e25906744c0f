"""
Market collector - betting lines, player props and DFS pricing, with market
trends derived from cycle-over-cycle changes.
"""

import asyncio
import logging
from functools import partial
from typing import Any, Dict, List, Optional, Sequence, Set

from core.collector import BaseCollector, SubFetch
from core.infra.http import HttpClient
from core.models import DataType, NormalizedRecord, RawItem, Severity

from .parser import (
    LEVERAGE_ALERT_THRESHOLD,
    forget_missing,
    group_props,
    parse_betting_line,
    parse_dfs_pricing,
    parse_player_prop,
    trends_between,
    unique_draftables,
)


logger = logging.getLogger(__name__)

DEFAULT_SPORTS = (
    "americanfootball_nfl",
    "basketball_nba",
    "baseball_mlb",
    "icehockey_nhl",
)
DEFAULT_PROP_MARKETS = ("player_pass_yds", "player_rush_yds", "player_reception_yds")

# trend metric -> path into the payload
GAME_TREND_METRICS = {
    "spread": "consensus.spread",
    "total": "consensus.total",
    "home_ml": "consensus.home_ml",
    "away_ml": "consensus.away_ml",
}
PLAYER_TREND_METRICS = {"salary": "salary"}


class MarketCollector(BaseCollector):
    """Polls sportsbook odds and DFS salaries."""

    name = "market"
    display_name = "Market Data Collector"
    default_interval_seconds = 300.0

    ODDS_URL = "https://api.the-odds-api.com/v4"
    DFS_URL = "https://api.draftkings.com/draftgroups/v1/draftgroups/{group}/draftables"

    def __init__(
        self,
        *,
        http: HttpClient,
        odds_api_key: Optional[str] = None,
        sports: Optional[Sequence[str]] = None,
        prop_markets: Optional[Sequence[str]] = None,
        max_prop_events: int = 3,
        draft_groups: Optional[Sequence[Any]] = None,
        projection_stat_id: int = 90,
        ownership_projections: Optional[Dict[str, float]] = None,
        odds_url: Optional[str] = None,
        dfs_url: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.http = http
        self.odds_api_key = odds_api_key
        self.sports = list(sports or DEFAULT_SPORTS)
        self.prop_markets = list(DEFAULT_PROP_MARKETS if prop_markets is None else prop_markets)
        self.max_prop_events = max_prop_events
        self.draft_groups = list(draft_groups or [])
        self.projection_stat_id = projection_stat_id
        self.ownership_projections = dict(ownership_projections or {})
        self.odds_url = (odds_url or self.ODDS_URL).rstrip("/")
        self.dfs_url = dfs_url or self.DFS_URL

        self._last_lines: Dict[str, Dict[str, float]] = {}
        self._last_salaries: Dict[str, Dict[str, float]] = {}
        # entity id -> sport or draft group it was last listed under
        self._line_sports: Dict[str, Any] = {}
        self._salary_groups: Dict[str, Any] = {}
        self._leverage_alerted: Set[str] = set()

    async def setup(self) -> None:
        if not self.odds_api_key and not self.draft_groups:
            logger.warning("Market collector has no odds API key and no draft groups configured")

    def sub_fetches(self) -> List[SubFetch]:
        fetches = []
        if self.odds_api_key:
            fetches.extend(
                SubFetch(f"odds {sport}", partial(self.fetch_odds, sport)) for sport in self.sports
            )
        fetches.extend(
            SubFetch(f"dfs {group}", partial(self.fetch_dfs, group)) for group in self.draft_groups
        )
        return fetches

    async def fetch_odds(self, sport: str) -> List[RawItem]:
        events = await self.http.get_json(
            f"{self.odds_url}/sports/{sport}/odds",
            params={
                "apiKey": self.odds_api_key,
                "regions": "us",
                "markets": "h2h,spreads,totals",
                "oddsFormat": "american",
            },
        )
        events = events or []
        items = [RawItem(source=self.name, kind="odds", payload=event) for event in events]

        if self.prop_markets and self.max_prop_events > 0:
            targets = [e for e in events if e.get("id")][: self.max_prop_events]
            results = await asyncio.gather(
                *(self._fetch_event_props(sport, e["id"]) for e in targets),
                return_exceptions=True,
            )
            for event, result in zip(targets, results):
                if isinstance(result, Exception):
                    logger.warning(f"Props for {sport} event {event['id']} unavailable: {result}")
                    continue
                items.extend(
                    RawItem(source=self.name, kind="prop", payload=group)
                    for group in group_props(result)
                )

        logger.debug(f"{sport}: {len(items)} market items")
        return items

    async def _fetch_event_props(self, sport: str, event_id: str) -> Dict[str, Any]:
        return await self.http.get_json(
            f"{self.odds_url}/sports/{sport}/events/{event_id}/odds",
            params={
                "apiKey": self.odds_api_key,
                "regions": "us",
                "markets": ",".join(self.prop_markets),
                "oddsFormat": "american",
            },
        )

    async def fetch_dfs(self, group: Any) -> List[RawItem]:
        payload = await self.http.get_json(self.dfs_url.format(group=group))
        return [
            RawItem(source=self.name, kind="dfs", payload={"group": group, "draftable": d})
            for d in unique_draftables(payload)
        ]

    def normalize(self, raw: RawItem) -> List[NormalizedRecord]:
        if raw.kind == "odds":
            line = parse_betting_line(raw.payload)
            return [self._record(f"betting_{line['game_id']}", DataType.BETTING_LINE, "TheOddsAPI", line, raw)]
        if raw.kind == "prop":
            prop = parse_player_prop(raw.payload)
            source_id = f"prop_{prop['player_id']}_{prop['prop_type']}"
            return [self._record(source_id, DataType.PLAYER_PROP, "TheOddsAPI", prop, raw)]
        if raw.kind == "dfs":
            pricing = parse_dfs_pricing(
                raw.payload["draftable"],
                raw.payload["group"],
                projection_stat_id=self.projection_stat_id,
                ownership=self.ownership_projections,
            )
            return [self._record(f"dfs_{pricing['player_id']}", DataType.DFS_PRICING, "DraftKings", pricing, raw)]
        return []

    @staticmethod
    def _record(source_id, data_type, source, payload, raw: RawItem) -> NormalizedRecord:
        return NormalizedRecord(
            source_id=source_id,
            data_type=data_type,
            source=source,
            payload=payload,
            observed_at=raw.fetched_at,
        )

    async def after_cycle(self, records: List[NormalizedRecord]) -> List[NormalizedRecord]:
        lines = [r.payload for r in records if r.data_type is DataType.BETTING_LINE]
        pricing = [r.payload for r in records if r.data_type is DataType.DFS_PRICING]

        forget_missing(self._last_lines, self._line_sports, lines, "game_id", "sport")
        delisted = forget_missing(self._last_salaries, self._salary_groups, pricing, "player_id", "draft_group")
        self._leverage_alerted.difference_update(delisted)

        await self._alert_leverage(pricing)

        trends = trends_between(self._last_lines, lines, "game", "game_id", GAME_TREND_METRICS)
        trends += trends_between(self._last_salaries, pricing, "player", "player_id", PLAYER_TREND_METRICS)
        if trends:
            logger.info(f"market: {len(trends)} market trends detected")

        now = self._clock()
        return [
            NormalizedRecord(
                source_id=f"trend_{trend['entity_id']}",
                data_type=DataType.MARKET_TREND,
                source="TREND_ANALYZER",
                payload={**trend, "observed_at": now.isoformat()},
                observed_at=now,
            )
            for trend in trends
        ]

    async def _alert_leverage(self, pricing: List[dict]) -> None:
        for player in pricing:
            leverage = player.get("leverage_score")
            player_id = player["player_id"]
            if leverage is None or abs(leverage) <= LEVERAGE_ALERT_THRESHOLD:
                self._leverage_alerted.discard(player_id)
                continue
            if player_id in self._leverage_alerted:
                continue
            self._leverage_alerted.add(player_id)
            await self.alert(
                "DFS",
                Severity.MEDIUM,
                f"High leverage play: {player['player_name']}",
                f"{'Under-owned' if leverage > 0 else 'Over-owned'} by {abs(leverage * 100):.0f}%",
                player_id=player_id,
                salary=player["salary"],
                value=player["value"],
                leverage_score=leverage,
            )
