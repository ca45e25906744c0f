"""
Injury & weather collector - injury reports per league and current conditions
at the venues of upcoming games, plus derived team health reports.
"""

import asyncio
import logging
from functools import partial
from typing import Dict, List, Optional, Sequence, Set, Tuple

from core.collector import BaseCollector, SubFetch
from core.exceptions import FetchError
from core.infra.http import HttpClient
from core.models import DataType, NormalizedRecord, RawItem, Severity
from collectors.espn.parser import is_upcoming

from .parser import (
    build_team_health,
    dedupe_injuries,
    flatten_injury_feed,
    is_extreme_weather,
    parse_injury,
    parse_weather,
)


logger = logging.getLogger(__name__)

DEFAULT_LEAGUES = ("football/nfl", "basketball/nba", "baseball/mlb", "hockey/nhl")


class InjuryWeatherCollector(BaseCollector):
    """Polls injury feeds and venue weather."""

    name = "injury_weather"
    display_name = "Injury & Weather Pipeline"
    default_interval_seconds = 300.0

    INJURIES_URL = "https://site.api.espn.com/apis/site/v2/sports/{league}/injuries"
    WEATHER_URL = "https://api.openweathermap.org/data/2.5/weather"

    def __init__(
        self,
        *,
        http: HttpClient,
        leagues: Optional[Sequence[str]] = None,
        weather_api_key: Optional[str] = None,
        max_weather_games: int = 20,
        injuries_url: Optional[str] = None,
        weather_url: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.http = http
        self.leagues = list(leagues or DEFAULT_LEAGUES)
        self.weather_api_key = weather_api_key
        self.max_weather_games = max_weather_games
        self.injuries_url = injuries_url or self.INJURIES_URL
        self.weather_url = weather_url or self.WEATHER_URL

        # (player_id, injury_type) -> (league, status) already alerted on
        self._alerted_injuries: Dict[Tuple[str, str], Tuple[str, str]] = {}
        self._alerted_weather: Set[str] = set()

    def sub_fetches(self) -> List[SubFetch]:
        fetches = [
            SubFetch(f"injuries {league}", partial(self.fetch_injuries, league))
            for league in self.leagues
        ]
        if self.weather_api_key:
            fetches.append(SubFetch("weather", self.fetch_weather))
        else:
            logger.debug("No weather API key configured, skipping weather")
        return fetches

    async def fetch_injuries(self, league: str) -> List[RawItem]:
        feed = await self.http.get_json(self.injuries_url.format(league=league))
        entries = dedupe_injuries(flatten_injury_feed(feed))
        logger.debug(f"{league}: {len(entries)} injury reports")
        return [
            RawItem(source=self.name, kind="injury", payload={"league": league, "entry": entry})
            for entry in entries
        ]

    async def upcoming_games(self) -> List[dict]:
        records = await self.sink.latest(DataType.GAME_DATA, limit=self.max_weather_games * 10)
        games = [
            r.payload for r in records
            if is_upcoming(r.payload) and (r.payload.get("venue") or {}).get("city")
        ]
        return games[: self.max_weather_games]

    async def fetch_weather(self) -> List[RawItem]:
        games = await self.upcoming_games()
        if not games:
            logger.debug("No upcoming games with a venue city, skipping weather")
            return []

        cities = sorted({g["venue"]["city"] for g in games})
        results = await asyncio.gather(
            *(self._fetch_city(city) for city in cities), return_exceptions=True
        )

        by_city = {}
        for city, result in zip(cities, results):
            if isinstance(result, Exception):
                logger.warning(f"Weather for {city} unavailable: {result}")
                continue
            by_city[city] = result

        if not by_city:
            raise FetchError("openweather", f"no conditions for any of {len(cities)} cities")

        return [
            RawItem(
                source=self.name,
                kind="weather",
                payload={"game": game, "conditions": by_city[game["venue"]["city"]]},
            )
            for game in games
            if game["venue"]["city"] in by_city
        ]

    async def _fetch_city(self, city: str) -> dict:
        return await self.http.get_json(
            self.weather_url,
            params={"q": city, "appid": self.weather_api_key, "units": "imperial"},
        )

    def normalize(self, raw: RawItem) -> List[NormalizedRecord]:
        if raw.kind == "injury":
            injury = parse_injury(raw.payload["entry"], raw.payload["league"])
            return [
                NormalizedRecord(
                    source_id=f"injury_{injury['player_id']}_{injury['injury_type']}",
                    data_type=DataType.INJURY_REPORT,
                    source=injury["source"],
                    payload=injury,
                    observed_at=raw.fetched_at,
                )
            ]
        if raw.kind == "weather":
            weather = parse_weather(raw.payload["game"], raw.payload["conditions"])
            return [
                NormalizedRecord(
                    source_id=f"weather_{weather['game_id']}",
                    data_type=DataType.WEATHER_DATA,
                    source="OpenWeather",
                    payload=weather,
                    observed_at=raw.fetched_at,
                )
            ]
        return []

    async def after_cycle(self, records: List[NormalizedRecord]) -> List[NormalizedRecord]:
        injuries = [r.payload for r in records if r.data_type is DataType.INJURY_REPORT]
        weather = [r.payload for r in records if r.data_type is DataType.WEATHER_DATA]

        self._forget_delisted(injuries, weather)
        await self._alert_injuries(injuries)
        await self._alert_weather(weather)

        now = self._clock()
        return [
            NormalizedRecord(
                source_id=f"team_health_{report['team_id']}",
                data_type=DataType.TEAM_HEALTH,
                source="Internal",
                payload=report,
                observed_at=now,
            )
            for report in build_team_health(injuries)
        ]

    def _forget_delisted(self, injuries: List[dict], weather: List[dict]) -> None:
        """Drop alert state for players and games the feeds no longer list.

        Leagues absent from this cycle, e.g. after a failed fetch, keep their
        state. Weather state is only pruned when some weather came back.
        """
        listed = {(i["player_id"], i["injury_type"]) for i in injuries}
        leagues = {i["league"] for i in injuries}
        self._alerted_injuries = {
            key: value
            for key, value in self._alerted_injuries.items()
            if key in listed or value[0] not in leagues
        }
        if weather:
            self._alerted_weather &= {w["game_id"] for w in weather}

    async def _alert_injuries(self, injuries: List[dict]) -> None:
        for injury in injuries:
            key = (injury["player_id"], injury["injury_type"])
            status = injury["status"]
            if status not in ("out", "ir"):
                self._alerted_injuries.pop(key, None)
                continue
            if self._alerted_injuries.get(key) == (injury["league"], status):
                continue
            self._alerted_injuries[key] = (injury["league"], status)
            await self.alert(
                "INJURY",
                Severity.HIGH if status == "ir" else Severity.MEDIUM,
                f"{injury['player_name']} {status.upper()}",
                injury["description"] or f"{injury['injury_type']} injury",
                player_id=injury["player_id"],
                team=injury["team"],
                return_date=injury["estimated_return"],
            )

    async def _alert_weather(self, reports: List[dict]) -> None:
        for weather in reports:
            game_id = weather["game_id"]
            if not is_extreme_weather(weather):
                self._alerted_weather.discard(game_id)
                continue
            if game_id in self._alerted_weather:
                continue
            self._alerted_weather.add(game_id)
            await self.alert(
                "WEATHER",
                Severity.MEDIUM,
                f"Extreme weather for {weather['venue']}",
                f"{weather['conditions']} - {weather['temperature']}°F, "
                f"{weather['wind_speed']}mph winds",
                game_id=game_id,
                venue=weather["venue"],
                conditions=weather,
            )
