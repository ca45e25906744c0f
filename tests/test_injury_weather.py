import pytest

from collectors.espn.parser import parse_game
from collectors.injury_weather import InjuryWeatherCollector
from collectors.injury_weather.parser import (
    build_team_health,
    dedupe_injuries,
    flatten_injury_feed,
    is_extreme_weather,
    parse_injury,
    parse_weather,
)
from core.exceptions import NormalizationError
from core.models import DataType, NormalizedRecord, Severity
from tests.fakes import FakeHttp
from tests.test_espn import event

INJURIES = "https://site.api.espn.com/apis/site/v2/sports/football/nfl/injuries"
WEATHER = "https://api.openweathermap.org/data/2.5/weather"


def report(player_id, status, name=None, detail=None, kind="Knee", comment=None):
    details = {"type": kind}
    if detail:
        details["detail"] = detail
    entry = {
        "status": status,
        "athlete": {
            "id": player_id,
            "displayName": name or f"Player {player_id}",
            "team": {"abbreviation": "KC"},
            "position": {"abbreviation": "WR"},
        },
        "details": details,
        "date": "2024-09-06",
    }
    if comment:
        entry["shortComment"] = comment
    return entry


def feed(*entries):
    return {"injuries": [{"displayName": "Kansas City Chiefs", "injuries": list(entries)}]}


CONDITIONS = {
    "main": {"temp": 28.4, "feels_like": 20.1, "humidity": 80, "pressure": 1012},
    "wind": {"speed": 21.0, "deg": 270},
    "snow": {"1h": 2.54},
    "weather": [{"main": "Snow"}],
    "visibility": 3218.68,
}


def test_flatten_carries_team_name():
    entries = flatten_injury_feed(feed(report("1", "Out")))
    assert entries[0]["_team"] == "Kansas City Chiefs"


def test_dedupe_keeps_most_confident_report():
    bare = report("1", "Questionable")
    detailed = report("1", "Out", detail="Torn ACL")
    other_type = report("1", "Questionable", kind="Ankle")

    kept = dedupe_injuries([bare, detailed, other_type])

    assert len(kept) == 2
    assert detailed in kept
    assert bare not in kept


def test_parse_injury():
    injury = parse_injury(report("1", "Injured Reserve", detail="Torn ACL"), "football/nfl")

    assert injury["status"] == "ir"
    assert injury["injury_type"] == "knee"
    assert injury["confidence"] == 0.95
    assert injury["team"] == "KC"


def test_parse_injury_without_athlete():
    with pytest.raises(NormalizationError):
        parse_injury({"status": "Out"}, "football/nfl")


def test_team_health_score():
    injuries = [
        parse_injury(report("1", "Out", detail="x"), "football/nfl"),
        parse_injury(report("2", "Out"), "football/nfl"),
        parse_injury(report("3", "Questionable", comment="limited in practice"), "football/nfl"),
    ]

    [health] = build_team_health(injuries)

    assert health["team_id"] == "KC"
    assert health["injured_players"] == 2
    assert health["questionable_players"] == 1
    assert health["health_score"] == 65
    assert [p["player"] for p in health["key_players_status"]] == ["Player 1", "Player 3"]
    assert health["key_players_status"][0]["impact"] == "medium"


def test_parse_weather_converts_units():
    game = parse_game(event(), "football/nfl")
    weather = parse_weather(game, CONDITIONS)

    assert weather["game_id"] == "401547417"
    assert weather["venue"] == "M&T Bank Stadium"
    assert weather["precipitation"] == 0.1
    assert weather["wind_direction"] == "W"
    assert weather["conditions"] == "snow"
    assert weather["visibility_miles"] == 2.0
    assert is_extreme_weather(weather)


def test_mild_weather_is_not_extreme():
    assert not is_extreme_weather({"temperature": 65, "wind_speed": 15, "precipitation": 0.3})


def test_parse_weather_without_readings():
    with pytest.raises(NormalizationError):
        parse_weather({"game_id": "1"}, {"wind": {}})


@pytest.fixture
def make_injury_weather(memory_sink, scheduler, alerts, clock):
    def _make(routes, **kwargs):
        return InjuryWeatherCollector(
            http=FakeHttp(routes),
            leagues=["football/nfl"],
            sink=memory_sink,
            scheduler=scheduler,
            alerts=alerts,
            clock=clock,
            fetch_timeout=1.0,
            **kwargs,
        )
    return _make


async def seed_game(sink, **extra):
    game = parse_game(event(**extra), "football/nfl")
    await sink.persist(NormalizedRecord(
        source_id=f"espn_game_{game['game_id']}",
        data_type=DataType.GAME_DATA,
        source="ESPN",
        payload=game,
    ))


async def test_cycle_writes_injuries_and_team_health(make_injury_weather, memory_sink, alert_sink):
    collector = make_injury_weather({
        INJURIES: feed(report("1", "Out", detail="Hamstring"), report("2", "Questionable")),
    })

    result = await collector.run_cycle()

    assert result.persisted == 3
    assert memory_sink.get("injury_1_knee", DataType.INJURY_REPORT).payload["status"] == "out"
    health = memory_sink.get("team_health_KC", DataType.TEAM_HEALTH)
    assert health.source == "Internal"
    assert health.payload["health_score"] == 80

    injury_alerts = alert_sink.of_type("INJURY")
    assert len(injury_alerts) == 1
    assert injury_alerts[0].severity is Severity.MEDIUM


async def test_injury_alert_fires_once_per_status(make_injury_weather, alert_sink):
    http_routes = {INJURIES: feed(report("1", "Out"))}
    collector = make_injury_weather(http_routes)

    await collector.run_cycle()
    await collector.run_cycle()
    assert len(alert_sink.of_type("INJURY")) == 1

    http_routes[INJURIES] = feed(report("1", "Injured Reserve"))
    collector.http.routes.update(http_routes)
    await collector.run_cycle()

    alerts = alert_sink.of_type("INJURY")
    assert len(alerts) == 2
    assert alerts[-1].severity is Severity.HIGH


async def test_weather_skipped_without_api_key(make_injury_weather):
    collector = make_injury_weather({INJURIES: feed()})
    assert [f.label for f in collector.sub_fetches()] == ["injuries football/nfl"]


async def test_weather_for_upcoming_games(make_injury_weather, memory_sink, alert_sink):
    await seed_game(memory_sink)
    await seed_game(memory_sink, id="999", status={"type": {"name": "STATUS_FINAL", "state": "post"}})
    collector = make_injury_weather(
        {INJURIES: feed(), WEATHER: CONDITIONS}, weather_api_key="secret"
    )

    await collector.run_cycle()

    weather = memory_sink.rows(DataType.WEATHER_DATA)
    assert [w.source_id for w in weather] == ["weather_401547417"]
    assert weather[0].source == "OpenWeather"
    weather_calls = [c for c in collector.http.calls if c["url"] == WEATHER]
    assert weather_calls[0]["params"] == {"q": "Baltimore", "appid": "secret", "units": "imperial"}

    await collector.run_cycle()
    assert len(alert_sink.of_type("WEATHER")) == 1


async def test_weather_fails_when_every_city_fails(make_injury_weather, memory_sink):
    await seed_game(memory_sink)
    collector = make_injury_weather({INJURIES: feed()}, weather_api_key="secret")

    await collector.run_cycle()

    assert any("fetch weather failed" in e.message for e in collector.status.recent_errors)


async def test_delisted_injury_alert_is_forgotten(make_injury_weather, alert_sink):
    collector = make_injury_weather({INJURIES: feed(report("1", "Out"))})
    await collector.run_cycle()

    collector.http.routes[INJURIES] = feed(report("2", "Questionable"))
    await collector.run_cycle()
    assert collector._alerted_injuries == {}

    collector.http.routes[INJURIES] = feed(report("1", "Out"))
    await collector.run_cycle()
    assert len(alert_sink.of_type("INJURY")) == 2


async def test_injury_alert_state_survives_a_failed_fetch(make_injury_weather, alert_sink):
    collector = make_injury_weather({INJURIES: feed(report("1", "Out"))})
    await collector.run_cycle()

    collector.http.routes[INJURIES] = ConnectionError("reset")
    await collector.run_cycle()

    collector.http.routes[INJURIES] = feed(report("1", "Out"))
    await collector.run_cycle()
    assert len(alert_sink.of_type("INJURY")) == 1
