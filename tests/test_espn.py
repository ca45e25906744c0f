import pytest

from collectors.espn import EspnCollector
from collectors.espn.parser import is_upcoming, parse_athlete, parse_game
from core.exceptions import FetchError, NormalizationError
from core.models import CollectorState, DataType
from tests.fakes import FakeHttp

BASE = "https://site.api.espn.com/apis/site/v2/sports"


def event(game_id="401547417", state="pre", **extra):
    data = {
        "id": game_id,
        "name": "Kansas City Chiefs at Baltimore Ravens",
        "date": "2024-09-08T17:00Z",
        "status": {
            "period": 0,
            "displayClock": "0:00",
            "type": {"name": "STATUS_SCHEDULED", "state": state},
        },
        "competitions": [{
            "venue": {"fullName": "M&T Bank Stadium", "address": {"city": "Baltimore"}, "indoor": False},
            "competitors": [
                {"homeAway": "home", "score": "0", "team": {"abbreviation": "BAL", "displayName": "Baltimore Ravens"}},
                {"homeAway": "away", "score": "0", "team": {"abbreviation": "KC", "displayName": "Kansas City Chiefs"}},
            ],
        }],
    }
    data.update(extra)
    return data


ATHLETE = {
    "athlete": {
        "id": "3139477",
        "fullName": "Patrick Mahomes",
        "position": {"abbreviation": "QB"},
        "team": {"abbreviation": "KC"},
        "injuries": [{"status": "Questionable", "details": {"detail": "Ankle"}, "date": "2024-09-06"}],
    }
}


def test_parse_game():
    game = parse_game(event(), "football/nfl")

    assert game["game_id"] == "401547417"
    assert game["home"] == {"team": "BAL", "name": "Baltimore Ravens", "score": 0}
    assert game["away"]["team"] == "KC"
    assert game["venue"]["city"] == "Baltimore"
    assert "weather" not in game
    assert is_upcoming(game)


def test_parse_game_weather_defaults():
    game = parse_game(event(weather={"windSpeed": 12}), "football/nfl")
    assert game["weather"]["temperature"] == 72
    assert game["weather"]["wind"] == 12


def test_parse_game_requires_id_and_competition():
    with pytest.raises(NormalizationError):
        parse_game({"id": "1", "competitions": []}, "football/nfl")
    with pytest.raises(NormalizationError):
        parse_game({"competitions": [{}]}, "football/nfl")


def test_parse_athlete_with_injury():
    player = parse_athlete(ATHLETE, "football/nfl")

    assert player["player_id"] == "3139477"
    assert player["position"] == "QB"
    assert player["injury_status"] == "questionable"
    assert player["injury"]["description"] == "Ankle"


def test_parse_bare_athlete_defaults():
    player = parse_athlete({"id": "9", "displayName": "Free Agent"}, "basketball/nba")
    assert player["team"] == "FA"
    assert player["position"] == "N/A"
    assert player["injury_status"] == "healthy"


def test_live_game_is_not_upcoming():
    game = parse_game(event(state="in", status={"type": {"name": "STATUS_IN_PROGRESS", "state": "in"}}), "football/nfl")
    assert not is_upcoming(game)


@pytest.fixture
def espn(memory_sink, scheduler, alerts, clock):
    def _make(routes, leagues=("football/nfl",)):
        return EspnCollector(
            http=FakeHttp(routes),
            leagues=leagues,
            sink=memory_sink,
            scheduler=scheduler,
            alerts=alerts,
            clock=clock,
            fetch_timeout=1.0,
        )
    return _make


async def test_cycle_persists_games_and_players(espn, memory_sink):
    collector = espn({
        f"{BASE}/football/nfl/scoreboard": {"events": [event(), {"id": "broken"}]},
        f"{BASE}/football/nfl/athletes": {"items": [ATHLETE]},
    })

    result = await collector.run_cycle()

    assert result.persisted == 2
    assert memory_sink.get("espn_game_401547417", DataType.GAME_DATA).source == "ESPN"
    assert memory_sink.get("espn_3139477", DataType.PLAYER_STATS).payload["name"] == "Patrick Mahomes"
    assert len(collector.status.recent_errors) == 1


async def test_missing_athletes_do_not_fail_the_league(espn, memory_sink):
    collector = espn({f"{BASE}/football/nfl/scoreboard": {"events": [event()]}})

    result = await collector.run_cycle()

    assert not result.fetch_failed
    assert len(memory_sink.rows(DataType.GAME_DATA)) == 1
    assert collector.status.recent_errors == []


async def test_one_league_down(espn, memory_sink):
    collector = espn(
        {
            f"{BASE}/football/nfl/scoreboard": {"events": [event()]},
            f"{BASE}/basketball/nba/scoreboard": FetchError("espn", "HTTP 503"),
        },
        leagues=("football/nfl", "basketball/nba"),
    )
    await collector.start()

    result = await collector.run_cycle()

    assert result.persisted == 1
    assert collector.status.state is CollectorState.RUNNING
    assert "basketball/nba" in collector.status.recent_errors[0].message


async def test_athlete_limit_is_sent_and_applied(espn):
    http_routes = {
        f"{BASE}/football/nfl/scoreboard": {"events": []},
        f"{BASE}/football/nfl/athletes": {"items": [{"id": str(i)} for i in range(10)]},
    }
    collector = espn(http_routes)
    collector.player_limit = 3

    items = await collector.fetch_league("football/nfl")

    assert len(items) == 3
    assert collector.http.calls[1]["params"] == {"limit": 3}
