import io
from datetime import datetime, timezone

import pytest
from rich.console import Console

from peril.gamelogic import (
    GameError,
    GameState,
    Location,
    MoveOutcome,
    Player,
    RecognitionOfWar,
    Unit,
    UnitRank,
    WarOutcome,
    malicious_log,
    overlapping_location,
    power_level,
    write_log,
)
from peril.routing import GameLog, PlayingState


def quiet_console() -> Console:
    return Console(file=io.StringIO())


def player(username: str, *units: tuple[Location, UnitRank]) -> Player:
    return Player(
        username=username,
        units={
            i: Unit(id=i, rank=rank, location=location)
            for i, (location, rank) in enumerate(units, start=1)
        },
    )


@pytest.fixture
def game_state() -> GameState:
    return GameState("ana", console=quiet_console())


class TestHelpers:
    def test_power_level(self):
        units = [
            Unit(id=1, rank=UnitRank.INFANTRY, location=Location.ASIA),
            Unit(id=2, rank=UnitRank.CAVALRY, location=Location.ASIA),
            Unit(id=3, rank=UnitRank.ARTILLERY, location=Location.ASIA),
        ]
        assert power_level(units) == 16

    def test_overlapping_location(self):
        first = player("ana", (Location.ASIA, UnitRank.INFANTRY))
        second = player("bob", (Location.EUROPE, UnitRank.INFANTRY), (Location.ASIA, UnitRank.CAVALRY))

        assert overlapping_location(first, second) == Location.ASIA
        assert overlapping_location(first, player("eve", (Location.AFRICA, UnitRank.INFANTRY))) is None

    def test_malicious_log(self):
        assert isinstance(malicious_log(), str)

    def test_write_log(self, tmp_path):
        path = tmp_path / "game.log"
        game_log = GameLog(
            current_time=datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
            message="ana won a war against bob",
            username="ana",
        )

        write_log(game_log, path, delay=0)
        write_log(game_log, path, delay=0)

        assert path.read_text().splitlines() == [
            "2024-01-02T03:04:05+00:00 ana: ana won a war against bob"
        ] * 2


class TestCommands:
    def test_spawn(self, game_state: GameState):
        unit = game_state.spawn(["spawn", "europe", "infantry"])

        assert unit == Unit(id=1, rank=UnitRank.INFANTRY, location=Location.EUROPE)
        assert game_state.snapshot().units == {1: unit}
        assert game_state.spawn(["spawn", "asia", "artillery"]).id == 2

    @pytest.mark.parametrize(
        "words",
        [["spawn"], ["spawn", "mars", "infantry"], ["spawn", "asia", "dragon"]],
    )
    def test_spawn_errors(self, game_state: GameState, words):
        with pytest.raises(GameError):
            game_state.spawn(words)

    def test_move(self, game_state: GameState):
        game_state.spawn(["spawn", "europe", "infantry"])

        move = game_state.move(["move", "asia", "1"])

        assert move.player.username == "ana"
        assert move.to_location == Location.ASIA
        assert [unit.location for unit in move.units] == [Location.ASIA]
        assert game_state.snapshot().units[1].location == Location.ASIA

    def test_move_unknown_unit(self, game_state: GameState):
        with pytest.raises(GameError, match="do not exist"):
            game_state.move(["move", "asia", "7"])

    def test_move_while_paused(self, game_state: GameState):
        game_state.spawn(["spawn", "europe", "infantry"])
        game_state.handle_pause(PlayingState(is_paused=True))

        with pytest.raises(GameError, match="paused"):
            game_state.move(["move", "asia", "1"])

        game_state.handle_pause(PlayingState(is_paused=False))
        assert game_state.move(["move", "asia", "1"])

    def test_status(self):
        output = io.StringIO()
        game_state = GameState("ana", console=Console(file=output))
        game_state.spawn(["spawn", "europe", "cavalry"])

        game_state.status()

        assert "1: europe cavalry" in output.getvalue()


class TestHandleMove:
    def test_own_move(self, game_state: GameState):
        game_state.spawn(["spawn", "europe", "infantry"])
        move = game_state.move(["move", "asia", "1"])

        assert game_state.handle_move(move) is MoveOutcome.SAME_PLAYER

    def test_safe(self, game_state: GameState):
        other = GameState("bob", console=quiet_console())
        other.spawn(["spawn", "asia", "infantry"])
        game_state.spawn(["spawn", "europe", "infantry"])

        assert game_state.handle_move(other.move(["move", "africa", "1"])) is MoveOutcome.SAFE

    def test_make_war(self, game_state: GameState):
        other = GameState("bob", console=quiet_console())
        other.spawn(["spawn", "asia", "infantry"])
        game_state.spawn(["spawn", "europe", "infantry"])

        assert game_state.handle_move(other.move(["move", "europe", "1"])) is MoveOutcome.MAKE_WAR


class TestHandleWar:
    def test_defender_is_not_involved(self, game_state: GameState):
        war = RecognitionOfWar(attacker=player("bob"), defender=player("ana"))
        assert game_state.handle_war(war)[0] is WarOutcome.NOT_INVOLVED

    def test_bystander_is_not_involved(self, game_state: GameState):
        war = RecognitionOfWar(attacker=player("bob"), defender=player("eve"))
        assert game_state.handle_war(war)[0] is WarOutcome.NOT_INVOLVED

    def test_no_units(self, game_state: GameState):
        war = RecognitionOfWar(
            attacker=player("ana", (Location.ASIA, UnitRank.INFANTRY)),
            defender=player("bob", (Location.EUROPE, UnitRank.INFANTRY)),
        )
        assert game_state.handle_war(war) == (WarOutcome.NO_UNITS, "", "")

    def test_you_won(self, game_state: GameState):
        game_state.spawn(["spawn", "asia", "artillery"])
        war = RecognitionOfWar(
            attacker=game_state.snapshot(),
            defender=player("bob", (Location.ASIA, UnitRank.CAVALRY)),
        )

        assert game_state.handle_war(war) == (WarOutcome.YOU_WON, "ana", "bob")
        assert game_state.snapshot().units

    def test_opponent_won(self, game_state: GameState):
        game_state.spawn(["spawn", "asia", "infantry"])
        game_state.spawn(["spawn", "europe", "infantry"])
        war = RecognitionOfWar(
            attacker=game_state.snapshot(),
            defender=player("bob", (Location.ASIA, UnitRank.CAVALRY)),
        )

        assert game_state.handle_war(war) == (WarOutcome.OPPONENT_WON, "bob", "ana")
        assert [unit.location for unit in game_state.snapshot().units.values()] == [Location.EUROPE]

    def test_draw(self, game_state: GameState):
        game_state.spawn(["spawn", "asia", "cavalry"])
        war = RecognitionOfWar(
            attacker=game_state.snapshot(),
            defender=player("bob", (Location.ASIA, UnitRank.CAVALRY)),
        )

        assert game_state.handle_war(war) == (WarOutcome.DRAW, "ana", "bob")
        assert not game_state.snapshot().units
