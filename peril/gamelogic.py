"""Game state for a Peril client.

Handlers run on subscription threads while commands arrive from the input
loop, so every access to the player goes through one lock.
"""

import random
import threading
import time
from collections.abc import Sequence
from enum import Enum, StrEnum
from pathlib import Path

from rich.console import Console

from peril.routing import GameLog, PerilModel, PlayingState


class GameError(Exception):
    pass


class UnitRank(StrEnum):
    INFANTRY = "infantry"
    CAVALRY = "cavalry"
    ARTILLERY = "artillery"


class Location(StrEnum):
    AMERICAS = "americas"
    EUROPE = "europe"
    AFRICA = "africa"
    ASIA = "asia"
    AUSTRALIA = "australia"
    ANTARCTICA = "antarctica"


UNIT_POWER = {
    UnitRank.INFANTRY: 1,
    UnitRank.CAVALRY: 5,
    UnitRank.ARTILLERY: 10,
}


class Unit(PerilModel):
    id: int
    rank: UnitRank
    location: Location


class Player(PerilModel):
    username: str
    units: dict[int, Unit] = {}


class ArmyMove(PerilModel):
    player: Player
    units: list[Unit]
    to_location: Location


class RecognitionOfWar(PerilModel):
    attacker: Player
    defender: Player


class MoveOutcome(Enum):
    SAFE = "safe"
    MAKE_WAR = "make_war"
    SAME_PLAYER = "same_player"


class WarOutcome(Enum):
    NOT_INVOLVED = "not_involved"
    NO_UNITS = "no_units"
    OPPONENT_WON = "opponent_won"
    YOU_WON = "you_won"
    DRAW = "draw"


def overlapping_location(first: Player, second: Player) -> Location | None:
    first_locations = {unit.location for unit in first.units.values()}
    for unit in second.units.values():
        if unit.location in first_locations:
            return unit.location
    return None


def power_level(units: Sequence[Unit]) -> int:
    return sum(UNIT_POWER[unit.rank] for unit in units)


def _parse_choice(enum_type: type[StrEnum], value: str) -> StrEnum:
    try:
        return enum_type(value.lower())
    except ValueError:
        choices = ", ".join(member.value for member in enum_type)
        raise GameError(f"'{value}' is not a valid {enum_type.__name__.lower()}: {choices}") from None


class GameState:
    def __init__(self, username: str, console: Console | None = None) -> None:
        self.player = Player(username=username)
        self.paused = False
        self.console = console or Console()
        self._lock = threading.Lock()
        self._next_unit_id = 1

    @property
    def username(self) -> str:
        return self.player.username

    def snapshot(self) -> Player:
        with self._lock:
            return self.player.model_copy(deep=True)

    def spawn(self, words: Sequence[str]) -> Unit:
        """spawn <location> <rank>"""
        if len(words) < 3:
            raise GameError("usage: spawn <location> <rank>")

        location = _parse_choice(Location, words[1])
        rank = _parse_choice(UnitRank, words[2])

        with self._lock:
            unit = Unit(id=self._next_unit_id, rank=rank, location=location)
            self.player.units[unit.id] = unit
            self._next_unit_id += 1

        self.console.print(f"Spawned a(n) {unit.rank} in {unit.location} with id {unit.id}")
        return unit

    def move(self, words: Sequence[str]) -> ArmyMove:
        """move <location> <unitID> <unitID> ..."""
        if len(words) < 3:
            raise GameError("usage: move <location> <unitID> <unitID> ...")

        if self.paused:
            raise GameError("the game is paused, you can not move units")

        location = _parse_choice(Location, words[1])
        try:
            unit_ids = [int(word) for word in words[2:]]
        except ValueError:
            raise GameError("unit ids must be numbers") from None

        with self._lock:
            missing = [unit_id for unit_id in unit_ids if unit_id not in self.player.units]
            if missing:
                raise GameError(f"unit(s) {missing} do not exist")

            moved = []
            for unit_id in unit_ids:
                unit = self.player.units[unit_id].model_copy(update={"location": location})
                self.player.units[unit_id] = unit
                moved.append(unit)

            player = self.player.model_copy(deep=True)

        self.console.print(f"Moved {len(moved)} unit(s) to {location}")
        return ArmyMove(player=player, units=moved, to_location=location)

    def status(self) -> None:
        player = self.snapshot()
        self.console.print(f"You are {player.username}, the game is {'paused' if self.paused else 'running'}")
        if not player.units:
            self.console.print("You have no units.")
        for unit in player.units.values():
            self.console.print(f"* {unit.id}: {unit.location} {unit.rank}")

    def handle_pause(self, state: PlayingState) -> None:
        self.paused = state.is_paused
        self.console.print("==== Pause Detected ====" if state.is_paused else "==== Resume Detected ====")

    def handle_move(self, move: ArmyMove) -> MoveOutcome:
        player = self.snapshot()
        mover = move.player.username
        self.console.print(f"{mover} moved {len(move.units)} unit(s) to {move.to_location}")

        if player.username == mover:
            return MoveOutcome.SAME_PLAYER

        location = overlapping_location(player, move.player)
        if location is not None:
            self.console.print(f"You have units in {location}! You are at war with {mover}!")
            return MoveOutcome.MAKE_WAR

        self.console.print(f"You are safe from {mover}'s units.")
        return MoveOutcome.SAFE

    def handle_war(self, war: RecognitionOfWar) -> tuple[WarOutcome, str, str]:
        """Fights the war when this player is the attacker.

        Returns:
            The outcome, the winner's username and the loser's username.
        """
        attacker, defender = war.attacker, war.defender
        player = self.snapshot()
        self.console.print(f"==== War Declared: {attacker.username} against {defender.username} ====")

        if player.username == defender.username:
            self.console.print(f"{player.username}, you published the war.")
            return WarOutcome.NOT_INVOLVED, "", ""

        if player.username != attacker.username:
            self.console.print(f"{player.username}, you are not involved in this war.")
            return WarOutcome.NOT_INVOLVED, "", ""

        location = overlapping_location(attacker, defender)
        if location is None:
            self.console.print("No units are in the same location. No war will be fought.")
            return WarOutcome.NO_UNITS, "", ""

        attacker_power = power_level([u for u in attacker.units.values() if u.location == location])
        defender_power = power_level([u for u in defender.units.values() if u.location == location])

        if attacker_power > defender_power:
            self.console.print(f"{attacker.username} has won the war!")
            return WarOutcome.YOU_WON, attacker.username, defender.username

        if defender_power > attacker_power:
            self.console.print(f"{defender.username} has won the war! Your units in {location} have been killed.")
            self._remove_units_in(location)
            return WarOutcome.OPPONENT_WON, defender.username, attacker.username

        self.console.print(f"The war ended in a draw! Your units in {location} have been killed.")
        self._remove_units_in(location)
        return WarOutcome.DRAW, attacker.username, defender.username

    def _remove_units_in(self, location: Location) -> None:
        with self._lock:
            self.player.units = {
                unit_id: unit
                for unit_id, unit in self.player.units.items()
                if unit.location != location
            }


_MALICIOUS_LOGS = (
    "Never interrupt your enemy when he is making a mistake.",
    "The hardest thing of all for a soldier is to retreat.",
    "All warfare is based on deception.",
    "Opportunities multiply as they are seized.",
    "Let your plans be dark and impenetrable as night.",
    "The supreme art of war is to subdue the enemy without fighting.",
)


def malicious_log() -> str:
    return random.choice(_MALICIOUS_LOGS)


def write_log(game_log: GameLog, path: Path, delay: float = 1.0) -> None:
    """Appends a game log line; the delay simulates a slow consumer."""
    if delay:
        time.sleep(delay)

    line = f"{game_log.current_time.isoformat()} {game_log.username}: {game_log.message}\n"
    with path.open("a", encoding="utf-8") as log_file:
        log_file.write(line)
