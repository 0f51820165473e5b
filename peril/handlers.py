"""Delivery handlers: game outcomes in, dispositions out."""

from datetime import datetime, timezone
from pathlib import Path
from typing import assert_never

from peril.gamelogic import (
    ArmyMove,
    GameState,
    MoveOutcome,
    RecognitionOfWar,
    WarOutcome,
    write_log,
)
from peril.routing import GAME_LOG_SLUG, WAR_RECOGNITIONS_PREFIX, GameLog, PlayingState, routing_key
from perilbus import Disposition, Publisher
from perilbus.datastructures import Envelope
from perilbus.exceptions import PublishError
from perilbus.logger import logger
from perilbus.types import Handler


def publish_game_log(publisher: Publisher, username: str, message: str) -> Envelope:
    game_log = GameLog(current_time=datetime.now(timezone.utc), message=message, username=username)
    return publisher.publish_msgpack(routing_key(GAME_LOG_SLUG, username), game_log)


def handler_pause(game_state: GameState) -> Handler[PlayingState]:
    def handle(state: PlayingState) -> Disposition:
        game_state.handle_pause(state)
        return Disposition.ACK

    return handle


def handler_move(
    game_state: GameState, publisher: Publisher
) -> Handler[ArmyMove]:
    def handle(move: ArmyMove) -> Disposition:
        outcome = game_state.handle_move(move)
        match outcome:
            case MoveOutcome.SAFE:
                return Disposition.ACK
            case MoveOutcome.MAKE_WAR:
                war = RecognitionOfWar(attacker=move.player, defender=game_state.snapshot())
                try:
                    publisher.publish_json(
                        routing_key(WAR_RECOGNITIONS_PREFIX, game_state.username), war
                    )
                except PublishError:
                    logger.warning("Could not declare the war, the move will be retried.", exc_info=True)
                    return Disposition.REQUEUE_LATER
                return Disposition.ACK
            case MoveOutcome.SAME_PLAYER:
                return Disposition.DISCARD_PERMANENTLY
            case _:
                assert_never(outcome)

    return handle


def handler_war(
    game_state: GameState, publisher: Publisher
) -> Handler[RecognitionOfWar]:
    def handle(war: RecognitionOfWar) -> Disposition:
        outcome, winner, loser = game_state.handle_war(war)
        match outcome:
            case WarOutcome.NOT_INVOLVED:
                return Disposition.REQUEUE_LATER
            case WarOutcome.NO_UNITS:
                return Disposition.DISCARD_PERMANENTLY
            case WarOutcome.OPPONENT_WON | WarOutcome.YOU_WON:
                message = f"{winner} won a war against {loser}"
            case WarOutcome.DRAW:
                message = f"A war between {winner} and {loser} resulted in a draw"
            case _:
                assert_never(outcome)

        try:
            publish_game_log(publisher, game_state.username, message)
        except PublishError:
            logger.warning("Could not publish the war log, the war will be retried.", exc_info=True)
            return Disposition.REQUEUE_LATER

        return Disposition.ACK

    return handle


def handler_log(path: Path, delay: float = 1.0) -> Handler[GameLog]:
    def handle(game_log: GameLog) -> Disposition:
        try:
            write_log(game_log, path, delay=delay)
        except OSError:
            logger.exception(f"Could not write the game log to {path}")
            return Disposition.REQUEUE_LATER
        return Disposition.ACK

    return handle
