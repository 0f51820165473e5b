"""Interactive loops for the server and client processes."""

from collections.abc import Callable

from rich.console import Console

from peril.gamelogic import GameError, GameState, malicious_log
from peril.handlers import publish_game_log
from peril.routing import ARMY_MOVES_PREFIX, PAUSE_KEY, PlayingState, routing_key
from perilbus import Publisher
from perilbus.exceptions import PublishError

Reader = Callable[[], str]

SERVER_HELP = (
    ("pause", "Pause the game for every player."),
    ("resume", "Resume the game."),
    ("help", "Show this help."),
    ("quit", "Stop the server."),
)

CLIENT_HELP = (
    ("spawn <location> <rank>", "Spawn a unit, e.g. 'spawn europe infantry'."),
    ("move <location> <unitID> ...", "Move units and announce it to the other players."),
    ("status", "Show your units."),
    ("spam <n>", "Publish n malicious game logs."),
    ("help", "Show this help."),
    ("quit", "Leave the game."),
)


def print_help(console: Console, commands: tuple[tuple[str, str], ...]) -> None:
    console.print("[bold]Possible commands:[/bold]")
    for command, description in commands:
        console.print(f"  [green]{command}[/green]  {description}")


def read_words(read: Reader) -> list[str] | None:
    """Reads one command line; None means the input is exhausted."""
    try:
        line = read()
    except EOFError:
        return None
    return line.strip().lower().split()


def run_server_loop(direct: Publisher, console: Console, read: Reader) -> None:
    print_help(console, SERVER_HELP)
    while True:
        words = read_words(read)
        if words is None:
            return
        if not words:
            continue

        match words[0]:
            case "pause" | "resume":
                state = PlayingState(is_paused=words[0] == "pause")
                console.print(f"Publishing {words[0]} message")
                try:
                    direct.publish_json(PAUSE_KEY, state)
                except PublishError as e:
                    console.print(f"[red]Could not publish the {words[0]} message: {e}[/red]")
            case "help":
                print_help(console, SERVER_HELP)
            case "quit":
                console.print("Goodbye!")
                return
            case _:
                console.print("I don't understand the command")


def run_client_loop(
    game_state: GameState, topic: Publisher, console: Console, read: Reader
) -> None:
    print_help(console, CLIENT_HELP)
    while True:
        words = read_words(read)
        if words is None:
            return
        if not words:
            continue

        try:
            match words[0]:
                case "spawn":
                    game_state.spawn(words)
                case "move":
                    move = game_state.move(words)
                    topic.publish_json(routing_key(ARMY_MOVES_PREFIX, move.player.username), move)
                    console.print("The move was published.")
                case "status":
                    game_state.status()
                case "spam":
                    spam(game_state, topic, console, words)
                case "help":
                    print_help(console, CLIENT_HELP)
                case "quit":
                    console.print("Goodbye!")
                    return
                case _:
                    console.print("unknown command")
        except (GameError, PublishError) as e:
            console.print(f"[red]{e}[/red]")


def spam(game_state: GameState, topic: Publisher, console: Console, words: list[str]) -> None:
    if len(words) < 2:
        console.print("usage: spam <n>")
        return

    try:
        count = int(words[1])
    except ValueError:
        console.print(f"error: {words[1]} is not a valid number")
        return

    for _ in range(count):
        try:
            publish_game_log(topic, game_state.username, malicious_log())
        except PublishError as e:
            console.print(f"[red]error publishing malicious log: {e}[/red]")

    console.print(f"Published {count} malicious logs")
