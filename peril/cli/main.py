import platform
from pathlib import Path
from typing import Annotated

import rich
import typer
from rich.console import Console

from peril.cli.repl import run_client_loop, run_server_loop
from peril.cli.utils import LogLevels, get_log_level
from peril.gamelogic import ArmyMove, GameState, RecognitionOfWar
from peril.handlers import handler_log, handler_move, handler_pause, handler_war
from peril.routing import (
    ARMY_MOVES_PREFIX,
    GAME_LOG_SLUG,
    PAUSE_KEY,
    WAR_QUEUE,
    WAR_RECOGNITIONS_PREFIX,
    GameLog,
    PlayingState,
    routing_key,
    wildcard,
)
from perilbus import BrokerSettings, PerilBroker, QueueType
from perilbus.__about__ import __version__
from perilbus.exceptions import PerilBusException
from perilbus.logger import configure_logger

app = typer.Typer(
    name="peril",
    help="Play Peril over a RabbitMQ broker.",
    pretty_exceptions_short=True,
    invoke_without_command=True,
    rich_markup_mode="markdown",
)

AmqpUrlOption = Annotated[
    str | None,
    typer.Option("--amqp-url", help="Broker url. Defaults to PERILBUS_AMQP_URL or the local broker."),
]
LogLevelOption = Annotated[
    LogLevels, typer.Option("--log-level", case_sensitive=False, help="Log level.")
]
LogSerializeOption = Annotated[
    bool, typer.Option("--log-serialize", help="Write the logs as JSON lines.")
]
VersionOption = Annotated[bool, typer.Option("--version", help="Show the version and exit.")]


def _settings(amqp_url: str | None) -> BrokerSettings:
    try:
        return BrokerSettings.from_env(amqp_url=amqp_url)
    except PerilBusException as e:
        rich.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from e


def _read_command() -> str:
    return input("> ")


@app.callback()
def main(ctx: typer.Context, version: VersionOption = False) -> None:
    """
    Display helpful tips when the main command is run without any subcommands.
    """
    if version:
        typer.echo(
            f"Running perilbus {__version__} with {platform.python_implementation()} "
            f"{platform.python_version()} on {platform.system()}",
        )
        raise typer.Exit

    if ctx.invoked_subcommand is None:
        rich.print("\n[bold]Welcome to Peril![/bold]")
        rich.print("\n[bold]Usage[/bold]: [cyan]peril [COMMAND] [ARGS]...[/cyan]")
        rich.print("\n[bold]Common Commands:[/bold]")
        rich.print("  [green]server[/green]  Run the game server.")
        rich.print("  [green]client[/green]  Join the game as a player.")
        rich.print("  [green]help[/green]    Get detailed help for a command.")


@app.command()
def server(
    amqp_url: AmqpUrlOption = None,
    setup: Annotated[
        bool, typer.Option("--setup", help="Declare the exchanges and dead letter queue first.")
    ] = False,
    log_file: Annotated[Path, typer.Option("--log-file", help="Where game logs are written.")] = Path(
        "game.log"
    ),
    log_delay: Annotated[
        float, typer.Option("--log-delay", min=0, help="Seconds spent writing each game log.")
    ] = 1.0,
    log_level: LogLevelOption = LogLevels.info,
    log_serialize: LogSerializeOption = False,
) -> None:
    """Run the game server: pause and resume the game, and record game logs."""
    configure_logger(get_log_level(log_level), log_serialize)
    settings = _settings(amqp_url)
    console = Console()

    try:
        with PerilBroker(settings) as broker:
            console.print("Peril game server connected to the broker!")
            if setup:
                broker.declare_exchanges()

            broker.subscribe_msgpack(
                settings.topic_exchange,
                GAME_LOG_SLUG,
                wildcard(GAME_LOG_SLUG),
                QueueType.DURABLE,
                GameLog,
                handler_log(log_file, delay=log_delay),
            )
            run_server_loop(broker.publisher(settings.direct_exchange), console, _read_command)
    except PerilBusException as e:
        console.print(f"[red]Fatal: {e}[/red]")
        raise typer.Exit(code=1) from e


def _check_username(value: str) -> str:
    value = value.strip()
    if not value or "." in value or " " in value:
        raise typer.BadParameter("the username must be one word without dots")
    return value


@app.command()
def client(
    username: Annotated[
        str,
        typer.Option(
            "--username", prompt="Please enter your username", callback=_check_username
        ),
    ],
    amqp_url: AmqpUrlOption = None,
    log_level: LogLevelOption = LogLevels.warning,
    log_serialize: LogSerializeOption = False,
) -> None:
    """Join the game as a player."""
    configure_logger(get_log_level(log_level), log_serialize)
    settings = _settings(amqp_url)
    console = Console()
    game_state = GameState(username, console=console)

    try:
        with PerilBroker(settings) as broker:
            console.print("Peril game client connected to the broker!")
            topic = broker.publisher(settings.topic_exchange)

            broker.subscribe_json(
                settings.topic_exchange,
                routing_key(ARMY_MOVES_PREFIX, username),
                wildcard(ARMY_MOVES_PREFIX),
                QueueType.TRANSIENT,
                ArmyMove,
                handler_move(game_state, topic),
            )
            broker.subscribe_json(
                settings.direct_exchange,
                routing_key(PAUSE_KEY, username),
                PAUSE_KEY,
                QueueType.TRANSIENT,
                PlayingState,
                handler_pause(game_state),
            )
            broker.subscribe_json(
                settings.topic_exchange,
                WAR_QUEUE,
                wildcard(WAR_RECOGNITIONS_PREFIX),
                QueueType.DURABLE,
                RecognitionOfWar,
                handler_war(game_state, topic),
            )
            run_client_loop(game_state, topic, console, _read_command)
    except PerilBusException as e:
        console.print(f"[red]Fatal: {e}[/red]")
        raise typer.Exit(code=1) from e


@app.command(name="help")
def show_help(ctx: typer.Context) -> None:
    """
    Show this message and exit.
    """
    if ctx.parent:
        rich.print(ctx.parent.get_help())


def execute_app() -> None:
    app()


if __name__ == "__main__":
    execute_app()
