"""Command-line entry point for playctrl."""

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence

from playctrl import __version__
from playctrl.api.protocol import COMMAND_TYPES, Command, command_from_dict
from playctrl.core.bus import CommandBus
from playctrl.core.config import ConfigManager
from playctrl.core.probe import probe
from playctrl.core.reconnector import Reconnector
from playctrl.core.registry import ServerRegistry, validate_endpoint
from playctrl.core.scanner import Scanner, build_addresses
from playctrl.errors import NotConnectedError
from playctrl.models.connection import ConnectionPhase, ConnectionState
from playctrl.models.media_status import MediaStatus
from playctrl.models.server import format_last_seen

logger = logging.getLogger(__name__)

# Command type -> (payload field, value parser) for commands taking a value
_COMMAND_VALUES: dict[str, tuple[str, type]] = {
    "seek": ("position", float),
    "skip-forward": ("amount", float),
    "skip-backward": ("amount", float),
    "set-volume": ("volume", int),
}

# Seconds `send` waits for the connection before giving up
_SEND_CONNECT_TIMEOUT = 10.0


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="playctrl",
        description="playctrl - find and control media-player servers",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config", metavar="PATH", help="INI settings file (default: native store)"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("probe", help="check whether a compatible server answers")
    p.add_argument("host")
    p.add_argument("port", nargs="?", type=int, default=None)

    p = sub.add_parser("scan", help="scan PREFIX.START .. PREFIX.END for servers")
    p.add_argument("prefix", help="network prefix, e.g. 192.168.1")
    p.add_argument("start", type=int)
    p.add_argument("end", type=int)
    p.add_argument("--port", type=int, default=None)

    sub.add_parser("servers", help="list known servers")

    p = sub.add_parser("forget", help="remove a known server")
    p.add_argument("host")
    p.add_argument("port", nargs="?", type=int, default=None)

    p = sub.add_parser("watch", help="connect and print status until interrupted")
    p.add_argument("host", nargs="?", default=None)
    p.add_argument("port", nargs="?", type=int, default=None)

    p = sub.add_parser("send", help="send one command to a server")
    p.add_argument("name", choices=sorted(COMMAND_TYPES), metavar="COMMAND")
    p.add_argument("value", nargs="?", default=None)
    p.add_argument("--host", default=None)
    p.add_argument("--port", type=int, default=None)

    return parser


def parse_command(name: str, value: str | None) -> Command:
    """Build a command from its CLI name and optional value.

    Raises:
        ValueError: If a value is missing, unexpected, or not a number.
    """
    data: dict[str, object] = {"type": name}
    spec = _COMMAND_VALUES.get(name)
    if spec is None:
        if value is not None:
            raise ValueError(f"{name} takes no value")
    elif value is not None:
        field_name, parse = spec
        data[field_name] = parse(value)
    elif name in ("seek", "set-volume"):
        raise ValueError(f"{name} needs a value")
    return command_from_dict(data)


def format_status(status: MediaStatus) -> str:
    """Render a one-line playback summary."""
    if not status.has_media:
        return "No media"
    state = "paused" if status.paused else "playing"
    volume = "muted" if status.muted else f"vol {status.volume}%"
    return (
        f"[{state}] {status.title}  {status.time_formatted}/{status.duration_formatted}"
        f"  {volume}  x{status.speed:g}"
    )


def check_arguments(args: argparse.Namespace) -> None:
    """Validate subcommand input before any I/O starts.

    The parsed command for ``send`` is stored as ``args.message``.

    Raises:
        ValueError: If a command value, scan range or port is malformed.
    """
    if args.command == "send":
        args.message = parse_command(args.name, args.value)
    elif args.command == "scan":
        build_addresses(args.prefix, args.start, args.end)
        if args.port is not None:
            validate_endpoint(args.prefix, args.port)


def _registry(args: argparse.Namespace) -> ServerRegistry:
    registry = ServerRegistry(ConfigManager(path=args.config))
    registry.load(check=False)
    return registry


def _target(registry: ServerRegistry, host: str | None, port: int | None) -> tuple[str, int]:
    if host is None:
        address, default_port = registry.default_target()
        return address, port or default_port
    return host, port or registry.config.get_default_port()


# -- Subcommands ---------------------------------------------------------------


async def cmd_probe(args: argparse.Namespace) -> int:
    config = ConfigManager(path=args.config)
    port = args.port or config.get_default_port()
    outcome = await probe(
        args.host,
        port,
        config.get_probe_timeout(),
        identify_timeout=config.get_identify_timeout(),
        application_id=config.get_application_id(),
    )
    if outcome.is_compatible:
        print(f"{args.host}:{port} compatible ({outcome.name})")
        return 0
    print(f"{args.host}:{port} {outcome.result.value}: {outcome.detail}")
    return 1


async def cmd_scan(args: argparse.Namespace) -> int:
    registry = _registry(args)
    scanner = Scanner.from_registry(registry)
    port = args.port or registry.config.get_default_port()
    async for result in scanner.scan(args.prefix, args.start, args.end, port):
        if result.outcome.is_compatible:
            print(f"{result.address}:{result.port}  {result.outcome.name}")
        else:
            logger.debug("%s: %s", result.address, result.outcome.result.value)
    summary = scanner.summary
    print(
        f"{summary.total} probed: {summary.compatible} compatible, "
        f"{summary.non_compatible} other, {summary.unreachable} unreachable"
    )
    return 0 if summary.compatible else 1


async def cmd_servers(args: argparse.Namespace) -> int:
    registry = _registry(args)
    records = sorted(
        registry.list_servers(),
        key=lambda r: r.last_seen.timestamp() if r.last_seen else 0.0,
        reverse=True,
    )
    if not records:
        print("No known servers")
        return 0
    for record in records:
        seen = format_last_seen(record.last_seen) if record.last_seen else "never"
        print(f"{record.endpoint:<28} {record.status.value:<9} {seen:<10} {record.name}")
    return 0


async def cmd_forget(args: argparse.Namespace) -> int:
    registry = _registry(args)
    port = args.port or registry.config.get_default_port()
    if registry.remove(args.host, port):
        print(f"Removed {args.host}:{port}")
        return 0
    print(f"Unknown server {args.host}:{port}")
    return 1


async def cmd_watch(args: argparse.Namespace) -> int:
    registry = _registry(args)
    bus = CommandBus(Reconnector.from_registry(registry), registry)
    gave_up = asyncio.Event()

    def on_state(state: ConnectionState) -> None:
        print(f"-- {state.describe()}")
        if state.gave_up:
            gave_up.set()

    bus.on_connection_state_change(on_state)
    bus.on_status(lambda status: print(format_status(status)))
    bus.server_identified.connect(lambda name: print(f"-- Connected to {name}"))

    address, port = _target(registry, args.host, args.port)
    bus.connect_to(address, port)
    try:
        await gave_up.wait()
    finally:
        bus.disconnect_server()
        await bus.reconnector.aclose()
    return 1


async def cmd_send(args: argparse.Namespace) -> int:
    command: Command = args.message
    registry = _registry(args)
    bus = CommandBus(Reconnector.from_registry(registry), registry)
    address, port = _target(registry, args.host, args.port)
    bus.connect_to(address, port)
    try:
        connected = await bus.reconnector.wait_for_phase(
            ConnectionPhase.CONNECTED, _SEND_CONNECT_TIMEOUT
        )
        if not connected:
            print(f"Could not connect to {address}:{port}")
            return 1
        await bus.send_command(command)
    except NotConnectedError as e:
        print(f"Command not delivered: {e}")
        return 1
    finally:
        await bus.reconnector.aclose()
    print(f"Sent {command.TYPE} to {address}:{port}")
    return 0


_COMMANDS = {
    "probe": cmd_probe,
    "scan": cmd_scan,
    "servers": cmd_servers,
    "forget": cmd_forget,
    "watch": cmd_watch,
    "send": cmd_send,
}


def main(argv: Sequence[str] | None = None) -> int:
    """Run the playctrl command line.

    Returns:
        Exit code (0 for success).
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        check_arguments(args)
    except ValueError as e:
        parser.error(str(e))

    try:
        return asyncio.run(_COMMANDS[args.command](args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
