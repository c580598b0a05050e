"""CLI entry point for PushBrotr.

Runs the dispatcher as a host relay write-policy plugin (``notify``) and
offers a few administrative commands over the subscription store.

The ``notify`` command speaks the strfry plugin protocol: one JSON request
per stdin line (``{"type": "new", "event": {...}, ...}``; a bare event
object is accepted too) and one JSON decision per stdout line
(``{"id": ..., "action": "accept", "msg": ""}``). Logging never goes to
stdout.

Examples:
    ```bash
    python -m pushbrotr setup
    python -m pushbrotr register <pubkey> <device-token>
    python -m pushbrotr devices <pubkey>
    python -m pushbrotr status <event-id>
    python -m pushbrotr notify --log-file /var/log/pushbrotr.log --no-console
    ```
"""

import argparse
import asyncio
import json
import signal
import sys
import threading
import time
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any, TextIO

from pushbrotr.core import MetricsServer, SubscriptionStore, setup_logging
from pushbrotr.core.exceptions import PushBrotrError
from pushbrotr.core.logger import Logger
from pushbrotr.core.yaml import load_yaml
from pushbrotr.models import Note
from pushbrotr.services.dispatcher import (
    Dispatcher,
    DispatcherConfig,
    MutePolicy,
    PushNotifyFilter,
)
from pushbrotr.utils.apns import ApnsGateway
from pushbrotr.utils.mute import NullMutePolicy, RelayMutePolicy


CONFIG_BASE = Path("config")
STORE_CONFIG = CONFIG_BASE / "store.yaml"
DISPATCHER_CONFIG = CONFIG_BASE / "dispatcher.yaml"

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130

logger = Logger("cli")


# ---------------------------------------------------------------------------
# Arguments
# ---------------------------------------------------------------------------


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="pushbrotr",
        description="PushBrotr push notification dispatcher",
    )
    parser.add_argument(
        "--store-config",
        type=Path,
        default=STORE_CONFIG,
        help=f"Store config path (default: {STORE_CONFIG})",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DISPATCHER_CONFIG,
        help=f"Dispatcher config path (default: {DISPATCHER_CONFIG})",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Log level (default: INFO)",
    )
    parser.add_argument("--log-file", type=Path, help="Also log to this file")
    parser.add_argument(
        "--no-console",
        action="store_true",
        help="Do not log to stderr",
    )
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("setup", help="Create or migrate the database schema")

    register = commands.add_parser("register", help="Register a device token for a pubkey")
    register.add_argument("pubkey")
    register.add_argument("device_token")

    unregister = commands.add_parser("unregister", help="Remove a device token of a pubkey")
    unregister.add_argument("pubkey")
    unregister.add_argument("device_token")

    devices = commands.add_parser("devices", help="List the device tokens of a pubkey")
    devices.add_argument("pubkey")

    status = commands.add_parser("status", help="Show who was notified about an event")
    status.add_argument("event_id")

    notify = commands.add_parser("notify", help="Run as a host relay write-policy plugin")
    notify.add_argument(
        "--input",
        type=Path,
        help="Read requests from this file instead of stdin",
    )
    notify.add_argument(
        "--reject",
        action="store_true",
        help="Reject every note after submitting it for dispatch",
    )

    return parser.parse_args(argv)


def _load_yaml_dict(path: Path) -> dict[str, Any]:
    """Load a YAML file as a dict, returning ``{}`` if the file does not exist."""
    if not path.exists():
        logger.warning("config_not_found", path=str(path))
        return {}
    return load_yaml(path)


# ---------------------------------------------------------------------------
# Store Commands
# ---------------------------------------------------------------------------


async def run_store_command(args: argparse.Namespace, store: SubscriptionStore, out: TextIO) -> int:
    """Run one of the administrative commands against an open store."""
    if args.command == "setup":
        logger.info("schema_ready")
    elif args.command == "register":
        await store.upsert_device(args.pubkey, args.device_token, int(time.time()))
        logger.info("device_registered", pubkey=args.pubkey)
    elif args.command == "unregister":
        removed = await store.remove_device(args.pubkey, args.device_token)
        logger.info("device_unregistered", pubkey=args.pubkey, removed=removed)
        if not removed:
            return EXIT_FAILURE
    elif args.command == "devices":
        for device in await store.fetch_devices(args.pubkey):
            out.write(f"{device.device_token}\t{device.added_at}\n")
    elif args.command == "status":
        status = await store.notification_status(args.event_id)
        out.write(json.dumps(dict(status), sort_keys=True) + "\n")
    return EXIT_OK


# ---------------------------------------------------------------------------
# Plugin Loop
# ---------------------------------------------------------------------------


def parse_request(line: str) -> tuple[str | None, Note | None]:
    """Parse one plugin request line into ``(event_id, note)``.

    The event id is returned whenever it can be recovered, so the caller
    can still answer the host relay when the note itself is invalid.
    """
    try:
        data = json.loads(line)
    except ValueError:
        return None, None
    if isinstance(data, dict) and isinstance(data.get("event"), dict):
        data = data["event"]
    if not isinstance(data, dict):
        return None, None

    event_id = data.get("id") if isinstance(data.get("id"), str) else None
    try:
        return event_id, Note.from_dict(data)
    except (ValueError, TypeError) as e:
        logger.warning("invalid_note", event_id=event_id, error=str(e))
        return event_id, None


async def read_lines(stream: TextIO) -> AsyncIterator[str]:
    """Yield lines from a blocking text stream without blocking the loop.

    Reads happen on a daemon thread, so an idle stream never holds up the
    event loop or interpreter exit. Read errors are re-raised here.
    """
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[str | Exception] = asyncio.Queue()

    def put(item: str | Exception) -> bool:
        try:
            loop.call_soon_threadsafe(queue.put_nowait, item)
        except RuntimeError:  # event loop closed
            return False
        return True

    def pump() -> None:
        try:
            for line in iter(stream.readline, ""):
                if not put(line):
                    return
        except (OSError, ValueError) as e:
            put(e)
        else:
            put("")

    threading.Thread(target=pump, name="plugin-input", daemon=True).start()
    while True:
        item = await queue.get()
        if isinstance(item, Exception):
            raise item
        if not item:
            return
        yield item


async def _next_line(lines: AsyncIterator[str]) -> str | None:
    try:
        return await anext(lines)
    except StopAsyncIteration:
        return None


async def run_plugin(
    plugin: PushNotifyFilter,
    dispatcher: Dispatcher,
    lines: AsyncIterator[str],
    out: TextIO,
) -> int:
    """Answer every request in *lines* until EOF or a shutdown request.

    A shutdown request ends the loop even while no input is pending. A line
    that arrives together with the request is still answered.

    Returns:
        Number of requests answered.
    """
    answered = 0
    shutdown = asyncio.ensure_future(dispatcher.wait())
    try:
        while dispatcher.is_running:
            read = asyncio.ensure_future(_next_line(lines))
            await asyncio.wait({read, shutdown}, return_when=asyncio.FIRST_COMPLETED)
            if not read.done():
                read.cancel()
                logger.info("input_abandoned", reason="shutdown")
                break
            line = read.result()
            if line is None:
                break
            if not line.strip():
                continue
            event_id, note = parse_request(line)
            if event_id is None:
                logger.warning("invalid_request", line=line.strip())
                continue
            decision = (
                plugin.filter_note(note) if note is not None else plugin.decision_for(event_id)
            )
            out.write(json.dumps(decision.to_dict()) + "\n")
            out.flush()
            answered += 1
    finally:
        shutdown.cancel()
    return answered


def build_mute_policy(config: DispatcherConfig) -> MutePolicy:
    if not config.mute.enabled:
        return NullMutePolicy()
    return RelayMutePolicy(config.mute)


async def run_notify(
    args: argparse.Namespace,
    store: SubscriptionStore,
    service_dict: dict[str, Any],
    out: TextIO,
) -> int:
    """Run the dispatcher behind the plugin protocol until stdin closes."""
    config = DispatcherConfig(**service_dict)
    gateway = ApnsGateway(config.apns)
    mute_policy = build_mute_policy(config)
    dispatcher = Dispatcher(store=store, mute_policy=mute_policy, gateway=gateway, config=config)
    plugin = PushNotifyFilter(dispatcher, reject=args.reject)

    def handle_signal(sig: signal.Signals) -> None:
        logger.info("shutdown_signal", signal=sig.name)
        dispatcher.request_shutdown()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal, sig)

    metrics_server = MetricsServer(config.metrics)
    await metrics_server.start()
    if metrics_server.is_running:
        logger.info(
            "metrics_server_started",
            host=config.metrics.host,
            port=config.metrics.port,
            path=config.metrics.path,
        )

    try:
        async with gateway:
            if isinstance(mute_policy, RelayMutePolicy):
                await mute_policy.connect()
            try:
                async with dispatcher:
                    if args.input is not None:
                        with args.input.open(encoding="utf-8") as stream:
                            answered = await run_plugin(
                                plugin, dispatcher, read_lines(stream), out
                            )
                    else:
                        answered = await run_plugin(plugin, dispatcher, read_lines(sys.stdin), out)
                    logger.info("input_closed", answered=answered)
            finally:
                if isinstance(mute_policy, RelayMutePolicy):
                    await mute_policy.close()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        await metrics_server.stop()
    return EXIT_OK


# ---------------------------------------------------------------------------
# Entry Points
# ---------------------------------------------------------------------------


async def main(argv: list[str] | None = None, out: TextIO | None = None) -> int:
    """Main entry point: parse args, set up logging and run the command."""
    args = parse_args(argv)
    out = out if out is not None else sys.stdout
    setup_logging(
        args.log_level,
        log_file=args.log_file,
        console=not args.no_console,
        json_output=args.json_logs,
    )

    try:
        store_dict = _load_yaml_dict(args.store_config)
        service_dict = _load_yaml_dict(args.config)
        store = SubscriptionStore.from_dict(store_dict)

        if args.command == "notify":
            return await run_notify(args, store, service_dict, out)

        async with store:
            return await run_store_command(args, store, out)
    except KeyboardInterrupt:
        logger.info("interrupted")
        return EXIT_INTERRUPTED
    except (PushBrotrError, ValueError, OSError) as e:
        logger.error(f"{args.command}_failed", error=str(e), error_type=type(e).__name__)
        return EXIT_FAILURE


def cli() -> None:
    """Synchronous entry point for console_scripts."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
