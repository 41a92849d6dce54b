"""
Command-line interface for the worldsync headless client.

Joins a sub-world as a bot, walks the local participant along a movement
pattern and logs everything the session reports. Useful for smoke-testing a
world server and for populating a room during development.
"""

import argparse
import sys
import threading
import time
import tomllib
import uuid
from pathlib import Path

from loguru import logger

from . import __version__
from .config import (
    ConfigurationError,
    DefaultConfigError,
    create_config_from_args,
)
from .logging_utils import configure_logging
from .movement import MovementPattern, create_movement
from .session import SessionSupervisor
from .types import DisconnectReason, Vector3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="worldsync-client",
        description="worldsync headless client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --token dev --sub-world lobby
  %(prog)s --endpoint tcp://192.168.1.100:5555 --token dev --sub-world lobby --pattern figure8
  %(prog)s --token dev --sub-world lobby --say "hello" --duration 30
        """,
    )
    parser.add_argument("--token", required=True, help="Authentication token")
    parser.add_argument("--sub-world", required=True, help="Sub-world id to join")
    parser.add_argument(
        "--uid", default=None, help="Participant id (default: random)"
    )
    parser.add_argument(
        "--endpoint", default=None, help="Server endpoint (default from config)"
    )
    parser.add_argument(
        "--config", type=Path, default=None, help="Path to a TOML config file"
    )
    parser.add_argument(
        "--reporting-interval",
        type=float,
        default=None,
        help="Seconds between state reports (default from config)",
    )
    parser.add_argument(
        "--pattern",
        choices=[p.value for p in MovementPattern],
        default=MovementPattern.CIRCLE.value,
        help="Movement pattern (default: circle)",
    )
    parser.add_argument(
        "--speed", type=float, default=1.0, help="Movement speed (default: 1.0)"
    )
    parser.add_argument(
        "--radius", type=float, default=3.0, help="Movement radius (default: 3.0)"
    )
    parser.add_argument("--say", default=None, help="Chat line to send after joining")
    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Leave after this many seconds (default: run until Ctrl+C)",
    )
    parser.add_argument("--log-dir", type=Path, default=None, help="Directory for the log file")
    parser.add_argument(
        "--log-level-console",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Console log level (default from config)",
    )
    parser.add_argument(
        "--log-json-console", action="store_true", help="Emit console logs as JSON"
    )
    parser.add_argument("--log-rotation", default=None, help="loguru rotation rule")
    parser.add_argument("--log-retention", default=None, help="loguru retention rule")
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
        help="Show version and exit",
    )
    return parser


def _attach_loggers(session: SessionSupervisor) -> None:
    events = session.events
    events.on_joined.add_listener(lambda name: logger.info(f"Joined '{name}'"))
    events.on_chat_message_appended.add_listener(lambda line: logger.info(f"[chat] {line}"))
    events.on_participant_created.add_listener(
        lambda pid, pose, info: logger.info(f"{info.display_name} ({pid}) is here")
    )
    events.on_participant_removed.add_listener(lambda pid: logger.info(f"{pid} is gone"))
    events.on_room_status_changed.add_listener(
        lambda headcount, latency: logger.info(
            f"Room: {headcount} participant(s), latency "
            + (f"{latency:.1f} ms" if latency is not None else "n/a")
        )
    )
    events.on_connect_failed.add_listener(lambda message: logger.error(message))
    events.on_join_failed.add_listener(lambda message: logger.error(message))
    events.on_disconnect_notice.add_listener(lambda message: logger.warning(message))


def run(args: argparse.Namespace) -> int:
    """Run one session to completion. Returns the process exit code."""
    config, overrides = create_config_from_args(args)

    configure_logging(
        log_dir=config.log_dir,
        console_level=config.log_level_console,
        console_json=config.log_json_console,
        rotation=config.log_rotation,
        retention=config.log_retention,
    )
    for override in overrides:
        logger.info(
            f"Config override: {override.key} = {override.new_value!r} "
            f"(default {override.default_value!r})"
        )

    session = SessionSupervisor(config)
    _attach_loggers(session)

    finished = threading.Event()
    session.events.on_connection_lost.add_listener(lambda manual: finished.set())
    # Filled from the I/O thread once the server places the local participant
    spawn_points: list[Vector3] = []
    session.events.on_local_spawned.add_listener(
        lambda pid, pose: spawn_points.append(pose.position)
    )

    uid = args.uid or uuid.uuid4().hex[:12]
    logger.info(f"worldsync-client {__version__}: {uid} -> {config.endpoint}")
    if not session.start(args.token, uid, args.sub_world):
        return 1

    if args.say:
        unsent = session.send_chat(args.say)
        if unsent is not None:
            logger.warning(f"Could not send chat: {unsent!r}")

    movement = create_movement(args.pattern, speed=args.speed, radius=args.radius)
    interval = config.reporting_interval
    started = time.monotonic()
    last = started
    try:
        while not finished.wait(interval):
            now = time.monotonic()
            if spawn_points:
                spawn = spawn_points.pop()
                logger.info(f"Spawned at ({spawn.x:.2f}, {spawn.y:.2f}, {spawn.z:.2f})")
                movement = create_movement(
                    args.pattern, start=spawn, speed=args.speed, radius=args.radius
                )
            position = movement.advance(now - started, now - last)
            last = now
            session.set_local_pose(position=position)
            yaw = movement.heading()
            if yaw is not None:
                session.face_direction(yaw)
                session.set_local_animation_state("walking")
            else:
                session.set_local_animation_state("idle")

            if args.duration is not None and now - started >= args.duration:
                logger.info(f"Duration of {args.duration}s reached")
                break
    except KeyboardInterrupt:
        logger.info("Received interrupt signal (Ctrl+C)...")
    finally:
        session.leave()

    if session.disconnect_reason is DisconnectReason.FORCED:
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return run(args)
    except (ConfigurationError, DefaultConfigError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    except FileNotFoundError as e:
        print(f"ERROR: Config file not found: {e.filename}", file=sys.stderr)
        return 1
    except tomllib.TOMLDecodeError as e:
        print(f"ERROR: Invalid TOML in config file: {e}", file=sys.stderr)
        return 1


def cli_main() -> None:
    """
    Main CLI entry point for the worldsync-client command.

    This function is referenced in pyproject.toml as the console script entry point.
    """
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nClient interrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    cli_main()
