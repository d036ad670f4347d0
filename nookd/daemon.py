#!/usr/bin/env python3
# nookd
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
nookd — hourly game music with rain ambiance, as a background service.

Plays the soundtrack for the current hour, switching at the top of every
hour, with an optional rain loop underneath.  By default it detaches from the
terminal and replaces any nookd already running on this host.

    nookd -g new-horizons-rainy --game-volume 60 -r no-thunder
    nookd -g pocket-camp -r none --no-daemon

Exit codes:
    0   stopped by SIGTERM/SIGINT, lock file removed
    1   startup failure (bad name, no audio device, lock problem) or a
        stream failure under --on-stream-failure=exit
    2   stopped by signal but the lock file could not be removed
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from dataclasses import dataclass

from . import __version__
from .lib.audio import AudioDeviceError
from .lib.catalog import EXTENSION, ORIGIN, CatalogError, ambiance_names, catalog_names
from .lib.config import FAILURE_POLICIES, cfg
from .lib.lockfile import LOCK_PATH, SingletonLock, daemonize
from .lib.supervisor import EXIT_FATAL, EXIT_OK, PlaybackSupervisor

logger = logging.getLogger("nookd")

EXIT_LOCK_CLEANUP = 2

# Detaching and the lock file are Linux-only; elsewhere we stay in the foreground
SUPPORTS_DAEMON = sys.platform.startswith("linux")

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


@dataclass
class Settings:
    game: str
    game_volume: float | None = None
    rain: str = "normal"
    rain_volume: float | None = None
    foreground: bool = False
    lock_file: str = LOCK_PATH
    on_stream_failure: str = "exit"
    origin: str = ORIGIN
    extension: str = EXTENSION
    device: str | int | None = None
    log_level: str = "INFO"
    log_file: str | None = None


# ---------------------------------------------------------------------------
# Command line
# ---------------------------------------------------------------------------
def _volume(text: str) -> float:
    try:
        value = float(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {text!r}") from None
    if not 0 <= value <= 100:
        raise argparse.ArgumentTypeError("volume goes 0 - 100")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nookd",
        description="Hourly game music with rain ambiance, as a background service.",
        epilog="Run with --list to see every game and rain type.",
    )
    parser.add_argument("-g", "--game", help="the game you want to play the music from")
    parser.add_argument("--game-volume", type=_volume, metavar="N", help="goes 0 - 100")
    parser.add_argument("-r", "--rain", help="the type of rain you want, if any (default: normal)")
    parser.add_argument("--rain-volume", type=_volume, metavar="N", help="goes 0 - 100")
    parser.add_argument("--no-daemon", action="store_true",
                        help="stay in the foreground (no lock file, no takeover)")
    parser.add_argument("--lock-file", metavar="PATH",
                        help=f"single-instance lock file (default: {LOCK_PATH})")
    parser.add_argument("--on-stream-failure", choices=FAILURE_POLICIES,
                        help="what to do when the music or rain stream dies (default: exit)")
    parser.add_argument("--debug", action="store_true", help="verbose logging")
    parser.add_argument("--list", action="store_true", help="list games and rain types, then exit")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def parse_settings(argv=None) -> Settings:
    """Merge command-line flags over config.json over built-in defaults."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.list:
        print("Games:")
        for name in catalog_names():
            print(f"    - {name}")
        print("Rain types:")
        for name in ambiance_names():
            print(f"    - {name}")
        parser.exit(0)

    game = args.game or cfg("playback", "game")
    if not game:
        parser.error("a game is required (-g), e.g. -g new-horizons; see --list")

    policy = args.on_stream_failure or cfg("playback", "on_stream_failure", default="exit")
    if policy not in FAILURE_POLICIES:
        policy = "exit"

    if args.debug:
        level = "DEBUG"
    else:
        level = cfg("log", "level", default=os.getenv("LOG_LEVEL", "INFO"))

    return Settings(
        game=game,
        game_volume=_first(args.game_volume, cfg("playback", "game_volume")),
        rain=args.rain or cfg("playback", "rain", default="normal"),
        rain_volume=_first(args.rain_volume, cfg("playback", "rain_volume")),
        foreground=args.no_daemon,
        lock_file=args.lock_file or cfg("daemon", "lock_file", default=LOCK_PATH),
        on_stream_failure=policy,
        origin=cfg("content", "origin", default=ORIGIN),
        extension=cfg("content", "extension", default=EXTENSION),
        device=cfg("audio", "device"),
        log_level=str(level).upper(),
        log_file=cfg("log", "file"),
    )


def _first(*values):
    for value in values:
        if value is not None:
            return value
    return None


def setup_logging(settings: Settings):
    level = getattr(logging, settings.log_level, logging.INFO)
    handlers = [logging.StreamHandler()]
    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file))
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATEFMT,
                        handlers=handlers, force=True)


# ---------------------------------------------------------------------------
# Service lifecycle
# ---------------------------------------------------------------------------
async def serve(supervisor: PlaybackSupervisor) -> int:
    """Run the supervisor until SIGTERM/SIGINT.  Returns its exit code."""
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)
    return await supervisor.run(stop_event)


def shutdown_code(code: int, lock: SingletonLock | None) -> int:
    """Release the lock (daemon mode) and pick the final exit code."""
    if lock is None:
        return code
    released = lock.release()
    if code == EXIT_OK and not released:
        return EXIT_LOCK_CLEANUP
    return code


def run(settings: Settings) -> int:
    try:
        # Validated before detaching so the operator sees the diagnostic
        supervisor = PlaybackSupervisor.from_settings(settings)
    except CatalogError as e:
        print(f"nookd: {e} (see --list)", file=sys.stderr)
        return EXIT_FATAL

    lock = None
    if not settings.foreground:
        if SUPPORTS_DAEMON:
            lock = SingletonLock(settings.lock_file)
            daemonize(lock)
        else:
            logger.info("Daemon mode not supported on %s, running in foreground", sys.platform)

    logger.info("nookd %s: %s, rain %s", __version__, supervisor.selector,
                supervisor.mood.option if supervisor.mood else "none")
    try:
        code = asyncio.run(serve(supervisor))
    except AudioDeviceError as e:
        logger.error("Cannot start playback: %s", e)
        code = EXIT_FATAL
    return shutdown_code(code, lock)


def main(argv=None):
    settings = parse_settings(argv)
    setup_logging(settings)
    sys.exit(run(settings))


if __name__ == "__main__":
    main()
