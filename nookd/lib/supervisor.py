# nookd
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
PlaybackSupervisor: owns the audio device and runs both streams.

Each stream runs in its own task wrapped by ``_supervise``, which reports a
failure on a queue instead of letting the task die quietly.  The supervisor
then applies the failure policy:

    exit       shut everything down, process exits 1 (default)
    continue   log it and keep the surviving stream playing

A broken clock is always fatal.

Usage:
    sup = PlaybackSupervisor.from_settings(settings)   # validates selectors
    stop = asyncio.Event()
    code = await sup.run(stop)                         # returns on stop/failure
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime

from .audio import AudioSession, decode
from .catalog import (
    EXTENSION, ORIGIN, AmbianceSelector, CatalogError, CatalogSelector,
)
from .fetch import fetch, open_http_session
from .streams import AmbianceStream, MusicStream, Stream
from .timeslot import ClockError
from .watchdog import sd_notify, watchdog_loop

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1


@dataclass
class StreamFailure:
    name: str
    error: BaseException


class PlaybackSupervisor:
    def __init__(self, selector: CatalogSelector, mood: AmbianceSelector | None = None, *,
                 game_volume=None, rain_volume=None, origin=ORIGIN, extension=EXTENSION,
                 policy="exit", device=None, session_factory=None,
                 http_factory=open_http_session, fetch=fetch, decoder=decode,
                 clock=datetime.now):
        self.selector = selector
        self.mood = mood
        self.game_volume = game_volume
        self.rain_volume = rain_volume
        self.origin = origin
        self.extension = extension
        self.policy = policy
        self.device = device
        self._session_factory = session_factory or AudioSession.open
        self._http_factory = http_factory
        self._fetch = fetch
        self._decoder = decoder
        self._clock = clock
        self.session: AudioSession | None = None
        self.streams: list[Stream] = []
        self.dead: set[str] = set()
        self._failures: asyncio.Queue | None = None

    @classmethod
    def from_settings(cls, settings, **kw) -> "PlaybackSupervisor":
        """Validate selectors and build a supervisor.

        An unknown game raises CatalogError (fatal).  An unknown rain type is
        downgraded to "no ambiance".
        """
        selector = CatalogSelector.parse(settings.game)
        try:
            mood = AmbianceSelector.parse(settings.rain)
        except CatalogError as e:
            log.warning("%s, playing without ambiance", e)
            mood = None
        return cls(
            selector, mood,
            game_volume=settings.game_volume,
            rain_volume=settings.rain_volume,
            origin=settings.origin,
            extension=settings.extension,
            policy=settings.on_stream_failure,
            device=settings.device,
            **kw,
        )

    def status(self) -> str:
        parts = []
        for stream in self.streams:
            text = stream.describe()
            if stream.name in self.dead:
                text += " (dead)"
            parts.append(text)
        return "; ".join(parts) or "starting"

    # ── Lifecycle ──

    async def run(self, stop_event: asyncio.Event) -> int:
        """Play until *stop_event* is set or a stream failure ends the process.

        Raises AudioDeviceError if there is no output device.
        """
        self.session = self._session_factory(self.device)
        self._failures = asyncio.Queue()

        async with self._http_factory() as http:
            async def fetcher(url):
                return await self._fetch(http, url)

            self.streams = self._build_streams(fetcher)
            tasks = [
                asyncio.create_task(self._supervise(s), name=f"nookd-{s.name}")
                for s in self.streams
            ]
            heartbeat = asyncio.create_task(watchdog_loop(self.status))
            try:
                return await self._idle(stop_event)
            finally:
                sd_notify("STOPPING=1")
                for stream in self.streams:
                    stream.stop()
                for task in tasks + [heartbeat]:
                    task.cancel()
                await asyncio.gather(*tasks, heartbeat, return_exceptions=True)
                self.session.stop_all()
                log.info("Playback stopped")

    def _build_streams(self, fetcher) -> list[Stream]:
        common = {"origin": self.origin, "extension": self.extension, "decoder": self._decoder}
        streams: list[Stream] = []
        if self.mood is not None:
            streams.append(AmbianceStream(self.mood, self.session, fetcher,
                                          self.rain_volume, **common))
        else:
            log.info("No ambiance")
        streams.append(MusicStream(self.selector, self.session, fetcher,
                                   self.game_volume, clock=self._clock, **common))
        return streams

    async def _supervise(self, stream: Stream):
        log.info("Starting %s stream", stream.name)
        try:
            await stream.run()
        except Exception as e:
            await self._failures.put(StreamFailure(stream.name, e))
        else:
            await self._failures.put(
                StreamFailure(stream.name, RuntimeError("stream ended unexpectedly")))

    async def _idle(self, stop_event: asyncio.Event) -> int:
        stop = asyncio.ensure_future(stop_event.wait())
        try:
            while True:
                failure = asyncio.ensure_future(self._failures.get())
                done, _ = await asyncio.wait({stop, failure},
                                             return_when=asyncio.FIRST_COMPLETED)
                if stop in done:
                    failure.cancel()
                    log.info("Stop requested")
                    return EXIT_OK
                code = self._on_failure(failure.result())
                if code is not None:
                    return code
        finally:
            if not stop.done():
                stop.cancel()

    def _on_failure(self, failure: StreamFailure) -> int | None:
        """Apply the failure policy.  Returns an exit code to stop, else None."""
        self.dead.add(failure.name)
        if isinstance(failure.error, ClockError):
            log.error("Local clock is broken: %s", failure.error)
            return EXIT_FATAL
        log.error("%s stream failed: %s", failure.name.capitalize(), failure.error)
        if self.policy == "continue":
            alive = [s.name for s in self.streams if s.name not in self.dead]
            log.warning("Continuing with %s", ", ".join(alive) or "no streams")
            return None
        return EXIT_FATAL
