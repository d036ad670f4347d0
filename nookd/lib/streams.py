# nookd
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
The two playback loops: rain ambiance and hourly music.

Both follow the same fetch, decode, play, wait cycle and never return on
their own.  Any failure propagates out of ``run()``; the supervisor decides
what happens next.

    AmbianceStream   fetch once, then replay the same clip forever
    MusicStream      pick the track for the current hour, play it, and
                     switch at the top of the hour even mid-clip

Subclass contract:

    class MyStream(Stream):
        name = "mine"

        async def run(self): ...
        def describe(self) -> str: ...
"""

import asyncio
import logging
from datetime import datetime

from .audio import Sink, decode
from .catalog import (
    EXTENSION, ORIGIN, AmbianceSelector, CatalogSelector, ambiance_url, catalog_url,
)
from .timeslot import TimeSlot, current_slot, next_boundary, sleep_until_boundary

log = logging.getLogger(__name__)


class Stream:
    name: str = ""

    def __init__(self, session, fetcher, volume=None, *, origin=ORIGIN,
                 extension=EXTENSION, decoder=decode):
        self._session = session
        self._fetch = fetcher
        self._decoder = decoder
        self.volume = volume
        self.origin = origin
        self.extension = extension
        self.sink: Sink | None = None

    async def run(self):
        raise NotImplementedError

    def describe(self) -> str:
        return self.name

    def stop(self):
        """Cut whatever is playing.  Used during shutdown."""
        if self.sink:
            self.sink.stop()
            self.sink = None

    async def _decode(self, raw: bytes):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._decoder, raw)

    async def _start(self, raw: bytes):
        clip = await self._decode(raw)
        self.sink = self._session.play(clip, self.volume)
        return self.sink


class AmbianceStream(Stream):
    name = "ambiance"

    def __init__(self, mood: AmbianceSelector, session, fetcher, volume=None, **kw):
        super().__init__(session, fetcher, volume, **kw)
        self.mood = mood
        self.plays = 0

    def describe(self) -> str:
        return f"ambiance: {self.mood}"

    async def run(self):
        # The mood never changes, so the bytes are fetched exactly once
        url = ambiance_url(self.mood, self.origin, self.extension)
        raw = await self._fetch(url)
        log.info("Ambiance '%s' ready, looping", self.mood.option)
        while True:
            sink = await self._start(raw)
            self.plays += 1
            await sink.wait()


class MusicStream(Stream):
    name = "music"

    def __init__(self, selector: CatalogSelector, session, fetcher, volume=None, *,
                 clock=datetime.now, **kw):
        super().__init__(session, fetcher, volume, **kw)
        self.selector = selector
        self.slot: TimeSlot | None = None
        self._clock = clock

    def describe(self) -> str:
        return f"music: {self.selector} @ {self.slot or '--'}"

    async def run(self):
        while True:
            now = self._clock()
            # ClockError is fatal; let it through untouched
            self.slot = current_slot(now)
            boundary = next_boundary(now)
            url = catalog_url(self.selector, self.slot, self.origin, self.extension)
            raw = await self._fetch(url)
            sink = await self._start(raw)
            log.info("Playing %s %s", self.selector, self.slot)
            await self._wait(sink, boundary)

    async def _wait(self, sink, boundary: datetime):
        """Return when the clip ends or the hour turns, whichever is first.

        The hour turning wins a tie and cuts the clip.
        """
        clip_end = asyncio.ensure_future(sink.wait())
        hour_turn = asyncio.ensure_future(self._wait_boundary(boundary))
        try:
            done, _ = await asyncio.wait({clip_end, hour_turn},
                                         return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (clip_end, hour_turn):
                if not task.done():
                    task.cancel()
        if hour_turn in done:
            log.info("Top of the hour, switching track")
            sink.stop()
        else:
            log.debug("Clip finished, replaying %s", self.slot)

    async def _wait_boundary(self, boundary: datetime):
        await sleep_until_boundary(self._clock, boundary)
