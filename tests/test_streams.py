import asyncio

import pytest

from conftest import FakeSession, RecordingFetch, fixed_clock
from nookd.lib.audio import DecodeError, PlaybackError
from nookd.lib.catalog import ORIGIN, AmbianceSelector, CatalogSelector
from nookd.lib.fetch import FetchError
from nookd.lib.streams import AmbianceStream, MusicStream
from nookd.lib.timeslot import ClockError, TimeSlot

NH_3PM = f"{ORIGIN}/new-horizons/03pm.ogg"


def fetcher_for(recorder):
    async def fetcher(url):
        return await recorder(None, url)
    return fetcher


class CountingDecoder:
    def __init__(self, fail_on=None):
        self.calls = 0
        self.fail_on = fail_on

    def __call__(self, raw):
        self.calls += 1
        if self.calls == self.fail_on:
            raise DecodeError("not an ogg file")
        return ("clip", raw)


def music(session, recorder, clock=fixed_clock(2026, 5, 1, 15, 20), decoder=None,
          name="new-horizons"):
    return MusicStream(CatalogSelector.parse(name), session, fetcher_for(recorder),
                       volume=60, clock=clock, decoder=decoder or CountingDecoder())


# ── Ambiance ──

def test_ambiance_fetches_once_and_replays():
    session = FakeSession(["finished"] * 3 + [PlaybackError("device gone")])
    recorder = RecordingFetch()
    decoder = CountingDecoder()
    stream = AmbianceStream(AmbianceSelector.NO_THUNDER, session, fetcher_for(recorder),
                            volume=30, decoder=decoder)
    with pytest.raises(PlaybackError):
        asyncio.run(stream.run())
    assert recorder.urls == [f"{ORIGIN}/rain/no-thunder-rain.ogg"]
    # Re-decoded for every repeat, always from the same bytes
    assert decoder.calls == 4
    assert stream.plays == 3
    assert all(s.volume == 30 for s in session.sinks)
    assert all(s.clip == ("clip", recorder.urls[0].encode()) for s in session.sinks)


def test_ambiance_fetch_failure_ends_stream():
    session = FakeSession(["finished"])
    recorder = RecordingFetch({"rain": FetchError("HTTP 404")})
    stream = AmbianceStream(AmbianceSelector.NORMAL, session, fetcher_for(recorder))
    with pytest.raises(FetchError):
        asyncio.run(stream.run())
    assert session.sinks == []


def test_ambiance_decode_failure_ends_stream():
    session = FakeSession(["finished"] * 5)
    stream = AmbianceStream(AmbianceSelector.GAME, session, fetcher_for(RecordingFetch()),
                            decoder=CountingDecoder(fail_on=2))
    with pytest.raises(DecodeError):
        asyncio.run(stream.run())
    assert len(session.sinks) == 1


# ── Music ──

def test_music_replays_when_clip_finishes():
    session = FakeSession(["finished", "finished", PlaybackError("device gone")])
    recorder = RecordingFetch()
    stream = music(session, recorder)

    async def never(boundary):
        await asyncio.Event().wait()

    stream._wait_boundary = never
    with pytest.raises(PlaybackError):
        asyncio.run(stream.run())
    # Same hour, refetched each time
    assert recorder.urls == [NH_3PM] * 3
    assert not any(s.stopped for s in session.sinks)
    assert all(s.volume == 60 for s in session.sinks)
    assert stream.slot is TimeSlot.PM_03


def test_music_cuts_clip_at_top_of_hour():
    session = FakeSession(["playing", PlaybackError("stop here")])
    recorder = RecordingFetch()
    readings = iter([
        fixed_clock(2026, 5, 1, 15, 59, 58)(),
        fixed_clock(2026, 5, 1, 16, 0, 0)(),
    ])
    stream = music(session, recorder, clock=lambda: next(readings))
    waited_for = []

    async def turn_now(boundary):
        waited_for.append(boundary)

    stream._wait_boundary = turn_now
    with pytest.raises(PlaybackError):
        asyncio.run(stream.run())
    assert recorder.urls == [NH_3PM, f"{ORIGIN}/new-horizons/04pm.ogg"]
    assert session.sinks[0].stopped
    assert [b.hour for b in waited_for] == [16]


def test_music_boundary_wins_tie():
    session = FakeSession(["finished", PlaybackError("stop here")])
    stream = music(session, RecordingFetch())

    async def turn_now(boundary):
        return boundary

    stream._wait_boundary = turn_now
    with pytest.raises(PlaybackError):
        asyncio.run(stream.run())
    assert session.sinks[0].stopped


def test_music_clock_error_propagates(monkeypatch):
    def broken(now=None):
        raise ClockError("not an hour slot: '13pm'")

    monkeypatch.setattr("nookd.lib.streams.current_slot", broken)
    recorder = RecordingFetch()
    with pytest.raises(ClockError):
        asyncio.run(music(FakeSession(["finished"]), recorder).run())
    assert recorder.urls == []


def test_music_fetch_failure_ends_stream():
    recorder = RecordingFetch({"new-horizons": FetchError("HTTP 503")})
    session = FakeSession(["finished"])
    with pytest.raises(FetchError):
        asyncio.run(music(session, recorder).run())
    assert session.sinks == []


def test_music_pocket_camp_url():
    session = FakeSession([PlaybackError("stop here")])
    recorder = RecordingFetch()
    with pytest.raises(PlaybackError):
        asyncio.run(music(session, recorder, name="pocket-camp",
                          clock=fixed_clock(2026, 5, 1, 0, 10)).run())
    assert recorder.urls == [f"{ORIGIN}/pocket-camp/12am.ogg"]


def test_describe():
    stream = music(FakeSession(), RecordingFetch(), name="wild-world-snowy")
    assert stream.describe() == "music: wild-world-snowy @ --"
    amb = AmbianceStream(AmbianceSelector.NORMAL, FakeSession(), None)
    assert amb.describe() == "ambiance: rain"
