import asyncio
from datetime import datetime

import pytest

from nookd.lib import config


class FakeSink:
    """Stands in for audio.Sink; finishes only when told to."""

    def __init__(self, clip, volume, finished=False):
        self.clip = clip
        self.volume = volume
        self.stopped = False
        self._done = asyncio.Event()
        if finished:
            self._done.set()

    @property
    def finished(self):
        return self._done.is_set()

    def finish(self):
        self._done.set()

    async def wait(self):
        await self._done.wait()

    def stop(self):
        self.stopped = True
        self._done.set()


class FakeSession:
    """Stands in for audio.AudioSession.

    *script* is a list of actions, one per play() call: "finished" returns a
    sink that has already played out, "playing" one that never ends, and an
    exception instance is raised.  Once the script runs out, play() raises
    RuntimeError so loops terminate.
    """

    def __init__(self, script=(), on_play=None):
        self.script = list(script)
        self.sinks = []
        self.on_play = on_play
        self.stopped_all = False

    def play(self, clip, volume=None):
        if not self.script:
            raise RuntimeError("script exhausted")
        action = self.script.pop(0)
        if isinstance(action, BaseException):
            raise action
        sink = FakeSink(clip, volume, finished=(action == "finished"))
        self.sinks.append(sink)
        if self.on_play:
            self.on_play(clip, sink)
        return sink

    def stop_all(self):
        self.stopped_all = True


class FakeHttp:
    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class RecordingFetch:
    """fetch(session, url) replacement that records URLs."""

    def __init__(self, failures=None):
        self.urls = []
        self.failures = failures or {}

    async def __call__(self, http, url):
        self.urls.append(url)
        for fragment, error in self.failures.items():
            if fragment in url:
                raise error
        return url.encode()


def fixed_clock(*args):
    moment = datetime(*args)
    return lambda: moment


@pytest.fixture(autouse=True)
def no_config(monkeypatch, tmp_path):
    """Keep tests away from any config.json on the machine."""
    monkeypatch.setattr(config, "_SEARCH_PATHS", [str(tmp_path / "missing.json")])
    monkeypatch.delenv("NOOKD_CONFIG", raising=False)
    monkeypatch.delenv("NOTIFY_SOCKET", raising=False)
    config.reload_config()
    yield
    config.reload_config()
