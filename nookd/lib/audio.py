# nookd
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Local audio output via PortAudio (sounddevice) and libsndfile (soundfile).

One AudioSession per process wraps the chosen output device.  Every clip gets
its own Sink (a callback-driven OutputStream) so the music and rain streams
never share a buffer; the OS mixer combines them.

Usage:
    session = AudioSession.open()
    clip = decode(raw_bytes)                 # CPU-bound, run in executor
    sink = session.play(clip, volume=40)     # must be called on the loop
    await sink.wait()                        # resumes when the clip ends
"""

import asyncio
import io
import logging
from dataclasses import dataclass

import numpy as np
import soundfile as sf

try:
    import sounddevice as sd
    _SD_ERROR = None
except OSError as e:
    # PortAudio shared library missing (e.g. libportaudio2 not installed)
    sd = None
    _SD_ERROR = e

log = logging.getLogger(__name__)


class AudioDeviceError(RuntimeError):
    """No usable audio output on this host."""


class DecodeError(RuntimeError):
    """Downloaded bytes are not a playable audio file."""


class PlaybackError(RuntimeError):
    """The output stream could not be started."""


@dataclass
class Clip:
    samples: np.ndarray   # float32, shape (frames, channels)
    samplerate: int

    @property
    def channels(self) -> int:
        return self.samples.shape[1]

    @property
    def duration(self) -> float:
        return len(self.samples) / self.samplerate


def decode(raw: bytes) -> Clip:
    """Decode a whole file held in memory."""
    try:
        samples, samplerate = sf.read(io.BytesIO(raw), dtype="float32", always_2d=True)
    except RuntimeError as e:
        raise DecodeError(str(e)) from e
    return Clip(samples, samplerate)


def volume_gain(volume: float | None) -> float:
    """Map a 0-100 volume to a linear gain, clamped to that range.

    None leaves the clip untouched.
    """
    if volume is None:
        return 1.0
    return min(max(0.0, float(volume)), 100.0) / 100.0


class Sink:
    """A single clip playing on the output device."""

    def __init__(self, clip: Clip, volume: float | None, device=None):
        self._loop = asyncio.get_running_loop()
        self._done = asyncio.Event()
        self._pos = 0
        self._closed = False
        gain = volume_gain(volume)
        self._samples = clip.samples if gain == 1.0 else clip.samples * np.float32(gain)
        self._stream = sd.OutputStream(
            samplerate=clip.samplerate,
            channels=clip.channels,
            dtype="float32",
            device=device,
            callback=self._callback,
            finished_callback=self._finished,
        )
        try:
            self._stream.start()
        except Exception:
            self._close()
            raise

    # PortAudio thread
    def _callback(self, outdata, frames, time, status):
        if status:
            log.debug("Output status: %s", status)
        chunk = self._samples[self._pos:self._pos + frames]
        n = len(chunk)
        outdata[:n] = chunk
        self._pos += n
        if n < frames:
            outdata[n:] = 0
            raise sd.CallbackStop

    # PortAudio thread
    def _finished(self):
        if not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._done.set)

    @property
    def finished(self) -> bool:
        return self._done.is_set()

    async def wait(self):
        """Suspend until the clip has played out (or the sink was stopped)."""
        await self._done.wait()
        self._close()

    def stop(self):
        """Cut the clip short."""
        self._close()
        self._done.set()

    def _close(self):
        if self._closed:
            return
        self._closed = True
        self._stream.close(ignore_errors=True)


class AudioSession:
    """Shared handle on the output device."""

    def __init__(self, device=None, name: str = "default"):
        self.device = device
        self.name = name
        self._sinks: set[Sink] = set()

    @classmethod
    def open(cls, device=None) -> "AudioSession":
        if sd is None:
            raise AudioDeviceError(f"PortAudio unavailable: {_SD_ERROR}")
        try:
            info = sd.query_devices(device, kind="output")
        except (sd.PortAudioError, ValueError) as e:
            raise AudioDeviceError(f"no usable audio output: {e}") from e
        log.info("Audio output: %s (%d ch, %.0f Hz)",
                 info["name"], info["max_output_channels"], info["default_samplerate"])
        return cls(device, info["name"])

    def play(self, clip: Clip, volume: float | None = None) -> Sink:
        try:
            sink = Sink(clip, volume, self.device)
        except sd.PortAudioError as e:
            raise PlaybackError(str(e)) from e
        self._sinks = {s for s in self._sinks if not s.finished}
        self._sinks.add(sink)
        return sink

    def stop_all(self):
        for sink in self._sinks:
            sink.stop()
        self._sinks.clear()
