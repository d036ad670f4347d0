# nookd
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Wall-clock hour slots.

Every hour of the day has its own music track.  The track folder on the CDN
is keyed by a two-digit 12-hour clock plus a lowercase meridiem ("03pm"),
which is exactly what ``current_slot()`` returns.

The hour boundary is polled, not pushed: ``is_slot_boundary()`` answers for a
given instant, and ``sleep_until_boundary()`` suspends until the clock has
reached the next top of the hour.
"""

import asyncio
from datetime import datetime, timedelta
from enum import Enum

# Longest single sleep while waiting for a wall-clock instant
MAX_NAP = 60.0


class ClockError(RuntimeError):
    """The local clock produced an hour that maps to no slot."""


class DayPeriod(Enum):
    """Coarse time-of-day label.  Informational only, never part of a URL."""

    MORNING = "morning"
    DAY = "day"
    EVENING = "evening"
    NIGHT = "night"


class TimeSlot(Enum):
    AM_01 = "01am"
    AM_02 = "02am"
    AM_03 = "03am"
    AM_04 = "04am"
    AM_05 = "05am"
    AM_06 = "06am"
    AM_07 = "07am"
    AM_08 = "08am"
    AM_09 = "09am"
    AM_10 = "10am"
    AM_11 = "11am"
    AM_12 = "12am"
    PM_01 = "01pm"
    PM_02 = "02pm"
    PM_03 = "03pm"
    PM_04 = "04pm"
    PM_05 = "05pm"
    PM_06 = "06pm"
    PM_07 = "07pm"
    PM_08 = "08pm"
    PM_09 = "09pm"
    PM_10 = "10pm"
    PM_11 = "11pm"
    PM_12 = "12pm"

    def __str__(self):
        return self.value

    @classmethod
    def parse(cls, text: str) -> "TimeSlot":
        try:
            return cls(text)
        except ValueError:
            raise ClockError(f"not an hour slot: {text!r}") from None

    @property
    def hour24(self) -> int:
        """Hour of day, 0-23."""
        hour = int(self.value[:2]) % 12
        return hour + 12 if self.value.endswith("pm") else hour

    @property
    def period(self) -> DayPeriod:
        h = self.hour24
        if 5 <= h < 12:
            return DayPeriod.MORNING
        if 12 <= h < 17:
            return DayPeriod.DAY
        if 17 <= h < 21:
            return DayPeriod.EVENING
        return DayPeriod.NIGHT


def current_slot(now: datetime | None = None) -> TimeSlot:
    """Slot for *now* (default: local wall-clock time).

    Raises ClockError if the formatted hour is not a known slot; callers treat
    that as fatal.
    """
    now = now or datetime.now()
    # %p is locale-dependent; build the suffix ourselves
    label = f"{now.strftime('%I')}{'am' if now.hour < 12 else 'pm'}"
    return TimeSlot.parse(label)


def is_slot_boundary(now: datetime | None = None) -> bool:
    """True during the one-second window at the top of every hour."""
    now = now or datetime.now()
    return now.minute == 0 and now.second == 0


def next_boundary(now: datetime | None = None) -> datetime:
    """Top of the next hour, strictly after *now*."""
    now = now or datetime.now()
    return now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)


def seconds_until_boundary(now: datetime | None = None) -> float:
    now = now or datetime.now()
    return (next_boundary(now) - now).total_seconds()


async def sleep_until_boundary(clock=datetime.now, boundary: datetime | None = None) -> datetime:
    """Suspend until *clock* reaches *boundary* (default: the next top of the hour)."""
    if boundary is None:
        boundary = next_boundary(clock())
    return await sleep_until(boundary, clock)


async def sleep_until(target: datetime, clock=datetime.now) -> datetime:
    """Suspend until *clock* reads *target* or later.

    asyncio timers run on the monotonic clock, so a wall-clock step (NTP,
    DST, suspend/resume) is only noticed when the clock is read again.  Naps
    are capped at MAX_NAP seconds for that reason.  Returns immediately if
    *target* has already passed.
    """
    while True:
        remaining = (target - clock()).total_seconds()
        if remaining <= 0:
            return target
        await asyncio.sleep(min(remaining, MAX_NAP))
