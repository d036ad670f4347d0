# nookd
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Track catalog: which folders exist on the CDN and how their URLs are built.

Music lives under one folder per game (optionally with a weather/season
variant), one file per hour slot:

    {origin}/new-horizons-rainy/03pm.ogg

Ambiance (rain) is a single looping clip per mood, not time-indexed:

    {origin}/rain/no-thunder-rain.ogg

Only the combinations listed in ALLOWED_VARIANTS exist upstream, so parsing
is a whitelist lookup rather than "title + any variant".
"""

from dataclasses import dataclass
from enum import Enum

from .timeslot import TimeSlot

ORIGIN = "https://d17orwheorv96d.cloudfront.net"
EXTENSION = "ogg"


class CatalogError(ValueError):
    """A catalog or ambiance name that is not on the whitelist."""


class Title(Enum):
    POPULATION_GROWING = "population-growing"
    NEW_HORIZONS = "new-horizons"
    WILD_WORLD = "wild-world"
    NEW_LEAF = "new-leaf"
    POCKET_CAMP = "pocket-camp"


class Variant(Enum):
    NONE = ""
    CHERRY = "cherry"
    RAINY = "rainy"
    SNOWY = "snowy"


ALLOWED_VARIANTS = {
    Title.POPULATION_GROWING: (Variant.NONE, Variant.CHERRY, Variant.RAINY, Variant.SNOWY),
    Title.NEW_HORIZONS: (Variant.NONE, Variant.RAINY, Variant.SNOWY),
    Title.WILD_WORLD: (Variant.NONE, Variant.RAINY, Variant.SNOWY),
    Title.NEW_LEAF: (Variant.NONE, Variant.RAINY, Variant.SNOWY),
    # Pocket Camp has a single soundtrack folder
    Title.POCKET_CAMP: (Variant.NONE,),
}


@dataclass(frozen=True)
class CatalogSelector:
    title: Title
    variant: Variant = Variant.NONE

    def __str__(self):
        if self.title is Title.POCKET_CAMP or self.variant is Variant.NONE:
            return self.title.value
        return f"{self.title.value}-{self.variant.value}"

    @classmethod
    def parse(cls, text: str) -> "CatalogSelector":
        try:
            return CATALOG[text]
        except KeyError:
            raise CatalogError(f"there's no game called '{text}'") from None


CATALOG: dict[str, CatalogSelector] = {
    str(sel): sel
    for sel in (
        CatalogSelector(title, variant)
        for title, variants in ALLOWED_VARIANTS.items()
        for variant in variants
    )
}


class AmbianceSelector(Enum):
    """Rain mood.  Values are the file names under ``rain/``."""

    NORMAL = "rain"
    NO_THUNDER = "no-thunder-rain"
    GAME = "game-rain"

    def __str__(self):
        return self.value

    @property
    def option(self) -> str:
        """Name used on the command line and in config files."""
        return _AMBIANCE_OPTIONS[self]

    @classmethod
    def parse(cls, text: str) -> "AmbianceSelector | None":
        """Parse a command-line mood.  ``"none"`` means no ambiance at all."""
        if text == NO_AMBIANCE:
            return None
        for mood, option in _AMBIANCE_OPTIONS.items():
            if option == text:
                return mood
        raise CatalogError(f"there's no rain type called '{text}'")


NO_AMBIANCE = "none"

_AMBIANCE_OPTIONS = {
    AmbianceSelector.NORMAL: "normal",
    AmbianceSelector.NO_THUNDER: "no-thunder",
    AmbianceSelector.GAME: "game",
}


def _base(origin: str) -> str:
    return origin.rstrip("/")


def catalog_url(selector: CatalogSelector, slot: TimeSlot,
                origin: str = ORIGIN, extension: str = EXTENSION) -> str:
    return f"{_base(origin)}/{selector}/{slot}.{extension}"


def ambiance_url(mood: AmbianceSelector, origin: str = ORIGIN,
                 extension: str = EXTENSION) -> str:
    return f"{_base(origin)}/rain/{mood}.{extension}"


def catalog_names() -> list[str]:
    return sorted(CATALOG)


def ambiance_names() -> list[str]:
    return [mood.option for mood in AmbianceSelector] + [NO_AMBIANCE]
