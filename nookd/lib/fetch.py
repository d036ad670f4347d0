"""
Download whole audio files from the content origin.

Tracks are a few megabytes of Ogg Vorbis, so they are read fully into memory
and decoded from there.  There is deliberately no timeout and no retry: a
fetch either completes or the owning stream fails.

Usage:
    async with open_http_session() as session:
        data = await fetch(session, url)
"""

import logging

import aiohttp

log = logging.getLogger(__name__)


class FetchError(RuntimeError):
    """The origin could not be reached or did not return the file."""


def open_http_session(timeout: float | None = None) -> aiohttp.ClientSession:
    """Create the ClientSession shared by both streams."""
    return aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout))


async def fetch(session: aiohttp.ClientSession, url: str) -> bytes:
    """GET *url* and return the body.  Raises FetchError on any failure."""
    log.debug("GET %s", url)
    try:
        async with session.get(url) as resp:
            if resp.status != 200:
                raise FetchError(f"{url}: HTTP {resp.status}")
            data = await resp.read()
    except aiohttp.ClientError as e:
        raise FetchError(f"{url}: {e}") from e
    log.info("Fetched %s (%d KB)", url, len(data) // 1024)
    return data
