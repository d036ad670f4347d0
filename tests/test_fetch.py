import asyncio

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from nookd.lib.fetch import FetchError, fetch, open_http_session

OGG = b"OggS" + bytes(2048)


def make_app():
    async def track(request):
        return web.Response(body=OGG, content_type="audio/ogg")

    async def missing(request):
        raise web.HTTPNotFound()

    app = web.Application()
    app.router.add_get("/new-horizons/03pm.ogg", track)
    app.router.add_get("/rain/missing.ogg", missing)
    return app


async def _get(path):
    server = TestServer(make_app())
    await server.start_server()
    try:
        async with open_http_session() as session:
            return await fetch(session, str(server.make_url(path)))
    finally:
        await server.close()


def test_fetch_returns_body():
    assert asyncio.run(_get("/new-horizons/03pm.ogg")) == OGG


def test_fetch_http_error():
    with pytest.raises(FetchError, match="HTTP 404"):
        asyncio.run(_get("/rain/missing.ogg"))


def test_fetch_connection_error():
    async def main():
        async with open_http_session() as session:
            # Port 9 (discard) on localhost is closed on any sane test host
            await fetch(session, "http://127.0.0.1:9/rain/rain.ogg")

    with pytest.raises(FetchError):
        asyncio.run(main())
