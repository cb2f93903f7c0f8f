import asyncio

import httpx

from intruder.dispatcher import DispatchRequest, HttpxDispatcher


def _dispatcher(seen: list) -> HttpxDispatcher:
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, headers={"X-Echo": "1"}, text="created")

    dispatcher = HttpxDispatcher(timeout=1.0, proxy=None)
    dispatcher._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return dispatcher


def test_get_without_body():
    seen = []

    async def scenario():
        async with _dispatcher(seen) as d:
            return await d.send(DispatchRequest(url="https://t.test/a", headers={"X-A": "1"}))

    resp = asyncio.run(scenario())
    assert resp.status_code == 201
    assert resp.status_message == "Created"
    assert resp.body == "created"
    assert resp.headers["x-echo"] == "1"
    assert seen[0].method == "GET"
    assert seen[0].headers["X-A"] == "1"
    assert seen[0].content == b""


def test_body_sent_and_framing_headers_dropped():
    seen = []

    async def scenario():
        async with _dispatcher(seen) as d:
            await d.send(DispatchRequest(
                method="PUT",
                url="https://t.test/a",
                headers={"Content-Length": "999", "Connection": "close", "X-B": "2"},
                body="name=zoë",
            ))

    asyncio.run(scenario())
    sent = seen[0]
    assert sent.method == "PUT"
    assert sent.content == "name=zoë".encode("utf-8")
    assert sent.headers["content-length"] == str(len("name=zoë".encode("utf-8")))
    assert sent.headers["X-B"] == "2"


def test_client_released_on_exit():
    seen = []
    dispatcher = _dispatcher(seen)

    async def scenario():
        async with dispatcher:
            pass

    asyncio.run(scenario())
    assert dispatcher._client is None
