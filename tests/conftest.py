"""Shared fixtures: fake dispatchers, sessions and a throwaway database."""

import asyncio

import httpx
import pytest

from intruder.dispatcher import DispatchRequest, DispatchResponse, RequestDispatcher
from intruder.markers import iter_markers
from models.attack import AttackSession, PayloadSet, Position, RequestTemplate


class RecordingDispatcher(RequestDispatcher):
    """Answers every request with 200 and remembers what was sent."""

    def __init__(self, fail_on: set[str] | None = None) -> None:
        self.requests: list[DispatchRequest] = []
        self.fail_on = fail_on or set()

    async def send(self, request: DispatchRequest) -> DispatchResponse:
        self.requests.append(request)
        blob = request.url + request.body + "".join(request.headers.values())
        for marker in self.fail_on:
            if marker in blob:
                raise httpx.ConnectError(f"connection refused ({marker})")
        return DispatchResponse(
            status_code=200,
            status_message="OK",
            headers={"content-type": "text/plain"},
            body=f"echo {request.url}",
            duration_ms=1,
        )


class FailingDispatcher(RequestDispatcher):
    """Every request fails at the transport level."""

    def __init__(self) -> None:
        self.calls = 0

    async def send(self, request: DispatchRequest) -> DispatchResponse:
        self.calls += 1
        raise httpx.ConnectError("connection refused")


def make_session(
    url: str = "https://target.test/api/items?id=#1#",
    headers: str = "User-Agent: test\nX-Role: #user#",
    body: str = "",
    payloads: list[str] | None = None,
    mode: str = "sniper",
) -> AttackSession:
    """Build a session whose positions mirror the markers already in the template."""
    template = RequestTemplate(method="GET", url=url, headers=headers, body=body)
    positions = [
        Position(id=i + 1, field=m.field, original_value=m.content, sequence_index=m.index)
        for i, m in enumerate(iter_markers(template))
    ]
    return AttackSession(
        id="s1",
        template=template,
        positions=positions,
        payloads=PayloadSet(items=payloads if payloads is not None else ["a", "b", "c"]),
        mode=mode,
    )


@pytest.fixture
def recording_dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def failing_dispatcher():
    return FailingDispatcher()


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    from storage import db

    path = tmp_path / "intruder-test.db"
    monkeypatch.setattr(db, "DB_PATH", path)
    asyncio.run(db.init_db())
    return path
