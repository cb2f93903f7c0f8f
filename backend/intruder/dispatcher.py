import logging
import time
from abc import ABC, abstractmethod

import httpx
from pydantic import BaseModel

from config import DISPATCH_DROP_HEADERS, DISPATCH_TIMEOUT, UPSTREAM_PROXY

log = logging.getLogger(__name__)


class DispatchRequest(BaseModel):
    method: str = "GET"
    url: str
    headers: dict[str, str] = {}
    body: str = ""


class DispatchResponse(BaseModel):
    status_code: int
    status_message: str = ""
    headers: dict[str, str] = {}
    body: str = ""
    duration_ms: int = 0


class RequestDispatcher(ABC):
    """Sends one request and returns the response.

    Any exception raised by :meth:`send` is treated by the engine as a
    transport failure for that round only.
    """

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    @abstractmethod
    async def send(self, request: DispatchRequest) -> DispatchResponse:
        ...

    async def aclose(self) -> None:
        pass


class HttpxDispatcher(RequestDispatcher):
    """httpx-backed dispatcher sharing one connection pool across an attack."""

    def __init__(
        self,
        timeout: float = DISPATCH_TIMEOUT,
        proxy: str | None = UPSTREAM_PROXY,
        follow_redirects: bool = False,
    ) -> None:
        self.timeout = timeout
        self.proxy = proxy
        self.follow_redirects = follow_redirects
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            # Targets are test hosts, usually with self-signed certificates
            self._client = httpx.AsyncClient(
                verify=False,
                timeout=self.timeout,
                proxy=self.proxy,
                follow_redirects=self.follow_redirects,
            )
        return self._client

    async def send(self, request: DispatchRequest) -> DispatchResponse:
        client = self._get_client()
        clean_headers = {
            k: v for k, v in request.headers.items()
            if k.lower() not in DISPATCH_DROP_HEADERS
        }
        start = time.time()
        if request.method.upper() == "GET" and not request.body:
            resp = await client.get(request.url, headers=clean_headers)
        else:
            resp = await client.request(
                request.method, request.url,
                headers=clean_headers,
                content=request.body.encode("utf-8") if request.body else b"",
            )
        elapsed = round((time.time() - start) * 1000)
        log.debug("%s %s -> %d (%d ms)", request.method, request.url, resp.status_code, elapsed)
        return DispatchResponse(
            status_code=resp.status_code,
            status_message=resp.reason_phrase,
            headers=dict(resp.headers),
            body=resp.text,
            duration_ms=elapsed,
        )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
