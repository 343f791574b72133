"""
Forwarder service - relays requests to the SPA development server.

One shared httpx client is used for every forward. Each forward runs
build -> transform -> send -> relay, with no retries. Failures are classified
into a ForwarderError, stored on ``request.state.forwarder_error`` and raised as
an HTTPException so the caller never sees an empty success.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from http.cookiejar import CookieJar, DefaultCookiePolicy
from typing import AsyncIterator, Callable, Optional

import httpx
from fastapi import HTTPException, Request
from starlette.background import BackgroundTask
from starlette.requests import ClientDisconnect
from starlette.responses import StreamingResponse

from spa_proxy.logging import get_logger
from spa_proxy.services.launch_options import ForwardingOptions
from spa_proxy.services.stats import StatsCollector

logger = get_logger(__name__)


class ForwarderError(str, Enum):
    """Why a forward failed."""
    NONE = "none"
    DESTINATION_UNREACHABLE = "destination-unreachable"
    TIMED_OUT = "timed-out"
    REQUEST_BODY = "request-body-error"
    REQUEST_CANCELED = "request-canceled"
    RESPONSE_BODY = "response-body-error"


_STATUS_BY_ERROR = {
    ForwarderError.DESTINATION_UNREACHABLE: 502,
    ForwarderError.TIMED_OUT: 504,
    ForwarderError.REQUEST_BODY: 400,
    # nginx's "client closed request"; nobody is left to read it
    ForwarderError.REQUEST_CANCELED: 499,
    ForwarderError.RESPONSE_BODY: 502,
}

_DETAIL_BY_ERROR = {
    ForwarderError.DESTINATION_UNREACHABLE: "Failed to connect to SPA development server",
    ForwarderError.TIMED_OUT: "SPA development server timeout",
    ForwarderError.REQUEST_BODY: "Failed to read request body",
    ForwarderError.REQUEST_CANCELED: "Client closed request",
    ForwarderError.RESPONSE_BODY: "Failed to read response from SPA development server",
}


@dataclass
class ForwarderErrorFeature:
    """Failure details attached to the inbound request."""
    error: ForwarderError
    exception: Optional[BaseException] = None


class ForwardingFailed(HTTPException):
    """Raised when a forward fails before any response was sent to the caller."""

    def __init__(self, reason: ForwarderError):
        super().__init__(status_code=_STATUS_BY_ERROR[reason], detail=_DETAIL_BY_ERROR[reason])
        self.reason = reason


class CallerDisconnected(Exception):
    """The caller went away while the forward was waiting on the destination."""


RequestTransform = Callable[[httpx.Request, str], httpx.Request]


def create_http_client() -> httpx.AsyncClient:
    """
    Create the shared outbound client.

    Ambient proxy settings are ignored, redirects are relayed rather than
    followed and the cookie jar refuses every cookie. Response bodies are read
    with ``aiter_raw`` so nothing is decompressed.
    """
    return httpx.AsyncClient(
        trust_env=False,
        follow_redirects=False,
        cookies=CookieJar(policy=DefaultCookiePolicy(allowed_domains=[])),
    )


def _has_body(request: Request) -> bool:
    if "transfer-encoding" in request.headers:
        return True
    content_length = request.headers.get("content-length")
    return content_length is not None and content_length.strip() not in ("", "0")


async def _stream_body(request: Request, body_consumed: asyncio.Event) -> AsyncIterator[bytes]:
    async for chunk in request.stream():
        yield chunk
    body_consumed.set()


def build_outgoing_request(
    request: Request,
    destination: str,
    timeout: float,
    body_consumed: Optional[asyncio.Event] = None,
) -> httpx.Request:
    """
    Copy method, headers and body of the inbound request, targeting destination.

    The original path and query string are appended to the destination prefix.
    Headers are copied as a raw list so repeated headers survive. When
    body_consumed is given it is set once the inbound body has been read in
    full, or straight away for bodiless requests.
    """
    raw_path = request.scope.get("raw_path") or request.url.path.encode("utf-8")
    url = destination.rstrip("/") + raw_path.split(b"?", 1)[0].decode("latin-1")
    query = request.scope.get("query_string", b"")
    if query:
        url += "?" + query.decode("latin-1")

    content = None
    if _has_body(request):
        content = request.stream() if body_consumed is None else _stream_body(request, body_consumed)
    elif body_consumed is not None:
        body_consumed.set()

    return httpx.Request(
        request.method,
        url,
        headers=list(request.headers.raw),
        content=content,
        extensions={"timeout": httpx.Timeout(timeout).as_dict()},
    )


def transform_request(outgoing: httpx.Request, destination_prefix: str) -> httpx.Request:
    """
    Address the destination with its own Host instead of the caller's.

    Pseudo-headers (":authority" and friends) are dropped since HTTP/1.1
    cannot carry them. Nothing else is touched.
    """
    for name in list(outgoing.headers.keys()):
        if name.startswith(":"):
            del outgoing.headers[name]
    if "host" in outgoing.headers:
        del outgoing.headers["host"]
    outgoing.headers["Host"] = httpx.URL(destination_prefix).netloc.decode("ascii")
    return outgoing


def classify_error(error: BaseException) -> Optional[ForwarderError]:
    """Map an exception raised while forwarding to a ForwarderError, or None if unknown."""
    if isinstance(error, CallerDisconnected):
        return ForwarderError.REQUEST_CANCELED
    if isinstance(error, ClientDisconnect):
        return ForwarderError.REQUEST_BODY
    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError)):
        return ForwarderError.TIMED_OUT
    if isinstance(error, httpx.TransportError):
        return ForwarderError.DESTINATION_UNREACHABLE
    return None


async def _wait_for_disconnect(request: Request, body_consumed: asyncio.Event) -> None:
    # receive() belongs to the body stream until the body has been read
    await body_consumed.wait()
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return


async def _discard_send(task: asyncio.Future) -> None:
    """Cancel a send and close its response if it completed anyway."""
    task.cancel()
    result, = await asyncio.gather(task, return_exceptions=True)
    if isinstance(result, httpx.Response):
        await result.aclose()


class Forwarder:
    """Forwards inbound requests to one destination using a shared client."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        options: ForwardingOptions,
        transform: RequestTransform = transform_request,
        stats: Optional[StatsCollector] = None,
    ):
        self.client = client
        self.options = options
        self.transform = transform
        self.stats = stats

    async def forward(self, request: Request) -> StreamingResponse:
        destination = self.options.destination
        start_time = time.time()
        body_consumed = asyncio.Event()

        try:
            outgoing = build_outgoing_request(request, destination, self.options.timeout, body_consumed)
            outgoing = self.transform(outgoing, destination)
            upstream = await self._send(request, outgoing, body_consumed)
        except Exception as e:
            reason = classify_error(e)
            if reason is None:
                raise
            await self._fail(request, reason, e, start_time)
            raise ForwardingFailed(reason) from e

        response_time_ms = (time.time() - start_time) * 1000
        if self.stats is not None:
            await self.stats.record_forward(destination, response_time_ms)
        logger.debug(f"{request.method} {outgoing.url} -> {upstream.status_code} ({response_time_ms:.1f} ms)")

        response = StreamingResponse(
            self._relay_body(request, upstream),
            status_code=upstream.status_code,
            background=BackgroundTask(upstream.aclose),
        )
        # Relay headers verbatim, keeping duplicates such as Set-Cookie
        response.raw_headers = [(name.lower(), value) for name, value in upstream.headers.raw]
        return response

    async def _send(
        self,
        request: Request,
        outgoing: httpx.Request,
        body_consumed: asyncio.Event
    ) -> httpx.Response:
        """
        Send outgoing and wait for the response headers.

        The send races the timeout and the caller disconnecting. The loser is
        cancelled, and a response that still arrives is closed so its
        connection goes back to the pool.
        """
        send_task = asyncio.ensure_future(self.client.send(outgoing, stream=True))
        watch_task = asyncio.ensure_future(_wait_for_disconnect(request, body_consumed))
        try:
            done, _ = await asyncio.wait(
                {send_task, watch_task},
                timeout=self.options.timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            await _discard_send(send_task)
            raise
        finally:
            watch_task.cancel()

        if watch_task in done:
            await _discard_send(send_task)
            watch_task.result()
            raise CallerDisconnected()
        if send_task in done:
            return send_task.result()

        await _discard_send(send_task)
        raise asyncio.TimeoutError()

    async def _fail(
        self,
        request: Request,
        reason: ForwarderError,
        error: BaseException,
        start_time: float
    ) -> None:
        request.state.forwarder_error = ForwarderErrorFeature(error=reason, exception=error)
        if reason == ForwarderError.REQUEST_CANCELED:
            logger.info(f"Caller disconnected, cancelled forward of {request.method} {request.url.path}")
        else:
            logger.error(f"Forwarding {request.method} {request.url.path} to {self.options.destination} failed ({reason.value}): {error!r}")
        if self.stats is not None:
            await self.stats.record_forward(
                self.options.destination,
                (time.time() - start_time) * 1000,
                error_reason=reason.value,
            )

    async def _relay_body(self, request: Request, upstream: httpx.Response) -> AsyncIterator[bytes]:
        """Stream the destination's body as received; abort the response on failure."""
        try:
            async for chunk in upstream.aiter_raw():
                yield chunk
        except httpx.TransportError as e:
            reason = ForwarderError.RESPONSE_BODY
            request.state.forwarder_error = ForwarderErrorFeature(error=reason, exception=e)
            logger.error(f"Response body from {self.options.destination} failed mid-stream: {e!r}")
            if self.stats is not None:
                await self.stats.record_failure(self.options.destination, reason.value)
            raise
        finally:
            # Runs when the caller disconnects mid-body too
            await asyncio.shield(upstream.aclose())

    async def aclose(self) -> None:
        await self.client.aclose()
