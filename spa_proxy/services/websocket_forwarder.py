"""
WebSocket forwarder - relays upgrade requests (dev-server hot reload) to the
SPA development server and pumps frames both ways until either side closes.
"""
from __future__ import annotations

import asyncio
import time
from typing import List, Optional, Tuple

from fastapi import WebSocket
from starlette.websockets import WebSocketState
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, InvalidHandshake

from spa_proxy.logging import get_logger
from spa_proxy.services.forwarder import ForwarderError
from spa_proxy.services.launch_options import ForwardingOptions
from spa_proxy.services.stats import StatsCollector

logger = get_logger(__name__)

# Generated by the websockets library for the outgoing handshake
WS_HANDSHAKE_HEADERS = frozenset({
    "host", "connection", "upgrade",
    "sec-websocket-key", "sec-websocket-version",
    "sec-websocket-extensions", "sec-websocket-protocol",
})


def websocket_url(websocket: WebSocket, destination: str) -> str:
    """ws(s):// URL on the destination for the inbound path and query string."""
    # destination is validated to start with http:// or https://
    url = "ws" + destination.rstrip("/")[len("http"):]
    raw_path = websocket.scope.get("raw_path") or websocket.scope["path"].encode("utf-8")
    url += raw_path.split(b"?", 1)[0].decode("latin-1")
    query = websocket.scope.get("query_string", b"")
    if query:
        url += "?" + query.decode("latin-1")
    return url


def handshake_headers(websocket: WebSocket) -> List[Tuple[str, str]]:
    """Inbound headers minus the ones the outgoing handshake sets itself."""
    return [
        (name.decode("latin-1"), value.decode("latin-1"))
        for name, value in websocket.scope["headers"]
        if name.decode("latin-1").lower() not in WS_HANDSHAKE_HEADERS and not name.startswith(b":")
    ]


def _close_code(code: Optional[int]) -> int:
    # 1005 and 1006 only report a missing or abnormal close; they are never sent
    if code is None or code == 1005:
        return 1000
    if code == 1006:
        return 1011
    return code


async def _client_to_upstream(websocket: WebSocket, upstream: ClientConnection) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            await upstream.close(code=_close_code(message.get("code")))
            return
        try:
            if message.get("bytes") is not None:
                await upstream.send(message["bytes"])
            elif message.get("text") is not None:
                await upstream.send(message["text"])
        except ConnectionClosed:
            # upstream side closes the caller
            return


async def _upstream_to_client(websocket: WebSocket, upstream: ClientConnection) -> None:
    try:
        async for message in upstream:
            if isinstance(message, str):
                await websocket.send_text(message)
            else:
                await websocket.send_bytes(message)
    except ConnectionClosedError as e:
        logger.warning(f"SPA dev server websocket closed abnormally: {e}")

    if websocket.client_state == WebSocketState.CONNECTED and websocket.application_state == WebSocketState.CONNECTED:
        await websocket.close(code=_close_code(upstream.close_code), reason=upstream.close_reason or None)


class WebSocketForwarder:
    """Forwards WebSocket sessions to the same destination as HTTP requests."""

    def __init__(self, options: ForwardingOptions, stats: Optional[StatsCollector] = None):
        self.options = options
        self.stats = stats

    async def forward(self, websocket: WebSocket) -> None:
        url = websocket_url(websocket, self.options.destination)
        start_time = time.time()

        try:
            upstream = await connect(
                url,
                additional_headers=handshake_headers(websocket),
                user_agent_header=None,
                subprotocols=websocket.scope.get("subprotocols") or None,
                compression=None,
                max_size=None,
                open_timeout=self.options.timeout,
                proxy=None,
            )
        except (asyncio.TimeoutError, TimeoutError, OSError, InvalidHandshake) as e:
            if isinstance(e, (asyncio.TimeoutError, TimeoutError)):
                reason = ForwarderError.TIMED_OUT
            else:
                reason = ForwarderError.DESTINATION_UNREACHABLE
            logger.error(f"WebSocket forward to {url} failed ({reason.value}): {e!r}")
            await self._record(start_time, reason.value)
            # Closing before accept rejects the handshake
            await websocket.close(code=1011)
            return

        await self._record(start_time)
        logger.debug(f"WebSocket {websocket.url.path} -> {url} (subprotocol {upstream.subprotocol})")

        try:
            await websocket.accept(subprotocol=upstream.subprotocol)
            await self._relay(websocket, upstream)
        finally:
            await upstream.close()

    async def _relay(self, websocket: WebSocket, upstream: ClientConnection) -> None:
        tasks = {
            asyncio.ensure_future(_client_to_upstream(websocket, upstream)),
            asyncio.ensure_future(_upstream_to_client(websocket, upstream)),
        }
        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            task.result()

    async def _record(self, start_time: float, error_reason: Optional[str] = None) -> None:
        if self.stats is not None:
            await self.stats.record_forward(
                self.options.destination,
                (time.time() - start_time) * 1000,
                error_reason=error_reason,
            )
