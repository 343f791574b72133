"""
SPA router - installs the catch-all routes that forward to the SPA dev server.
"""
from __future__ import annotations

from typing import Optional

from fastapi import FastAPI, Request, Response, WebSocket

from spa_proxy.logging import get_logger
from spa_proxy.services.forwarder import Forwarder, create_http_client
from spa_proxy.services.launch_options import ForwardingOptions
from spa_proxy.services.stats import stats_collector
from spa_proxy.services.websocket_forwarder import WebSocketForwarder
from spa_proxy.state import app_state

logger = get_logger(__name__)

FORWARDED_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "TRACE"]


def use_spa_proxy(app: FastAPI, options: Optional[ForwardingOptions]) -> FastAPI:
    """
    Register the catch-all HTTP and WebSocket forwarding routes on app.

    Does nothing when options is None, leaving the app exactly as it was.
    Call this after every other route has been added: routes match in
    registration order, so the catch-all must come last.
    """
    if options is None:
        return app

    forwarder = Forwarder(create_http_client(), options, stats=stats_collector)
    websocket_forwarder = WebSocketForwarder(options, stats=stats_collector)
    app_state.options = options
    app_state.forwarder = forwarder

    async def forward_to_spa(request: Request) -> Response:
        return await forwarder.forward(request)

    async def forward_websocket_to_spa(websocket: WebSocket) -> None:
        await websocket_forwarder.forward(websocket)

    app.add_api_route(
        "/{path:path}",
        forward_to_spa,
        methods=FORWARDED_METHODS,
        include_in_schema=False,
    )
    # Hot reload (e.g. Vite HMR) runs over a WebSocket on the same origin
    app.add_api_websocket_route("/{path:path}", forward_websocket_to_spa)
    logger.info(f"SPA forwarding installed -> {options.destination} (timeout {options.timeout}s)")
    return app
