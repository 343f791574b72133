"""
Application state - shared state initialized at startup.
"""
from __future__ import annotations

from spa_proxy.services.forwarder import Forwarder
from spa_proxy.services.launch_options import ForwardingOptions


class AppState:
    """
    Application state container.
    Filled once when forwarding is installed; never re-evaluated per request.
    """

    def __init__(self):
        self.options: ForwardingOptions | None = None
        self.forwarder: Forwarder | None = None


app_state = AppState()
