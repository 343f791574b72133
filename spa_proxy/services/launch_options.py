"""
Launch options service - reads the SPA launch manager's marker file and decides
whether request forwarding is installed at all.
"""
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit

from spa_proxy.config import AppConfig
from spa_proxy.logging import get_logger

logger = get_logger(__name__)

SECTION_NAME = "SpaProxyServer"


@dataclass
class LaunchOptions:
    """
    Settings the launch manager uses to start and reach the SPA dev server.

    Only client_url is used here. The launch fields belong to the manager,
    which is not part of this package; they are parsed so a malformed marker
    file is rejected at startup rather than half-read.
    """
    client_url: str
    launch_command: Optional[str] = None
    working_directory: Optional[str] = None
    max_timeout_seconds: int = 120


@dataclass(frozen=True)
class ForwardingOptions:
    """Destination and time bound for every forwarded request."""
    destination: str
    timeout: float = 100.0


def _validate_client_url(url: str) -> str:
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValueError(f"ClientUrl must be an absolute http(s) URL, got: {url!r}")
    return url.rstrip("/")


def load_launch_options(path: str) -> LaunchOptions:
    """
    Load launch options from the marker JSON file.

    Args:
        path: Path to the marker file

    Returns:
        LaunchOptions parsed from the SpaProxyServer section

    Raises:
        ValueError: If file not found, invalid JSON, or missing required fields
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ValueError(f"Marker file not found: {path}")
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in marker file: {e}")

    section = data.get(SECTION_NAME) if isinstance(data, dict) else None
    if not isinstance(section, dict):
        raise ValueError(f"Marker file missing '{SECTION_NAME}' section")

    if not section.get("ClientUrl"):
        raise ValueError(f"'{SECTION_NAME}' missing required 'ClientUrl' field")

    try:
        max_timeout = int(section.get("MaxTimeoutInSeconds", 120))
    except (TypeError, ValueError):
        raise ValueError("'MaxTimeoutInSeconds' must be an integer")

    return LaunchOptions(
        client_url=_validate_client_url(section["ClientUrl"]),
        launch_command=section.get("LaunchCommand"),
        working_directory=section.get("WorkingDirectory"),
        max_timeout_seconds=max_timeout,
    )


def resolve_forwarding_options(config: AppConfig) -> Optional[ForwardingOptions]:
    """
    Decide once, at startup, whether forwarding is enabled.

    Returns None when the launch manager's marker file is absent. That is the
    normal production case and not an error.
    """
    if not os.path.isfile(config.spa_proxy_marker_file):
        logger.info(f"No marker file at {config.spa_proxy_marker_file}, SPA forwarding disabled")
        return None

    launch_options = load_launch_options(config.spa_proxy_marker_file)
    destination = launch_options.client_url
    if config.spa_proxy_client_url:
        destination = _validate_client_url(config.spa_proxy_client_url)

    if config.spa_proxy_timeout <= 0:
        raise ValueError("spa_proxy_timeout must be positive")

    return ForwardingOptions(destination=destination, timeout=config.spa_proxy_timeout)
