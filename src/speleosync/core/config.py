"""Connection configuration for speleosync.

This module defines the server configuration shared by the transport
client and the synchronization service, and the rule used to turn a
user-entered instance address into an absolute URL.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

DEFAULT_INSTANCE = "www.speleoDB.org"

# Timeouts (seconds)
CONNECT_TIMEOUT = 30.0
REQUEST_TIMEOUT = 30.0
TRANSFER_TIMEOUT = 300.0

# localhost, loopback and RFC 1918 private ranges, with an optional port.
# Convenience for local development servers; not a security control.
LOCAL_ADDRESS_PATTERN = re.compile(
    r"^(localhost"
    r"|127\.\d{1,3}\.\d{1,3}\.\d{1,3}"
    r"|10\.\d{1,3}\.\d{1,3}\.\d{1,3}"
    r"|172\.(1[6-9]|2\d|3[01])\.\d{1,3}\.\d{1,3}"
    r"|192\.168\.\d{1,3}\.\d{1,3})"
    r"(:\d+)?([/?#].*)?$",
    re.IGNORECASE,
)


def is_local_address(address: str) -> bool:
    """Check if an address (without scheme) points at a local/private host."""
    return LOCAL_ADDRESS_PATTERN.match(address) is not None


def normalize_server_url(address: str | None) -> str:
    """Turn a user-entered instance address into an absolute base URL.

    An explicit http:// or https:// scheme is kept verbatim. Otherwise
    http:// is chosen for localhost, loopback and private-network hosts,
    and https:// for everything else. Trailing slashes are removed and an
    empty address falls back to the default instance.

    Args:
        address: Raw address, e.g. "www.speleodb.org" or "localhost:8000".

    Returns:
        Absolute URL without trailing slash.
    """
    url = (address or "").strip() or DEFAULT_INSTANCE
    url = url.rstrip("/")

    lowered = url.lower()
    if lowered.startswith(("http://", "https://")):
        return url

    scheme = "http://" if is_local_address(url) else "https://"
    return scheme + url


@dataclass
class ServerConfig:
    """Configuration for connecting to a SpeleoDB instance.

    Attributes:
        server_url: Instance address; normalized to an absolute URL.
        timeout: Timeout in seconds for metadata calls.
        transfer_timeout: Timeout in seconds for upload/download calls.
        connect_timeout: Timeout in seconds for establishing a connection.
        verify_ssl: Whether to verify SSL certificates (default True).
    """

    server_url: str = DEFAULT_INSTANCE
    timeout: float = REQUEST_TIMEOUT
    transfer_timeout: float = TRANSFER_TIMEOUT
    connect_timeout: float = CONNECT_TIMEOUT
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize server URL."""
        self.server_url = normalize_server_url(self.server_url)

    @property
    def is_secure(self) -> bool:
        """Check if the instance is reached over HTTPS."""
        return self.server_url.lower().startswith("https://")

    @property
    def is_local(self) -> bool:
        """Check if the instance is a local development server."""
        host = self.server_url.split("://", 1)[-1]
        return is_local_address(host)
