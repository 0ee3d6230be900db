"""Core module - Shared configuration and enums."""

from speleosync.core.config import (
    CONNECT_TIMEOUT,
    DEFAULT_INSTANCE,
    REQUEST_TIMEOUT,
    TRANSFER_TIMEOUT,
    ServerConfig,
    is_local_address,
    normalize_server_url,
)
from speleosync.core.types import ErrorKind, LockState, Permission

__all__ = [
    # Config
    "CONNECT_TIMEOUT",
    "DEFAULT_INSTANCE",
    "REQUEST_TIMEOUT",
    "TRANSFER_TIMEOUT",
    "ServerConfig",
    "is_local_address",
    "normalize_server_url",
    # Types
    "ErrorKind",
    "LockState",
    "Permission",
]
