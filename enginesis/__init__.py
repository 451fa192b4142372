"""Enginesis API client: offline-tolerant request queue and session layer."""

from .client import EnginesisClient
from .client_config import EnginesisConfig, PageContext
from .error_handling import ErrorCode, error_code, is_error
from .event_bus import EventBus
from .local_storage import LocalStorage

__version__ = "2.6.0"

__all__ = [
    "EnginesisClient",
    "EnginesisConfig",
    "ErrorCode",
    "EventBus",
    "LocalStorage",
    "PageContext",
    "error_code",
    "is_error",
]
