"""Durable key/value storage for client state.

One JSON object per file, each key holding a JSON-serializable value:

- enginesisServiceQueue: requests that were not delivered yet
- engsession: the saved logged-in user session
- enginesisAnonymousUser: the anonymous identity
- engrefreshtoken: the refresh token and when it was saved

Reads never raise. A missing file is an empty store; an unreadable or corrupted file
is logged and treated as empty. Writes are atomic so a concurrent reader never sees a
truncated document.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from typing import Any, Callable, Dict, List, Optional

from .client_config import default_storage_path


logger = logging.getLogger(__name__)

SERVICE_QUEUE_KEY = "enginesisServiceQueue"
SESSION_KEY = "engsession"
ANONYMOUS_USER_KEY = "enginesisAnonymousUser"
REFRESH_TOKEN_KEY = "engrefreshtoken"


class LocalStorage:
    def __init__(
        self,
        path: Optional[str] = None,
        encoder: Optional[Callable[[str], str]] = None,
        decoder: Optional[Callable[[str], str]] = None,
    ) -> None:
        """
        encoder/decoder: optional str -> str hooks applied to the whole document,
        e.g. to obfuscate the file at rest. Plain JSON when not given.
        """

        self.path = path or default_storage_path()
        self.encoder = encoder
        self.decoder = decoder

    # --- Public API ---
    def save_object(self, key: str, value: Any) -> None:
        if not key or value is None:
            return
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def load_object(self, key: str) -> Any:
        if not key:
            return None
        return self._read_all().get(key)

    def remove_object(self, key: str) -> None:
        if not key:
            return
        data = self._read_all()
        if key in data:
            del data[key]
            self._write_all(data)

    def keys(self) -> List[str]:
        return list(self._read_all().keys())

    def clear(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            return

    # --- Internal ---
    def _read_all(self) -> Dict[str, Any]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                content = f.read()
        except FileNotFoundError:
            return {}
        except OSError as exc:
            logger.warning("storage %s unreadable, treating as empty: %s", self.path, exc)
            return {}

        if self.decoder:
            try:
                content = self.decoder(content)
            except Exception as exc:  # noqa: BLE001
                logger.warning("storage %s could not be decoded, treating as empty: %s", self.path, exc)
                return {}

        try:
            data = json.loads(content)
        except ValueError as exc:
            logger.warning("storage %s is not valid JSON, treating as empty: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("storage %s does not hold an object, treating as empty", self.path)
            return {}
        return data

    def _write_all(self, data: Dict[str, Any]) -> None:
        parent = os.path.dirname(self.path) or "."
        os.makedirs(parent, exist_ok=True)
        content = json.dumps(data, ensure_ascii=False, default=str)
        if self.encoder:
            content = self.encoder(content)

        tmp_fd, tmp_path = tempfile.mkstemp(prefix=".enginesis_storage_", suffix=".tmp", dir=parent)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError as exc:
            logger.error("failed to write storage %s: %s", self.path, exc)
            raise
        finally:
            if os.path.exists(tmp_path):
                try:
                    os.remove(tmp_path)
                except OSError:
                    pass


__all__ = [
    "ANONYMOUS_USER_KEY",
    "LocalStorage",
    "REFRESH_TOKEN_KEY",
    "SERVICE_QUEUE_KEY",
    "SESSION_KEY",
]
