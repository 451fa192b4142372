"""Client configuration, page context and server-stage resolution."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import parse_qsl


logger = logging.getLogger(__name__)

CONFIG_FILENAME = "enginesis-client.json"
STAGES = ("", "-l", "-d", "-q", "-x")
_STAGE_MARKER = re.compile(r"-[ldqx]\.")
_CAMEL_KEYS = {
    "siteId": "site_id",
    "developerKey": "developer_key",
    "gameId": "game_id",
    "gameGroupId": "game_group_id",
    "languageCode": "language_code",
    "serverStage": "server_stage",
    "authToken": "auth_token",
    "useHTTPS": "use_https",
    "callBackFunction": "callback",
}


def default_config_dir() -> str:
    return os.path.join(os.path.expanduser("~"), ".enginesis")


def default_config_path() -> str:
    return os.path.join(default_config_dir(), CONFIG_FILENAME)


def default_storage_path() -> str:
    return os.getenv("ENGINESIS_STORAGE_PATH") or os.path.join(default_config_dir(), "storage.json")


@dataclass(frozen=True)
class EnginesisConfig:
    site_id: int
    developer_key: str
    game_id: int = 0
    game_group_id: int = 0
    language_code: str = "en"
    server_stage: Optional[str] = None
    auth_token: Optional[str] = None
    disabled: bool = False
    use_https: Optional[bool] = None
    callback: Optional[Callable[[Dict[str, Any]], None]] = field(default=None, compare=False, repr=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EnginesisConfig":
        values: Dict[str, Any] = {}
        for key, value in data.items():
            name = _CAMEL_KEYS.get(key, key)
            if name in cls.__dataclass_fields__:
                values[name] = value
        values["site_id"] = int(values.get("site_id") or 0)
        values["developer_key"] = values.get("developer_key") or ""
        for name in ("game_id", "game_group_id"):
            if name in values:
                values[name] = int(values[name] or 0)
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "site_id": self.site_id,
            "developer_key": self.developer_key,
            "game_id": self.game_id,
            "game_group_id": self.game_group_id,
            "language_code": self.language_code,
            "server_stage": self.server_stage,
            "auth_token": self.auth_token,
            "disabled": self.disabled,
            "use_https": self.use_https,
        }


@dataclass
class PageContext:
    """What the hosting page knows about itself: where it runs, its query string, its cookies."""

    host: str = "localhost"
    protocol: str = "https:"
    query_string: str = ""
    cookies: Dict[str, str] = field(default_factory=dict)

    def query_parameters(self) -> Dict[str, str]:
        return dict(parse_qsl(self.query_string.lstrip("?"), keep_blank_values=True))

    def cookie_get(self, key: str) -> Optional[str]:
        value = self.cookies.get(key)
        return value or None

    def cookie_set(self, key: str, value: Any) -> None:
        if not isinstance(value, str):
            value = json.dumps(value, default=str)
        self.cookies[key] = value


def _stage_from_host(host: str) -> str:
    match = _STAGE_MARKER.search(host)
    if match is not None and match.start() > 0:
        return host[match.start():match.start() + 2]
    return ""


def qualify_server_stage(new_stage: Optional[str], current_host: str) -> Tuple[str, str]:
    """Resolve a stage request to (stage, server host).

    - One of "", "-l", "-d", "-q", "-x": that stage.
    - "*" or None: match the stage of the host we are running on; localhost is "-l".
    - Anything else is taken as a host name, its embedded stage marker gives the stage.
    Anything unrecognized resolves to the live stage "".
    """

    if new_stage is None:
        new_stage = "*"
    if new_stage in STAGES:
        return new_stage, f"www.enginesis{new_stage}.com"
    if new_stage == "*":
        stage = "-l" if current_host.startswith("localhost") else _stage_from_host(current_host)
        return stage, f"www.enginesis{stage}.com"
    return _stage_from_host(new_stage), new_stage


def _config_file(path: Optional[str]) -> str:
    return (path or "").strip() or default_config_path()


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """Settings saved by `save_config`; {} when there are none or the file cannot be used."""

    config_file = _config_file(path)
    try:
        with open(config_file, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        logger.debug("no config file at %s", config_file)
        return {}
    except OSError as exc:
        logger.warning("config file %s unreadable, using defaults: %s", config_file, exc)
        return {}
    except ValueError as exc:
        logger.warning("config file %s is not valid JSON, using defaults: %s", config_file, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("config file %s does not hold an object, using defaults", config_file)
        return {}
    return data


def save_config(path: Optional[str], settings: Dict[str, Any]) -> None:
    config_file = _config_file(path)
    partial = config_file + ".tmp"
    try:
        os.makedirs(os.path.dirname(config_file) or ".", exist_ok=True)
        with open(partial, "w", encoding="utf-8") as f:
            json.dump(settings, f, ensure_ascii=False, indent=2)
        os.replace(partial, config_file)
    except OSError as exc:
        logger.error("failed to write config file %s: %s", config_file, exc)
        raise
    logger.debug("wrote config file %s", config_file)


__all__ = [
    "EnginesisConfig",
    "PageContext",
    "default_config_path",
    "default_storage_path",
    "load_config",
    "qualify_server_stage",
    "save_config",
]
