"""Client-side error codes and error-handling policy.

- ErrorCode: local vocabulary for synthetic responses plus the server codes the
  client reacts to.
- error_response(): build a result shaped exactly like a server error, so callers
  only ever check one result branch.
- map_error_to_action / handle_error_action: what the client does when a server
  reply carries a given error code.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Dict, Optional


class ErrorCode(str, Enum):
    # Local, never sent over the wire
    OFFLINE = "OFFLINE"
    DISABLED = "DISABLED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    SERVICE_ERROR = "SERVICE_ERROR"
    NOT_LOGGED_IN = "NOT_LOGGED_IN"
    INVALID_SESSION = "INVALID_SESSION"
    INVALID_GAME_ID = "INVALID_GAME_ID"
    INVALID_PARAM = "INVALID_PARAM"
    INVALID_TOKEN = "INVALID_TOKEN"

    # Server reported
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    INVALID_LOGIN = "INVALID_LOGIN"
    INVALID_USER_ID = "INVALID_USER_ID"
    SERVER_SYSTEM_ERROR = "SERVER_SYSTEM_ERROR"
    SYSTEM_ERROR = "SYSTEM_ERROR"


class ErrorAction(str, Enum):
    RETRY_REFRESH = "retry_refresh"
    INTERNAL = "internal"
    NOOP = "noop"


def error_response(
    service_name: Optional[str],
    state_seq: Optional[int],
    code: str,
    message: str,
    passthru: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    service_name = service_name or "unknown"
    passthru = dict(passthru or {})
    passthru.setdefault("fn", service_name)
    passthru.setdefault("state_seq", state_seq or 0)
    return {
        "fn": service_name,
        "results": {
            "status": {
                "success": "0",
                "message": str(getattr(code, "value", code)),
                "extended_info": message,
                "passthru": passthru,
            }
        },
    }


def _status(result: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(result, dict):
        return None
    results = result.get("results")
    if not isinstance(results, dict):
        return None
    status = results.get("status")
    return status if isinstance(status, dict) else None


def has_status(result: Any) -> bool:
    return _status(result) is not None


def is_error(result: Any) -> bool:
    status = _status(result)
    return status is not None and str(status.get("success")) == "0"


def error_code(result: Any) -> str:
    status = _status(result)
    if status is None or str(status.get("success")) != "0":
        return ""
    return str(status.get("message") or "")


def result_to_string(result: Any) -> str:
    """Printable summary: the error code and details for errors, otherwise the service name."""

    if is_error(result):
        status = _status(result) or {}
        extended = status.get("extended_info")
        return str(status.get("message")) + (f" {extended}" if extended else "")
    if isinstance(result, dict):
        return str(result.get("fn") or "")
    return ""


def map_error_to_action(code: Optional[str]) -> ErrorAction:
    if code in (ErrorCode.TOKEN_EXPIRED, ErrorCode.INVALID_TOKEN):
        return ErrorAction.RETRY_REFRESH
    if code in (ErrorCode.SERVER_SYSTEM_ERROR, ErrorCode.SYSTEM_ERROR, ErrorCode.SERVICE_ERROR):
        return ErrorAction.INTERNAL
    return ErrorAction.NOOP


def handle_error_action(
    action: ErrorAction,
    *,
    broadcast_status: Callable[[str], None],
    on_internal: Optional[Callable[[], None]] = None,
) -> None:
    """Run the client-side reaction for an error action.

    - broadcast_status: session-status broadcast ('none', 'refresh_required').
    - on_internal: optional hook for server-side failures; local state is kept.
    """

    if action == ErrorAction.RETRY_REFRESH:
        broadcast_status("refresh_required")
    elif action == ErrorAction.INTERNAL:
        if on_internal:
            on_internal()
    else:
        return


__all__ = [
    "ErrorAction",
    "ErrorCode",
    "error_code",
    "error_response",
    "handle_error_action",
    "has_status",
    "is_error",
    "map_error_to_action",
    "result_to_string",
]
