from __future__ import annotations

import unittest

from enginesis.error_handling import (
    ErrorAction,
    ErrorCode,
    error_code,
    error_response,
    handle_error_action,
    has_status,
    is_error,
    map_error_to_action,
    result_to_string,
)


class ErrorResponseTests(unittest.TestCase):
    def test_shape_matches_server_errors(self) -> None:
        r = error_response("GameGet", 7, ErrorCode.OFFLINE, "no network")
        self.assertEqual(r["fn"], "GameGet")
        status = r["results"]["status"]
        self.assertEqual(status["success"], "0")
        self.assertEqual(status["message"], "OFFLINE")
        self.assertEqual(status["extended_info"], "no network")
        self.assertEqual(status["passthru"], {"fn": "GameGet", "state_seq": 7})

    def test_missing_service_name_and_passthru(self) -> None:
        r = error_response(None, None, "X", "m", passthru={"score": 10})
        self.assertEqual(r["fn"], "unknown")
        self.assertEqual(r["results"]["status"]["passthru"], {"score": 10, "fn": "unknown", "state_seq": 0})

    def test_is_error_and_code(self) -> None:
        err = error_response("GameGet", 1, ErrorCode.SERVICE_ERROR, "bad")
        ok = {"fn": "GameGet", "results": {"status": {"success": "1", "message": ""}}}
        self.assertTrue(is_error(err))
        self.assertEqual(error_code(err), "SERVICE_ERROR")
        self.assertFalse(is_error(ok))
        self.assertEqual(error_code(ok), "")
        self.assertFalse(is_error(None))
        self.assertFalse(has_status({"results": {}}))
        self.assertTrue(has_status(ok))

    def test_result_to_string(self) -> None:
        err = error_response("GameGet", 1, ErrorCode.INVALID_PARAM, "game_id missing")
        self.assertEqual(result_to_string(err), "INVALID_PARAM game_id missing")
        self.assertEqual(result_to_string({"fn": "GameGet", "results": {"status": {"success": "1"}}}), "GameGet")


class ErrorActionTests(unittest.TestCase):
    def test_map_error_to_action(self) -> None:
        self.assertEqual(map_error_to_action("TOKEN_EXPIRED"), ErrorAction.RETRY_REFRESH)
        self.assertEqual(map_error_to_action("INVALID_TOKEN"), ErrorAction.RETRY_REFRESH)
        self.assertEqual(map_error_to_action("SYSTEM_ERROR"), ErrorAction.INTERNAL)
        self.assertEqual(map_error_to_action("SERVICE_ERROR"), ErrorAction.INTERNAL)
        self.assertEqual(map_error_to_action("INVALID_LOGIN"), ErrorAction.NOOP)
        self.assertEqual(map_error_to_action(None), ErrorAction.NOOP)

    def test_handle_error_action(self) -> None:
        events: list[str] = []

        handle_error_action(ErrorAction.RETRY_REFRESH, broadcast_status=lambda s: events.append(f"broadcast:{s}"))
        handle_error_action(
            ErrorAction.INTERNAL,
            broadcast_status=lambda s: events.append(f"broadcast:{s}"),
            on_internal=lambda: events.append("internal"),
        )
        handle_error_action(ErrorAction.NOOP, broadcast_status=lambda s: events.append(f"broadcast:{s}"))

        self.assertEqual(events, ["broadcast:refresh_required", "internal"])


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
