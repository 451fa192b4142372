from __future__ import annotations

import os
import unittest
from tempfile import TemporaryDirectory

from enginesis.client_config import (
    EnginesisConfig,
    PageContext,
    load_config,
    qualify_server_stage,
    save_config,
)
from enginesis.session import Session


class StageResolutionTests(unittest.TestCase):
    def test_literal_stages(self) -> None:
        self.assertEqual(qualify_server_stage("", "www.varyn-q.com"), ("", "www.enginesis.com"))
        self.assertEqual(qualify_server_stage("-q", "www.varyn.com"), ("-q", "www.enginesis-q.com"))
        self.assertEqual(qualify_server_stage("-x", "localhost"), ("-x", "www.enginesis-x.com"))

    def test_match_current_host(self) -> None:
        self.assertEqual(qualify_server_stage("*", "localhost:8080"), ("-l", "www.enginesis-l.com"))
        self.assertEqual(qualify_server_stage(None, "www.varyn-d.com"), ("-d", "www.enginesis-d.com"))
        self.assertEqual(qualify_server_stage("*", "www.varyn.com"), ("", "www.enginesis.com"))

    def test_host_name(self) -> None:
        self.assertEqual(qualify_server_stage("www.enginesis-q.com", "localhost"), ("-q", "www.enginesis-q.com"))
        self.assertEqual(qualify_server_stage("api.example.com", "localhost"), ("", "api.example.com"))


class ConfigTests(unittest.TestCase):
    def test_from_dict_accepts_camel_case(self) -> None:
        cfg = EnginesisConfig.from_dict(
            {"siteId": "106", "developerKey": "X", "gameId": 1099, "serverStage": "-q", "unknown": 1}
        )
        self.assertEqual(cfg.site_id, 106)
        self.assertEqual(cfg.developer_key, "X")
        self.assertEqual(cfg.game_id, 1099)
        self.assertEqual(cfg.server_stage, "-q")
        self.assertEqual(cfg.language_code, "en")

    def test_save_and_load(self) -> None:
        with TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "nested", "cfg.json")
            save_config(path, EnginesisConfig(site_id=106, developer_key="X").to_dict())
            data = load_config(path)
            self.assertEqual(data["site_id"], 106)
            self.assertEqual(EnginesisConfig.from_dict(data), EnginesisConfig(site_id=106, developer_key="X"))

    def test_load_missing_or_corrupt(self) -> None:
        with TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "cfg.json")
            self.assertEqual(load_config(path), {})
            with open(path, "w", encoding="utf-8") as f:
                f.write("{not json")
            with self.assertLogs("enginesis.client_config", level="WARNING"):
                self.assertEqual(load_config(path), {})
            with open(path, "w", encoding="utf-8") as f:
                f.write("[1, 2]")
            with self.assertLogs("enginesis.client_config", level="WARNING"):
                self.assertEqual(load_config(path), {})

    def test_save_failure_is_logged_and_raised(self) -> None:
        with TemporaryDirectory() as tmp:
            blocker = os.path.join(tmp, "blocker")
            with open(blocker, "w", encoding="utf-8") as f:
                f.write("")
            with self.assertLogs("enginesis.client_config", level="ERROR"):
                with self.assertRaises(OSError):
                    save_config(os.path.join(blocker, "cfg.json"), {"site_id": 106})


class PageAndSessionTests(unittest.TestCase):
    def test_page_context(self) -> None:
        page = PageContext(host="www.varyn.com", query_string="?authtok=abc&x=")
        self.assertEqual(page.query_parameters(), {"authtok": "abc", "x": ""})
        self.assertIsNone(page.cookie_get("engsession"))
        page.cookie_set("user", {"id": 1})
        self.assertEqual(page.cookie_get("user"), '{"id": 1}')

    def test_session_service_url(self) -> None:
        session = Session(EnginesisConfig(site_id=106, developer_key="X", server_stage=""), PageContext())
        self.assertEqual(session.service_url, "https://www.enginesis.com/index.php")
        self.assertTrue(session.valid_operational_state())

        plain = Session(EnginesisConfig(site_id=106, developer_key="X", server_stage="-l"), PageContext(protocol="http:"))
        self.assertEqual(plain.service_url, "http://www.enginesis-l.com/index.php")

    def test_invalid_operational_state(self) -> None:
        self.assertFalse(Session(EnginesisConfig(site_id=0, developer_key="X")).valid_operational_state())
        self.assertFalse(Session(EnginesisConfig(site_id=106, developer_key="")).valid_operational_state())

    def test_base_parameters(self) -> None:
        session = Session(EnginesisConfig(site_id=106, developer_key="X", game_id=5))
        first = session.base_parameters("GameGet")
        second = session.base_parameters("GameGet")
        self.assertEqual(first["site_id"], 106)
        self.assertEqual(first["game_id"], 5)
        self.assertEqual(first["response"], "json")
        self.assertNotIn("authtok", first)
        self.assertLess(first["state_seq"], second["state_seq"])


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
