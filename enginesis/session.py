"""Per-client session state.

One Session is built per client and handed to the queue and the orchestrator;
nothing here is module-global.

The login triple (user.user_id, auth_token, auth_token_was_validated) only moves
through set_logged_in() / clear_login(), so either all three say "logged in" or none do.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from .client_config import EnginesisConfig, PageContext, qualify_server_stage
from .domain import AnonymousUser, LoggedInUserInfo


@dataclass
class SiteResources:
    service_url: str = ""
    avatar_image_url: str = ""
    profile_url: str = ""
    login_url: str = ""
    register_url: str = ""
    forgot_password_url: str = ""
    play_url: str = ""
    privacy_url: str = ""
    terms_url: str = ""

    def update_from_row(self, row: Dict[str, Any]) -> None:
        self.profile_url = row.get("profileUrl") or ""
        self.login_url = row.get("loginUrl") or ""
        self.register_url = row.get("registerUrl") or ""
        self.forgot_password_url = row.get("forgotPasswordUrl") or ""
        self.play_url = row.get("playUrl") or ""
        self.privacy_url = row.get("privacyUrl") or ""
        self.terms_url = row.get("termsUrl") or ""


class Session:
    def __init__(self, config: EnginesisConfig, page: Optional[PageContext] = None) -> None:
        self.config = config
        self.page = page or PageContext()

        self.is_online = True
        self.disabled = bool(config.disabled)

        self.user = LoggedInUserInfo()
        self.auth_token = ""
        self.auth_token_was_validated = False
        self.auth_token_expires: Optional[str] = None
        self.refresh_token: Optional[str] = None
        self.session_id: Optional[str] = None
        self.site_key = ""
        self.network_id = 1

        self.anonymous_user = AnonymousUser()
        self.sync_id = 0
        self.site_resources = SiteResources()
        self.last_error = ""
        self.last_error_message = ""

        if config.use_https is None:
            self.use_https = self.page.protocol == "https:"
        else:
            self.use_https = bool(config.use_https)
        self.server_stage, self.server_host = qualify_server_stage(config.server_stage, self.page.host)
        self.site_resources.service_url = f"{self.protocol}{self.server_host}/index.php"
        self.site_resources.avatar_image_url = f"{self.protocol}{self.server_host}/avatar/index.php"

    # --- Config passthrough ---
    @property
    def site_id(self) -> int:
        return self.config.site_id

    @property
    def developer_key(self) -> str:
        return self.config.developer_key

    @property
    def game_id(self) -> int:
        return self.config.game_id

    @property
    def game_group_id(self) -> int:
        return self.config.game_group_id

    @property
    def language_code(self) -> str:
        return self.config.language_code

    @property
    def protocol(self) -> str:
        return "https://" if self.use_https else "http://"

    @property
    def service_url(self) -> str:
        return self.site_resources.service_url

    # --- Login state ---
    def set_logged_in(self, user: LoggedInUserInfo, auth_token: str) -> None:
        if not user.user_id or not auth_token:
            raise ValueError("a logged-in session needs a user id and an auth token")
        self.user = user
        self.auth_token = auth_token
        self.auth_token_was_validated = True

    def clear_login(self) -> None:
        self.user = LoggedInUserInfo()
        self.auth_token = ""
        self.auth_token_was_validated = False
        self.auth_token_expires = None
        self.refresh_token = None
        self.session_id = None
        self.network_id = 1

    def is_user_logged_in(self) -> bool:
        return self.user.user_id != 0 and self.auth_token != "" and self.auth_token_was_validated

    def valid_operational_state(self) -> bool:
        return self.site_id > 0 and bool(self.developer_key) and bool(self.service_url)

    def next_state_seq(self) -> int:
        self.sync_id += 1
        return self.sync_id

    def set_last_error(self, code: str, message: str = "") -> None:
        self.last_error = code
        self.last_error_message = message

    def base_parameters(self, service_name: str) -> Dict[str, Any]:
        """Defaults every request carries; consumes a fresh state sequence number."""

        params: Dict[str, Any] = {
            "fn": service_name,
            "language_code": self.language_code,
            "site_id": self.site_id,
            "user_id": self.user.user_id,
            "game_id": self.game_id,
            "state_seq": self.next_state_seq(),
            "state_status": 0,
            "response": "json",
        }
        if self.user.user_id != 0:
            params["logged_in_user_id"] = self.user.user_id
            params["authtok"] = self.auth_token
        return params


__all__ = ["Session", "SiteResources"]
