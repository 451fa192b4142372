"""Restore who the user is when the client starts.

Priority:
1. An auth token (config, `authtok` query parameter, or the engsession cookie) paired
   with the engsession_user cookie. The pair is trusted as is.
2. The session saved in local storage after the last login. Its integrity hash is
   checked; a mismatch is logged and the session is still restored.
3. Otherwise the anonymous identity is loaded, or created on first use.

Also owns the saved session and refresh-token records the orchestrator writes after a
successful login.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, Optional

from .anonymous_user import AnonymousUserManager
from .crypto import session_make_hash
from .domain import LoggedInUserInfo, to_int
from .local_storage import REFRESH_TOKEN_KEY, SESSION_KEY, LocalStorage
from .session import Session


logger = logging.getLogger(__name__)

SESSION_COOKIE = "engsession"
SESSION_USERINFO = "engsession_user"

RESTORED_AUTH_TOKEN = "auth_token"
RESTORED_SAVED_SESSION = "saved_session"
RESTORED_ANONYMOUS = "anonymous"


class SessionRestorer:
    def __init__(self, session: Session, storage: LocalStorage, anonymous: AnonymousUserManager) -> None:
        self._session = session
        self._storage = storage
        self._anonymous = anonymous

    # --- Public API ---
    def restore(self) -> str:
        if self.restore_from_auth_token():
            return RESTORED_AUTH_TOKEN
        if self.restore_saved_session():
            return RESTORED_SAVED_SESSION
        self._anonymous.load()
        return RESTORED_ANONYMOUS

    def restore_from_auth_token(self) -> bool:
        session = self._session
        page = session.page
        token = session.config.auth_token or page.query_parameters().get("authtok") or page.cookie_get(SESSION_COOKIE)
        if not token:
            return False

        raw = page.cookie_get(SESSION_USERINFO)
        if not raw:
            return False
        try:
            info = json.loads(raw)
        except ValueError:
            logger.warning("%s cookie is not valid JSON, ignoring", SESSION_USERINFO)
            return False
        if not isinstance(info, dict):
            return False

        user = LoggedInUserInfo(
            user_id=to_int(info.get("user_id")),
            user_name=info.get("user_name") or "",
            access_level=to_int(info.get("access_level")),
            site_user_id=info.get("site_user_id") or "",
        )
        if not user.user_id:
            return False
        session.set_logged_in(user, token)
        session.network_id = to_int(info.get("network_id"), 1)
        logger.debug("restored user %d from auth token", user.user_id)
        return True

    def restore_saved_session(self) -> bool:
        session = self._session
        saved = self._storage.load_object(SESSION_KEY)
        if not isinstance(saved, dict):
            return False

        user_id = to_int(saved.get("userId"))
        token = saved.get("authToken") or ""
        if not user_id or not token:
            return False

        site_key = saved.get("siteKey") or ""
        expected = session_make_hash(
            session.site_id,
            user_id,
            saved.get("userName"),
            saved.get("siteUserId"),
            saved.get("accessLevel"),
            site_key,
        )
        if expected != saved.get("cr"):
            logger.warning("saved session hash does not match. Saved: %s. Computed here: %s", saved.get("cr"), expected)

        user = LoggedInUserInfo(
            user_id=user_id,
            user_name=saved.get("userName") or "",
            site_user_id=saved.get("siteUserId") or "",
            access_level=to_int(saved.get("accessLevel")),
            rank=to_int(saved.get("rank"), 10001),
            experience_points=to_int(saved.get("experiencePoints")),
            login_date=saved.get("loginDate"),
            email=saved.get("email"),
            location=saved.get("location") or "",
            country=saved.get("country") or "",
        )
        session.set_logged_in(user, token)
        session.network_id = to_int(saved.get("networkId"), 1)
        session.site_key = site_key
        session.session_id = saved.get("sessionId")
        session.auth_token_expires = saved.get("authTokenExpires")
        session.refresh_token = saved.get("refreshToken")
        logger.debug("restored user %d from saved session", user_id)
        return True

    def save_session(self) -> None:
        session = self._session
        user = session.user
        payload: Dict[str, Any] = {
            "userId": user.user_id,
            "userName": user.user_name,
            "siteUserId": user.site_user_id,
            "networkId": session.network_id,
            "siteKey": session.site_key,
            "accessLevel": user.access_level,
            "rank": user.rank,
            "experiencePoints": user.experience_points,
            "loginDate": user.login_date,
            "email": user.email,
            "location": user.location,
            "country": user.country,
            "sessionId": session.session_id,
            "authToken": session.auth_token,
            "authTokenExpires": session.auth_token_expires,
            "refreshToken": session.refresh_token,
            "cr": session_make_hash(
                session.site_id, user.user_id, user.user_name, user.site_user_id, user.access_level, session.site_key
            ),
        }
        try:
            self._storage.save_object(SESSION_KEY, payload)
        except OSError as exc:
            logger.error("failed to save the user session: %s", exc)

    def clear_saved_session(self) -> None:
        try:
            self._storage.remove_object(SESSION_KEY)
        except OSError as exc:
            logger.error("failed to remove the saved session: %s", exc)

    def save_refresh_token(self, refresh_token: Optional[str]) -> None:
        if not refresh_token:
            return
        try:
            self._storage.save_object(
                REFRESH_TOKEN_KEY, {"refreshToken": refresh_token, "timestamp": int(time.time() * 1000)}
            )
        except OSError as exc:
            logger.error("failed to save the refresh token: %s", exc)

    def get_refresh_token(self) -> Optional[str]:
        data = self._storage.load_object(REFRESH_TOKEN_KEY)
        if isinstance(data, dict):
            return data.get("refreshToken") or None
        return None

    def clear_refresh_token(self) -> None:
        try:
            self._storage.remove_object(REFRESH_TOKEN_KEY)
        except OSError as exc:
            logger.error("failed to remove the refresh token: %s", exc)


__all__ = [
    "RESTORED_ANONYMOUS",
    "RESTORED_AUTH_TOKEN",
    "RESTORED_SAVED_SESSION",
    "SESSION_COOKIE",
    "SESSION_USERINFO",
    "SessionRestorer",
]
