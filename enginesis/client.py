"""Enginesis client: the session orchestrator.

Composes Session + LocalStorage + ServiceQueue + SessionRestorer + AnonymousUserManager
+ ProviderRegistry + LogoutHandler + EventBus into the public API an application uses.

Usage:

    client = EnginesisClient(page=PageContext(host="www.varyn.com"))
    await client.init({"siteId": 106, "developerKey": "...", "serverStage": "*"})
    result = await client.session_begin(game_key, game_id)

Every operation returns an Enginesis result dict, never raises; check it with
error_handling.is_error().
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence, Union

from .anonymous_user import AnonymousUserManager
from .client_config import EnginesisConfig, PageContext
from .crypto import encrypt_score_submit, session_make_hash
from .domain import LoggedInUserInfo, NetworkId, ResultCallback, SsoUserInfo, to_int, valid_gender
from .error_handling import (
    ErrorCode,
    error_code,
    handle_error_action,
    is_error,
    map_error_to_action,
)
from .event_bus import EventBus
from .http_client import HttpxTransport, RequestsTransport, Transport, default_transports
from .local_storage import ANONYMOUS_USER_KEY, LocalStorage
from .logout_handler import LogoutHandler
from .service_queue import ServiceQueue
from .session import Session
from .sso import EnginesisProvider, ProviderRegistry
from .sso_startup import SESSION_COOKIE, SESSION_USERINFO, SessionRestorer


logger = logging.getLogger(__name__)

RESTORE_QUEUE_DELAY = 0.5
_IMAGE_FORMATS = (".jpg", ".png", ".svg")


def _result_row(result: Dict[str, Any]) -> Dict[str, Any]:
    results = result.get("results") or {}
    payload = results.get("result") if isinstance(results, dict) else None
    if isinstance(payload, dict):
        row = payload.get("row", payload)
        return row if isinstance(row, dict) else {}
    if isinstance(payload, list) and payload and isinstance(payload[0], dict):
        return payload[0]
    return {}


def _registration_value(registration: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = registration.get(key)
        if value is not None:
            return value
    return None


class EnginesisClient:
    def __init__(
        self,
        *,
        page: Optional[PageContext] = None,
        storage: Optional[LocalStorage] = None,
        transports: Optional[Sequence[Transport]] = None,
        providers: Optional[ProviderRegistry] = None,
        bus: Optional[EventBus] = None,
        restore_delay: float = RESTORE_QUEUE_DELAY,
    ) -> None:
        self.page = page or PageContext()
        self.storage = storage or LocalStorage()
        self.transports: List[Transport] = list(transports) if transports is not None else default_transports()
        self.providers = providers if providers is not None else ProviderRegistry()
        self.bus = bus or EventBus()
        self.restore_delay = restore_delay

        self.session: Optional[Session] = None
        self.queue: Optional[ServiceQueue] = None
        self.anonymous: Optional[AnonymousUserManager] = None
        self.restorer: Optional[SessionRestorer] = None
        self.restored_from: Optional[str] = None
        self._logout_handler = LogoutHandler(
            clear_local_session=self._clear_local_session,
            broadcast_status=self.bus.broadcast_session_status,
        )
        self._drain_task: Optional["asyncio.Task[Any]"] = None

    # --- Lifecycle ---
    async def init(self, config: Union[EnginesisConfig, Dict[str, Any]]) -> None:
        if isinstance(config, dict):
            config = EnginesisConfig.from_dict(config)
        session = Session(config, self.page)
        self.session = session
        self.queue = ServiceQueue(session, self.storage, self.transports, self.bus, default_subscriber=config.callback)
        self.queue.set_result_preprocessor(self._preprocess_result)
        self.anonymous = AnonymousUserManager(session, self.storage)
        self.restorer = SessionRestorer(session, self.storage, self.anonymous)
        if NetworkId.ENGINESIS not in self.providers:
            self.providers.register(EnginesisProvider(session))

        self.restored_from = self.restorer.restore()
        logger.debug(
            "Enginesis client for site %d on %s, user restored from %s",
            session.site_id,
            session.service_url,
            self.restored_from,
        )

        if self.queue.restore_queue():
            self._drain_task = asyncio.create_task(self._drain_restored_queue())

    async def _drain_restored_queue(self) -> None:
        await asyncio.sleep(self.restore_delay)
        await self.queue.drain_on_reconnect()

    async def wait_restored(self) -> None:
        """Wait for the drain of a restored queue scheduled by init(), if any."""
        if self._drain_task is not None:
            await self._drain_task

    async def close(self) -> None:
        if self._drain_task is not None and not self._drain_task.done():
            self._drain_task.cancel()
            try:
                await self._drain_task
            except asyncio.CancelledError:
                pass
        for transport in self.transports:
            if isinstance(transport, HttpxTransport):
                await transport.aclose()
            elif isinstance(transport, RequestsTransport):
                transport.close()

    # --- Session state ---
    def is_user_logged_in(self) -> bool:
        return self.session.is_user_logged_in()

    def is_online(self) -> bool:
        return self.session.is_online

    def get_logged_in_user_info(self) -> Dict[str, Any]:
        session = self.session
        user = session.user
        return {
            "is_logged_in": user.user_id != 0,
            "user_id": user.user_id,
            "user_name": user.user_name,
            "full_name": user.full_name,
            "site_user_id": user.site_user_id,
            "network_id": session.network_id,
            "access_level": user.access_level,
            "gender": user.gender,
            "dob": user.date_of_birth,
            "access_token": session.auth_token,
            "token_expiration": session.auth_token_expires,
        }

    def get_last_error(self) -> Dict[str, Any]:
        return {
            "is_error": self.session.last_error != "",
            "error": self.session.last_error,
            "description": self.session.last_error_message,
        }

    def get_game_image_url(
        self,
        game_name: str,
        width: Union[int, str, None] = None,
        height: Union[int, str, None] = None,
        image_format: Optional[str] = None,
    ) -> str:
        fmt = image_format or ".jpg"
        if not fmt.startswith("."):
            fmt = "." + fmt
        if fmt.lower() not in _IMAGE_FORMATS:
            fmt = ".jpg"
        if not width or width == "*":
            width = 600
        if not height or height == "*":
            height = 450
        return f"{self.session.protocol}{self.session.server_host}/games/{game_name}/images/{width}x{height}{fmt}"

    # --- Refresh token ---
    def save_refresh_token(self, refresh_token: str) -> None:
        self.restorer.save_refresh_token(refresh_token)

    def get_refresh_token(self) -> Optional[str]:
        return self.restorer.get_refresh_token()

    def clear_refresh_token(self) -> None:
        self.restorer.clear_refresh_token()

    # --- Remote operations ---
    async def request(
        self,
        service_name: Union[str, Dict[str, Any]],
        parameters: Optional[Dict[str, Any]] = None,
        callback: Optional[ResultCallback] = None,
    ) -> Dict[str, Any]:
        """Call any service endpoint. A dict carrying "fn" may stand in for (name, parameters)."""

        if isinstance(service_name, dict):
            parameters = dict(service_name)
            service_name = str(parameters.get("fn") or "")
        return await self.queue.enqueue(service_name, parameters, callback)

    async def session_begin(
        self, game_key: str, game_id: Optional[int] = None, callback: Optional[ResultCallback] = None
    ) -> Dict[str, Any]:
        if not game_id:
            game_id = self.session.game_id
        site_mark = 0
        if not self.is_user_logged_in():
            anonymous = self.anonymous.user
            self.page.cookie_set(ANONYMOUS_USER_KEY, anonymous.to_dict())
            site_mark = anonymous.user_id
        return await self.queue.enqueue(
            "SessionBegin", {"game_id": game_id, "gamekey": game_key, "site_mark": site_mark}, callback
        )

    async def session_refresh(
        self, refresh_token: Optional[str] = None, callback: Optional[ResultCallback] = None
    ) -> Dict[str, Any]:
        if not refresh_token:
            refresh_token = self.restorer.get_refresh_token()
            if not refresh_token:
                return self._local_error(
                    "SessionRefresh", ErrorCode.INVALID_TOKEN, "Refresh token not provided or is invalid.", callback
                )
        return await self.queue.enqueue("SessionRefresh", {"token": refresh_token}, callback)

    async def user_login(
        self, user_name: str, password: str, callback: Optional[ResultCallback] = None
    ) -> Dict[str, Any]:
        return await self.queue.enqueue("UserLogin", {"user_name": user_name, "password": password}, callback)

    async def login_coreg(
        self,
        registration: Union[SsoUserInfo, Dict[str, Any]],
        network_id: Optional[int] = None,
        callback: Optional[ResultCallback] = None,
    ) -> Dict[str, Any]:
        """Log in (registering on first use) a user authenticated by another network.

        `registration` is an SsoUserInfo or a dict using either snake_case or the
        camelCase keys the web pages post (siteUserId, userName, realName, ...).
        """

        if isinstance(registration, SsoUserInfo):
            if network_id is None:
                network_id = registration.network_id
            fields = registration.registration_parameters()
        else:
            r = registration or {}
            if network_id is None:
                network_id = _registration_value(r, "network_id", "networkId")
            fields = {
                "site_user_id": _registration_value(r, "site_user_id", "siteUserId"),
                "user_name": _registration_value(r, "user_name", "userName"),
                "real_name": _registration_value(r, "real_name", "realName"),
                "email_address": _registration_value(r, "email_address", "emailAddress", "email"),
                "gender": _registration_value(r, "gender"),
                "dob": _registration_value(r, "dob"),
                "scope": _registration_value(r, "scope"),
                "agreement": _registration_value(r, "agreement"),
                "avatar_url": _registration_value(r, "avatar_url", "avatarURL"),
                "id_token": _registration_value(r, "id_token", "idToken"),
            }

        if not fields.get("site_user_id"):
            return self._local_error("UserLoginCoreg", ErrorCode.INVALID_PARAM, "site_user_id is required.", callback)
        if not fields.get("user_name") and not fields.get("real_name"):
            return self._local_error(
                "UserLoginCoreg", ErrorCode.INVALID_PARAM, "Either user_name or real_name is required.", callback
            )

        dob = fields.get("dob")
        if isinstance(dob, datetime):
            dob = dob.date().isoformat()
        elif isinstance(dob, date):
            dob = dob.isoformat()
        elif not dob:
            dob = date.today().isoformat()

        parameters = {
            "site_user_id": fields["site_user_id"],
            "user_name": fields.get("user_name") or "",
            "real_name": fields.get("real_name") or "",
            "email_address": fields.get("email_address") or "",
            "gender": valid_gender(fields.get("gender")),
            "dob": dob,
            "network_id": to_int(network_id, int(NetworkId.ENGINESIS)),
            "scope": fields.get("scope") or "",
            "agreement": fields.get("agreement") or "0",
            "avatar_url": fields.get("avatar_url") or "",
            "id_token": fields.get("id_token") or "",
        }
        return await self.queue.enqueue("UserLoginCoreg", parameters, callback)

    async def score_submit(
        self,
        game_id: Optional[int],
        score: Any,
        game_data: Any = "",
        time_played: Any = 0,
        callback: Optional[ResultCallback] = None,
    ) -> Dict[str, Any]:
        session = self.session
        code = ""
        if not session.auth_token_was_validated or session.user.user_id == 0:
            code = ErrorCode.NOT_LOGGED_IN
        elif not session.session_id:
            code = ErrorCode.INVALID_SESSION
        elif not game_id:
            game_id = session.game_id
            if not game_id:
                code = ErrorCode.INVALID_GAME_ID

        data = None
        if not code:
            data = encrypt_score_submit(
                session.site_id, session.user.user_id, game_id, score, game_data, time_played, session.session_id
            )
            if data is None:
                code = ErrorCode.INVALID_PARAM

        if code:
            return self._local_error(
                "ScoreSubmit",
                code,
                "Error encountered while processing score submit.",
                callback,
                {"game_id": game_id, "score": score, "game_data": game_data, "time_played": time_played},
            )
        return await self.queue.enqueue("ScoreSubmit", {"data": data}, callback)

    async def score_submit_unauth(
        self,
        game_id: int,
        user_name: str,
        score: Any,
        game_data: Any = "",
        time_played: Any = 0,
        user_source: str = "",
        callback: Optional[ResultCallback] = None,
    ) -> Dict[str, Any]:
        return await self.queue.enqueue(
            "ScoreSubmitUnauth",
            {
                "game_id": game_id,
                "session_id": "",
                "user_name": user_name,
                "score": score,
                "game_data": game_data,
                "time_played": time_played,
                "user_source": user_source,
            },
            callback,
        )

    async def registered_user_get(
        self,
        user_id: int,
        site_user_id: Optional[str] = None,
        network_id: Optional[int] = None,
        callback: Optional[ResultCallback] = None,
    ) -> Dict[str, Any]:
        return await self.queue.enqueue(
            "RegisteredUserGet",
            {"get_user_id": user_id, "site_user_id": site_user_id, "network_id": network_id},
            callback,
        )

    async def game_get(self, game_id: int, callback: Optional[ResultCallback] = None) -> Dict[str, Any]:
        return await self.queue.enqueue("GameGet", {"game_id": game_id}, callback)

    async def game_get_by_name(self, game_name: str, callback: Optional[ResultCallback] = None) -> Dict[str, Any]:
        return await self.queue.enqueue("GameGetByName", {"game_name": game_name}, callback)

    async def game_list_list_games(
        self, game_list_id: int, callback: Optional[ResultCallback] = None
    ) -> Dict[str, Any]:
        return await self.queue.enqueue("GameListListGames", {"game_list_id": game_list_id}, callback)

    async def game_rating_update(
        self, game_id: int, rating: int, callback: Optional[ResultCallback] = None
    ) -> Dict[str, Any]:
        return await self.queue.enqueue("GameRatingUpdate", {"game_id": game_id, "rating": rating}, callback)

    async def user_favorite_games_list(self, callback: Optional[ResultCallback] = None) -> Dict[str, Any]:
        return await self.queue.enqueue("UserFavoriteGamesList", {}, callback)

    async def user_favorite_games_assign(
        self, game_id: int, callback: Optional[ResultCallback] = None
    ) -> Dict[str, Any]:
        return await self.queue.enqueue("UserFavoriteGamesAssign", {"game_id": game_id}, callback)

    async def user_favorite_games_delete(
        self, game_id: int, callback: Optional[ResultCallback] = None
    ) -> Dict[str, Any]:
        return await self.queue.enqueue("UserFavoriteGamesDelete", {"game_id": game_id}, callback)

    async def newsletter_address_assign(
        self,
        email_address: str,
        user_name: str,
        company_name: str = "",
        categories: Union[str, List[Any]] = "",
        callback: Optional[ResultCallback] = None,
    ) -> Dict[str, Any]:
        return await self.queue.enqueue(
            "NewsletterAddressAssign",
            {
                "email_address": email_address,
                "user_name": user_name,
                "company_name": company_name,
                "categories": categories,
                "delimiter": ",",
            },
            callback,
        )

    # --- SSO / logout ---
    async def check_is_user_logged_in(self) -> Optional[SsoUserInfo]:
        """Confirm the current login with its network, or federate a session found on any network.

        Broadcasts active or none. Never raises.
        """

        try:
            if self.is_user_logged_in():
                return await self._revalidate_login()
            for provider in self.providers.third_party():
                try:
                    if not await provider.load():
                        continue
                    info = await provider.get_login_status()
                except Exception as exc:  # noqa: BLE001
                    logger.warning("network %s login status check failed: %s", provider.network_id, exc)
                    continue
                if info is None:
                    continue
                result = await self.login_coreg(info, provider.network_id)
                if is_error(result):
                    logger.warning("could not federate network %s user: %s", provider.network_id, error_code(result))
                    break
                return info
        except Exception as exc:  # noqa: BLE001
            logger.warning("login check failed: %s", exc)
        self.bus.broadcast_session_status("none")
        return None

    async def _revalidate_login(self) -> Optional[SsoUserInfo]:
        network_id = self.session.network_id
        provider = self.providers.get(network_id) or self.providers.get(NetworkId.ENGINESIS)
        info = None
        if await provider.load():
            info = await provider.get_login_status()
        if info is not None:
            self.bus.broadcast_session_status("active")
            return info
        logger.info("network %s no longer reports user %d as logged in", network_id, self.session.user.user_id)
        self._clear_local_session()
        self.bus.broadcast_session_status("none")
        return None

    async def logout(self) -> None:
        provider = self.providers.get(self.session.network_id) if self.is_user_logged_in() else None
        await self._logout_handler.logout(provider)

    async def restore_online(self) -> List[Dict[str, Any]]:
        return await self.queue.drain_on_reconnect()

    def set_offline(self) -> bool:
        return self.queue.set_offline()

    # --- Result preprocessing ---
    def _preprocess_result(self, result: Dict[str, Any]) -> None:
        session = self.session
        if is_error(result):
            code = error_code(result)
            status = (result.get("results") or {}).get("status") or {}
            session.set_last_error(code, status.get("extended_info") or "")
            handle_error_action(
                map_error_to_action(code),
                broadcast_status=self.bus.broadcast_session_status,
                on_internal=lambda: logger.warning("%s failed on the server: %s", result.get("fn"), code),
            )
            return

        session.set_last_error("", "")
        fn = result.get("fn")
        row = _result_row(result)
        if fn == "SessionBegin":
            self._update_game_session(row)
        elif fn in ("UserLogin", "UserLoginCoreg"):
            self._update_logged_in_user(row)
        elif fn == "SessionRefresh":
            self._update_refreshed_token(row)

    def _update_game_session(self, row: Dict[str, Any]) -> None:
        session = self.session
        if row.get("session_id"):
            session.session_id = row["session_id"]
        session.site_key = row.get("developerKey") or ""
        token = row.get("authtok")
        if token and session.user.user_id:
            session.set_logged_in(session.user, token)
        elif row.get("site_mark") and not session.is_user_logged_in():
            mark = to_int(row.get("site_mark"))
            if mark and mark != self.anonymous.user.user_id:
                self.anonymous.user.user_id = mark
                self.anonymous.save()
        session.site_resources.update_from_row(row)

    def _update_logged_in_user(self, row: Dict[str, Any]) -> None:
        session = self.session
        user = LoggedInUserInfo(
            user_id=to_int(row.get("user_id")),
            user_name=row.get("user_name") or "",
            full_name=row.get("real_name") or "",
            gender=valid_gender(row.get("gender")),
            date_of_birth=row.get("dob"),
            access_level=to_int(row.get("access_level")),
            site_user_id=row.get("site_user_id") or "",
            rank=to_int(row.get("user_rank"), 10001),
            experience_points=to_int(row.get("site_experience_points")),
            login_date=row.get("last_login"),
            email=row.get("email_address"),
            location=row.get("city") or "",
            country=row.get("country_code") or "",
        )
        token = row.get("authtok") or ""
        if not user.user_id or not token:
            logger.warning("login response carries no user id or auth token, ignoring it")
            return

        session.set_logged_in(user, token)
        session.network_id = to_int(row.get("network_id"), int(NetworkId.ENGINESIS))
        session.session_id = row.get("session_id") or session.session_id
        session.auth_token_expires = row.get("expires")
        session.refresh_token = row.get("refreshToken") or row.get("refresh_token")

        expected = session_make_hash(
            session.site_id, user.user_id, user.user_name, user.site_user_id, user.access_level, session.site_key
        )
        if row.get("cr") != expected:
            logger.warning("login hash does not match. From server: %s. Computed here: %s", row.get("cr"), expected)

        self.restorer.save_session()
        self.restorer.save_refresh_token(session.refresh_token)
        self.bus.broadcast_session_status("active")

    def _update_refreshed_token(self, row: Dict[str, Any]) -> None:
        session = self.session
        token = row.get("authtok") or row.get("authToken")
        if not token or not session.user.user_id:
            return
        session.set_logged_in(session.user, token)
        if row.get("expires"):
            session.auth_token_expires = row["expires"]
        refresh_token = row.get("refreshToken") or row.get("refresh_token")
        if refresh_token:
            session.refresh_token = refresh_token
            self.restorer.save_refresh_token(refresh_token)
        self.restorer.save_session()

    # --- Helpers ---
    def _local_error(
        self,
        service_name: str,
        code: str,
        message: str,
        callback: Optional[ResultCallback] = None,
        passthru: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        self.session.set_last_error(str(getattr(code, "value", code)), message)
        return self.queue.immediate_error(service_name, code, message, callback, passthru)

    def _clear_local_session(self) -> None:
        self.session.clear_login()
        self.restorer.clear_saved_session()
        self.restorer.clear_refresh_token()
        self.page.cookies.pop(SESSION_COOKIE, None)
        self.page.cookies.pop(SESSION_USERINFO, None)


__all__ = ["EnginesisClient", "RESTORE_QUEUE_DELAY"]
