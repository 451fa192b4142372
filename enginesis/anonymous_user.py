"""Anonymous identity: the pseudo-user that correlates activity before (or without) login.

Stored under its own key, independent of the logged-in session. The record carries an
integrity hash over (email, id, name, developer key); a record whose hash does not match
is discarded and a fresh identity is created.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from .crypto import anonymous_user_hash
from .domain import UTC, AnonymousUser
from .local_storage import ANONYMOUS_USER_KEY, LocalStorage
from .session import Session


logger = logging.getLogger(__name__)

# ids below this were never confirmed by the server and may be replaced
PROVISIONAL_ID_LIMIT = 10000


class AnonymousUserManager:
    def __init__(self, session: Session, storage: LocalStorage) -> None:
        self._session = session
        self._storage = storage
        self._loaded = False

    @property
    def user(self) -> AnonymousUser:
        if not self._loaded:
            self.load()
        return self._session.anonymous_user

    def hash(self, user: AnonymousUser) -> str:
        return anonymous_user_hash(user.subscriber_email, user.user_id, user.user_name, self._session.developer_key)

    # --- Public API ---
    def load(self) -> AnonymousUser:
        data = self._storage.load_object(ANONYMOUS_USER_KEY)
        user: Optional[AnonymousUser] = None
        if data is not None and not isinstance(data, dict):
            logger.warning("stored anonymous user is not an object, starting a new anonymous identity")
        elif isinstance(data, dict):
            try:
                user = AnonymousUser.from_dict(data)
            except (TypeError, ValueError) as exc:
                logger.warning("stored anonymous user is unreadable, starting a new anonymous identity: %s", exc)
                user = None
            if user is not None and user.cr != self.hash(user):
                logger.warning("anonymous user hash mismatch, starting a new anonymous identity")
                user = None
        if user is None:
            user = AnonymousUser()
        self._session.anonymous_user = user
        self._loaded = True
        return user

    def save(self) -> None:
        user = self.user
        user.cr = self.hash(user)
        try:
            self._storage.save_object(ANONYMOUS_USER_KEY, user.to_dict())
        except OSError as exc:
            logger.error("failed to save anonymous user: %s", exc)

    def set_date_last_visit(self) -> None:
        self.user.date_last_visit = datetime.now(UTC)

    def set_subscriber_email(self, email: str, if_changed: bool = True) -> None:
        prior = self.user.subscriber_email
        if (if_changed and email != prior) or (not if_changed and not prior):
            self.user.subscriber_email = email
            self.save()

    def get_subscriber_email(self) -> str:
        return self.user.subscriber_email

    def set_user_name(self, user_name: str, if_changed: bool = True) -> None:
        prior = self.user.user_name
        if (if_changed and user_name != prior) or (not if_changed and not prior):
            self.user.user_name = user_name
            self.save()

    def get_user_name(self) -> str:
        return self.user.user_name

    def set_id(self, user_id: int) -> None:
        if self.user.user_id < PROVISIONAL_ID_LIMIT:
            self.user.user_id = int(user_id)
            self.save()

    def get_id(self) -> int:
        return self.user.user_id or 0

    def add_favorite_game(self, game_id: int) -> None:
        games = self.user.favorite_games
        if game_id not in games:
            games.insert(0, game_id)
        self.save()

    def game_played(self, game_id: int) -> None:
        """Most recently played first."""

        games: List[int] = self.user.games_played
        if game_id in games:
            games.remove(game_id)
        games.insert(0, game_id)
        self.save()


__all__ = ["AnonymousUserManager", "PROVISIONAL_ID_LIMIT"]
