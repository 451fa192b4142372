"""Client-side domain model.

- Entities held by the Session: the logged-in user, the anonymous user.
- The queued request envelope and its lifecycle status.
- The normalized user record every identity provider produces.

Field names follow the Python convention; `to_dict`/`from_dict` translate to the
storage and wire shapes.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional


UTC = timezone.utc

ResultCallback = Callable[[Dict[str, Any]], None]


class StateStatus(int, Enum):
    PENDING = 0
    IN_FLIGHT = 1
    DONE = 2


class NetworkId(int, Enum):
    ENGINESIS = 1
    FACEBOOK = 2
    GOOGLE = 7
    TWITTER = 11


def to_int(value: Any, default: int = 0) -> int:
    """Lenient int conversion for server rows, where numbers often arrive as strings."""

    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def valid_gender(gender: Optional[str]) -> str:
    """Normalize to one of M, F, U."""

    first = (gender or "").strip().upper()[:1]
    return first if first in ("M", "F") else "U"


@dataclass
class LoggedInUserInfo:
    user_id: int = 0
    user_name: str = ""
    full_name: str = ""
    gender: str = "U"
    date_of_birth: Optional[str] = None
    access_level: int = 0
    site_user_id: str = ""
    rank: int = 10001
    experience_points: int = 0
    login_date: Optional[str] = None
    email: Optional[str] = None
    location: str = ""
    country: str = ""


@dataclass
class AnonymousUser:
    date_created: datetime = field(default_factory=lambda: datetime.now(UTC))
    date_last_visit: datetime = field(default_factory=lambda: datetime.now(UTC))
    subscriber_email: str = ""
    user_id: int = 0
    user_name: str = ""
    favorite_games: List[int] = field(default_factory=list)
    games_played: List[int] = field(default_factory=list)
    cr: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dateCreated": self.date_created.isoformat(),
            "dateLastVisit": self.date_last_visit.isoformat(),
            "subscriberEmail": self.subscriber_email,
            "userId": self.user_id,
            "userName": self.user_name,
            "favoriteGames": list(self.favorite_games),
            "gamesPlayed": list(self.games_played),
            "cr": self.cr,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnonymousUser":
        user = cls(
            subscriber_email=data.get("subscriberEmail") or "",
            user_id=to_int(data.get("userId")),
            user_name=data.get("userName") or "",
            favorite_games=list(data.get("favoriteGames") or []),
            games_played=list(data.get("gamesPlayed") or []),
            cr=data.get("cr") or "",
        )
        for attr, key in (("date_created", "dateCreated"), ("date_last_visit", "dateLastVisit")):
            value = data.get(key)
            if value:
                try:
                    setattr(user, attr, datetime.fromisoformat(str(value).replace("Z", "+00:00")))
                except ValueError:
                    pass
        return user


@dataclass
class SsoUserInfo:
    network_id: int
    user_name: str = ""
    real_name: str = ""
    email: str = ""
    site_user_id: str = ""
    site_user_token: str = ""
    gender: str = "U"
    dob: Optional[str] = None
    avatar_url: str = ""
    scope: str = ""

    def registration_parameters(self) -> Dict[str, Any]:
        return {
            "site_user_id": self.site_user_id,
            "user_name": self.user_name,
            "real_name": self.real_name,
            "email_address": self.email,
            "gender": self.gender,
            "dob": self.dob,
            "avatar_url": self.avatar_url,
            "scope": self.scope,
            "id_token": self.site_user_token,
        }


@dataclass
class QueuedRequest:
    fn: str
    state_seq: int
    parameters: Dict[str, Any]
    state_status: StateStatus = StateStatus.PENDING
    callback: Optional[ResultCallback] = None
    future: Optional["asyncio.Future[Dict[str, Any]]"] = None

    def form_fields(self) -> Dict[str, Any]:
        fields = dict(self.parameters)
        fields["fn"] = self.fn
        fields["state_seq"] = self.state_seq
        fields["state_status"] = int(self.state_status)
        return fields

    def to_dict(self) -> Dict[str, Any]:
        return self.form_fields()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueuedRequest":
        if not isinstance(data, dict) or "fn" not in data or "state_seq" not in data:
            raise ValueError("queued request requires fn and state_seq")
        parameters = {k: v for k, v in data.items() if k not in ("fn", "state_seq", "state_status")}
        try:
            status = StateStatus(int(data.get("state_status") or 0))
        except ValueError:
            status = StateStatus.PENDING
        return cls(fn=str(data["fn"]), state_seq=int(data["state_seq"]), parameters=parameters, state_status=status)


__all__ = [
    "AnonymousUser",
    "LoggedInUserInfo",
    "NetworkId",
    "QueuedRequest",
    "ResultCallback",
    "SsoUserInfo",
    "StateStatus",
    "to_int",
    "valid_gender",
]
