"""Identity provider adapters and their registry.

An adapter wraps one login network (Enginesis itself, Facebook, Google, ...). Every
adapter reports the signed-in user as an SsoUserInfo so the orchestrator can federate
it through UserLoginCoreg without knowing which network it came from.

Adding a network means registering an adapter under its network id.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterator, List, Optional

from .domain import NetworkId, SsoUserInfo
from .session import Session


logger = logging.getLogger(__name__)


class IdentityProvider(ABC):
    network_id: int = 0

    @abstractmethod
    async def load(self) -> bool:
        """Prepare the network SDK; False when the network cannot be used."""

    @abstractmethod
    async def login(self) -> Optional[SsoUserInfo]:
        raise NotImplementedError

    @abstractmethod
    async def logout(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def get_login_status(self) -> Optional[SsoUserInfo]:
        """The user currently signed in with this network, or None."""

    def token_expiration_date(self) -> Optional[datetime]:
        return None


class EnginesisProvider(IdentityProvider):
    """First-party login: the Session itself is the source of truth, so it is always loaded."""

    network_id = int(NetworkId.ENGINESIS)

    def __init__(self, session: Session) -> None:
        self._session = session

    async def load(self) -> bool:
        return True

    async def login(self) -> Optional[SsoUserInfo]:
        # credentials go through UserLogin; nothing to prompt for here
        return await self.get_login_status()

    async def logout(self) -> None:
        return None

    async def get_login_status(self) -> Optional[SsoUserInfo]:
        session = self._session
        if not session.is_user_logged_in():
            return None
        user = session.user
        return SsoUserInfo(
            network_id=self.network_id,
            user_name=user.user_name,
            real_name=user.full_name,
            email=user.email or "",
            site_user_id=user.site_user_id or str(user.user_id),
            site_user_token=session.auth_token,
            gender=user.gender,
            dob=user.date_of_birth,
        )

    def token_expiration_date(self) -> Optional[datetime]:
        expires = self._session.auth_token_expires
        if not expires:
            return None
        try:
            return datetime.fromisoformat(str(expires).replace("Z", "+00:00"))
        except ValueError:
            logger.debug("unparseable token expiration %r", expires)
            return None


class ProviderRegistry:
    """Adapters keyed by network id, iterated in registration order."""

    def __init__(self) -> None:
        self._providers: Dict[int, IdentityProvider] = {}

    def register(self, provider: IdentityProvider) -> None:
        self._providers[int(provider.network_id)] = provider

    def unregister(self, network_id: int) -> None:
        self._providers.pop(int(network_id), None)

    def get(self, network_id: Optional[int]) -> Optional[IdentityProvider]:
        if network_id is None:
            return None
        return self._providers.get(int(network_id))

    def network_ids(self) -> List[int]:
        return list(self._providers)

    def third_party(self) -> Iterator[IdentityProvider]:
        for network_id, provider in self._providers.items():
            if network_id != NetworkId.ENGINESIS:
                yield provider

    def __contains__(self, network_id: object) -> bool:
        try:
            return int(network_id) in self._providers  # type: ignore[call-overload]
        except (TypeError, ValueError):
            return False

    def __len__(self) -> int:
        return len(self._providers)


__all__ = ["EnginesisProvider", "IdentityProvider", "ProviderRegistry"]
