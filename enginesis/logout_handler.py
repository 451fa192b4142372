from __future__ import annotations

import logging
from typing import Callable, Optional

from .sso import IdentityProvider


class LogoutHandler:
    """Logout across local state and the network the user signed in with.

    Collaborators are injected so tests and embedders can swap them.
    """

    def __init__(
        self,
        clear_local_session: Callable[[], None],
        broadcast_status: Callable[[str], None],
    ) -> None:
        self._clear = clear_local_session
        self._broadcast = broadcast_status
        self._logger = logging.getLogger(__name__)

    async def logout(self, provider: Optional[IdentityProvider] = None) -> None:
        """Log out of the originating network, then drop the local session and broadcast none."""
        try:
            if provider is not None:
                await provider.logout()
        except Exception as exc:  # noqa: BLE001
            # the local session is cleared regardless of what the network says
            self._logger.warning("network %s logout failed, proceeding with local cleanup: %s", provider.network_id, exc)
        finally:
            self._clear()
            self._broadcast("none")


__all__ = ["LogoutHandler"]
