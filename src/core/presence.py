"""Presence fan-out (core domain)."""

from __future__ import annotations

import logging
from typing import Iterable

from core.events import FRIEND_STATUS_CHANGE
from core.registry import ConnectionRegistry

LOGGER = logging.getLogger(__name__)


class PresenceNotifier:
    """Pushes a user's status to every friend that is currently connected."""

    def __init__(self, registry: ConnectionRegistry) -> None:
        self._registry = registry

    async def broadcast_status(self, user_id: str, friend_ids: Iterable[str], status: str) -> int:
        """Send friend_status_change to online friends and return how many got it.

        Each call is independent; nothing is batched or coalesced.
        """

        payload = {"userId": user_id, "status": status}
        delivered = 0
        for friend_id in friend_ids:
            if await self._registry.deliver(friend_id, FRIEND_STATUS_CHANGE, payload):
                delivered += 1
        LOGGER.debug("Status %s of %s sent to %s friend(s)", status, user_id, delivered)
        return delivered
