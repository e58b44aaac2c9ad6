"""Connection registry (core domain).

Maps each user to exactly one live connection handle plus a presence status.
Everything else asks the registry where to deliver; a missing entry means
"deliver nothing", never an error.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from core.models import USER_STATUSES, ConnectionEntry

LOGGER = logging.getLogger(__name__)


class ConnectionRegistry:
    """Keyed store of live connections, one entry per user.

    Mutations never await, so under a single event loop every
    check-and-replace below is atomic with respect to other connections.
    """

    def __init__(self) -> None:
        self._entries: dict[str, ConnectionEntry] = {}

    def register(self, user_id: str, handle: Any) -> Optional[ConnectionEntry]:
        """Insert or replace the entry for a user and mark it online.

        Returns the superseded entry when the user already had a connection.
        """

        previous = self._entries.get(user_id)
        self._entries[user_id] = ConnectionEntry(user_id=user_id, handle=handle, status="online")
        if previous is not None and previous.handle is not handle:
            LOGGER.info("Connection for %s replaced by a newer one", user_id)
            return previous
        return None

    def resolve(self, user_id: str) -> Optional[Any]:
        """Return the live handle for a user, or None when offline."""

        entry = self._entries.get(user_id)
        return entry.handle if entry else None

    def status_of(self, user_id: str) -> str:
        entry = self._entries.get(user_id)
        return entry.status if entry else "offline"

    def set_status(self, user_id: str, status: str) -> bool:
        """Update a registered user's status; unknown values are ignored."""

        if status not in USER_STATUSES:
            return False
        entry = self._entries.get(user_id)
        if entry is None:
            return False
        entry.status = status
        return True

    def unregister(self, user_id: str, handle: Any = None) -> bool:
        """Remove a user's entry. Idempotent.

        When ``handle`` is given, the entry is only removed if it still belongs
        to that handle, so a superseded connection cannot evict its replacement.
        """

        entry = self._entries.get(user_id)
        if entry is None:
            return False
        if handle is not None and entry.handle is not handle:
            return False
        del self._entries[user_id]
        return True

    async def deliver(self, user_id: str, event: str, payload: dict[str, Any]) -> bool:
        """Push an event to a user if online. Transport failures are logged, not raised."""

        handle = self.resolve(user_id)
        if handle is None:
            return False
        try:
            await handle.emit(event, payload)
        except Exception:
            LOGGER.exception("Failed to deliver %s to %s", event, user_id)
            return False
        return True

    def is_online(self, user_id: str) -> bool:
        return user_id in self._entries

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
