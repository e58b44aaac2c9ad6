"""Ports (interfaces) used by the core.

Ports define the minimal contracts for persistence, identity and connection
adapters so that the core can be reused with different backends and transports.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol

from core.models import MessageDraft, StoredMessage, UserProfile


class ConnectionHandle(Protocol):
    """A send-capable reference to one live client connection."""

    async def emit(self, event: str, payload: dict[str, Any]) -> None:
        ...


class PersistencePort(Protocol):
    """Persistence operations required by the core.

    Implementations raise ``core.errors.PersistenceError`` when the backing
    store fails.
    """

    async def find_user(self, user_id: str) -> Optional[UserProfile]:
        ...

    async def save_message(self, draft: MessageDraft) -> StoredMessage:
        ...

    async def find_message(self, message_id: str) -> Optional[StoredMessage]:
        ...

    async def mark_message_read(self, message_id: str, read_at: datetime) -> None:
        ...

    async def get_friend_ids(self, user_id: str) -> set[str]:
        ...

    async def get_blocked_ids(self, user_id: str) -> set[str]:
        ...

    async def update_user_status(
        self, user_id: str, status: str, last_seen: Optional[datetime]
    ) -> None:
        ...


class IdentityPort(Protocol):
    """Turns a client credential into a trusted user id.

    Implementations raise ``core.errors.IdentityError`` for tokens that
    cannot be trusted.
    """

    def verify(self, token: str) -> str:
        ...
