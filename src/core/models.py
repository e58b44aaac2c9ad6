"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any transport- or storage-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

USER_STATUSES = ("online", "away", "busy", "offline")
MESSAGE_TYPES = ("text", "image", "file", "audio", "video", "location")
CALL_TYPES = ("video", "audio")
CALL_ANSWERS = ("accepted", "rejected")

CALL_RINGING = "ringing"
CALL_CONNECTED = "connected"
CALL_ENDED = "ended"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class UserProfile:
    """Display profile of an authenticated user."""

    user_id: str
    username: str
    first_name: str = ""
    last_name: str = ""
    avatar: str = ""
    status: str = "offline"
    last_seen: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        name = " ".join(part for part in [self.first_name, self.last_name] if part)
        return name or self.username


@dataclass(frozen=True)
class RelationshipSnapshot:
    """Friend and blocked sets of one user, loaded when the connection opens."""

    user_id: str
    friend_ids: frozenset[str] = frozenset()
    blocked_ids: frozenset[str] = frozenset()

    def is_friend(self, user_id: str) -> bool:
        return user_id in self.friend_ids

    def has_blocked(self, user_id: str) -> bool:
        return user_id in self.blocked_ids


@dataclass(frozen=True)
class MessageDraft:
    """Transient message handed to persistence before it has an id."""

    sender_id: str
    receiver_id: str
    content: str
    message_type: str = "text"
    reply_to_id: Optional[str] = None


@dataclass(frozen=True)
class StoredMessage:
    """Persisted message as returned by the persistence collaborator."""

    id: str
    sender_id: str
    receiver_id: str
    content: str
    message_type: str
    created_at: datetime
    reply_to_id: Optional[str] = None
    is_read: bool = False
    read_at: Optional[datetime] = None

    def involves(self, first_id: str, second_id: str) -> bool:
        return {self.sender_id, self.receiver_id} == {first_id, second_id}


@dataclass
class ConnectionEntry:
    """Registry entry: the single live handle for a user."""

    user_id: str
    handle: Any
    status: str = "online"


def pair_key(first_id: str, second_id: str) -> frozenset[str]:
    """Unordered key for a two-party call."""

    return frozenset((first_id, second_id))


@dataclass
class CallSession:
    """Ephemeral call state kept by the signaling broker."""

    caller_id: str
    callee_id: str
    call_type: str = "video"
    status: str = CALL_RINGING

    @property
    def pair(self) -> frozenset[str]:
        return pair_key(self.caller_id, self.callee_id)

    def peer_of(self, user_id: str) -> str:
        if user_id == self.caller_id:
            return self.callee_id
        if user_id == self.callee_id:
            return self.caller_id
        raise ValueError(f"{user_id} is not part of this call")


@dataclass
class ConnectionContext:
    """Per-connection state handed to the router with every inbound event."""

    profile: UserProfile
    handle: Any
    relationships: RelationshipSnapshot

    @property
    def user_id(self) -> str:
        return self.profile.user_id
