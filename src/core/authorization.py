"""Authorization gate for two-party interactions (core domain).

Rules are evaluated in order and the first match wins:
1) receiver does not exist              -> not_found
2) either side has blocked the other    -> blocked
3) messages require friendship          -> not_friends
4) calls have no friendship requirement
5) otherwise                            -> allowed

Block checks run before the friend check so a blocked former friend is
still denied.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from core.models import RelationshipSnapshot
from core.ports import PersistencePort

LOGGER = logging.getLogger(__name__)

KIND_MESSAGE = "message"
KIND_CALL = "call"

REASON_NOT_FOUND = "not_found"
REASON_BLOCKED = "blocked"
REASON_NOT_FRIENDS = "not_friends"

DENIAL_MESSAGES = {
    REASON_NOT_FOUND: "Receiver not found",
    REASON_BLOCKED: "You cannot interact with this user",
    REASON_NOT_FRIENDS: "Can only send messages to friends",
}


@dataclass(frozen=True)
class Decision:
    """Outcome of an authorization check."""

    allowed: bool
    reason: Optional[str] = None

    @property
    def message(self) -> str:
        return DENIAL_MESSAGES.get(self.reason or "", "Not allowed")


ALLOWED = Decision(allowed=True)


def denied(reason: str) -> Decision:
    return Decision(allowed=False, reason=reason)


class AuthorizationGate:
    """Decides whether a sender may message or call a receiver."""

    def __init__(self, persistence: PersistencePort) -> None:
        self._persistence = persistence

    async def can_interact(
        self,
        sender: RelationshipSnapshot,
        receiver_id: str,
        kind: str,
    ) -> Decision:
        """Apply the ordered rules; persistence errors propagate to the caller."""

        if kind not in (KIND_MESSAGE, KIND_CALL):
            raise ValueError(f"Unsupported interaction kind: {kind}")

        receiver = await self._persistence.find_user(receiver_id)
        if receiver is None:
            return denied(REASON_NOT_FOUND)

        if sender.has_blocked(receiver_id):
            return denied(REASON_BLOCKED)
        receiver_blocked = await self._persistence.get_blocked_ids(receiver_id)
        if sender.user_id in receiver_blocked:
            return denied(REASON_BLOCKED)

        if kind == KIND_MESSAGE and not sender.is_friend(receiver_id):
            return denied(REASON_NOT_FRIENDS)

        return ALLOWED
