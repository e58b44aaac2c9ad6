"""Call signaling broker (core domain).

Tracks one ephemeral session per unordered pair of users so offer, answer,
ICE and end messages reach the right counterpart. Media never passes through
here; signaling blobs are relayed verbatim.

Per pair:  NONE -> RINGING -> CONNECTED -> NONE
Reject, explicit end and disconnect of either party return the pair to NONE
from any state. Signaling for a pair without a session is stale and dropped.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from core.events import (
    CALL_ANSWERED,
    CALL_ENDED,
    CALL_FAILED,
    INCOMING_CALL,
    profile_payload,
)
from core.models import (
    CALL_CONNECTED,
    CALL_ENDED as STATUS_ENDED,
    CALL_RINGING,
    CallSession,
    ConnectionContext,
    pair_key,
)
from core.registry import ConnectionRegistry

LOGGER = logging.getLogger(__name__)

FAIL_OFFLINE = "offline"
FAIL_IN_PROGRESS = "call_in_progress"
FAIL_INVALID_TARGET = "invalid_target"

_FAILURE_MESSAGES = {
    FAIL_OFFLINE: "User is offline",
    FAIL_IN_PROGRESS: "A call with this user is already in progress",
    FAIL_INVALID_TARGET: "You cannot call yourself",
}


def failure_payload(reason: str, message: Optional[str] = None) -> dict[str, Any]:
    return {"message": message or _FAILURE_MESSAGES.get(reason, "Call failed"), "reason": reason}


class CallSignalingBroker:
    """Owns the call session table and routes call signaling."""

    def __init__(self, registry: ConnectionRegistry) -> None:
        self._registry = registry
        self._sessions: dict[frozenset[str], CallSession] = {}

    def get_session(self, first_id: str, second_id: str) -> Optional[CallSession]:
        return self._sessions.get(pair_key(first_id, second_id))

    def sessions_for(self, user_id: str) -> list[CallSession]:
        return [session for session in self._sessions.values() if user_id in session.pair]

    def __len__(self) -> int:
        return len(self._sessions)

    async def request(self, caller: ConnectionContext, callee_id: str, call_type: str) -> Optional[CallSession]:
        """Open a ringing session and notify the callee, or tell the caller why not."""

        caller_id = caller.user_id
        if callee_id == caller_id:
            await caller.handle.emit(CALL_FAILED, failure_payload(FAIL_INVALID_TARGET))
            return None

        # Check-and-insert happens without awaiting so concurrent requests for
        # the same pair cannot both create a session.
        key = pair_key(caller_id, callee_id)
        if key in self._sessions:
            LOGGER.info("Call request %s -> %s rejected: pair already in a call", caller_id, callee_id)
            await caller.handle.emit(CALL_FAILED, failure_payload(FAIL_IN_PROGRESS))
            return None

        callee_handle = self._registry.resolve(callee_id)
        if callee_handle is None:
            await caller.handle.emit(CALL_FAILED, failure_payload(FAIL_OFFLINE))
            return None

        session = CallSession(caller_id=caller_id, callee_id=callee_id, call_type=call_type)
        self._sessions[key] = session
        LOGGER.info("Call %s -> %s ringing (%s)", caller_id, callee_id, call_type)

        await self._registry.deliver(
            callee_id,
            INCOMING_CALL,
            {
                "callerId": caller_id,
                "caller": profile_payload(caller.profile),
                "callType": call_type,
            },
        )
        return session

    async def answer(self, callee: ConnectionContext, caller_id: str, answer: str) -> Optional[CallSession]:
        """Accept or reject a ringing call; only the callee may answer."""

        session = self.get_session(callee.user_id, caller_id)
        if (
            session is None
            or session.status != CALL_RINGING
            or session.callee_id != callee.user_id
        ):
            LOGGER.info("Dropping stale call answer from %s for %s", callee.user_id, caller_id)
            return None

        if answer == "accepted":
            session.status = CALL_CONNECTED
            LOGGER.info("Call %s -> %s connected", caller_id, callee.user_id)
        else:
            self._destroy(session)
            LOGGER.info("Call %s -> %s rejected", caller_id, callee.user_id)

        await self._registry.deliver(
            caller_id,
            CALL_ANSWERED,
            {
                "answererId": callee.user_id,
                "answer": answer,
                "answerer": profile_payload(callee.profile),
            },
        )
        return session

    async def relay(self, sender_id: str, peer_id: str, event: str, field: str, blob: Any) -> bool:
        """Forward an opaque signaling blob to the peer of an active session."""

        if self.get_session(sender_id, peer_id) is None:
            LOGGER.info("Dropping stale %s from %s to %s (no session)", event, sender_id, peer_id)
            return False
        # The media layer owns its own retries, so an offline peer is a silent drop.
        return await self._registry.deliver(peer_id, event, {"senderId": sender_id, field: blob})

    async def end(self, user_id: str, peer_id: str) -> bool:
        """End the session between two users and tell the peer."""

        session = self.get_session(user_id, peer_id)
        if session is None:
            LOGGER.info("Dropping stale call end from %s to %s (no session)", user_id, peer_id)
            return False
        self._destroy(session)
        await self._registry.deliver(peer_id, CALL_ENDED, {"senderId": user_id})
        return True

    async def end_all_for(self, user_id: str) -> int:
        """End every session involving a user; used on disconnect."""

        sessions = self.sessions_for(user_id)
        for session in sessions:
            self._destroy(session)
        for session in sessions:
            await self._registry.deliver(session.peer_of(user_id), CALL_ENDED, {"senderId": user_id})
        return len(sessions)

    def _destroy(self, session: CallSession) -> None:
        session.status = STATUS_ENDED
        self._sessions.pop(session.pair, None)
