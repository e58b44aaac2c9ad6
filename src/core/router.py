"""Inbound event routing (core domain).

The router is stateless: it receives one typed event from a connection,
authorizes it, performs any persistence side-effect through the port and
pushes outbound events to connections resolved via the registry. Call
events are delegated to the signaling broker, which owns the call state.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable, Optional

from core.authorization import KIND_CALL, KIND_MESSAGE, AuthorizationGate
from core.calls import CallSignalingBroker, failure_payload
from core.config import RoutingConfig
from core.errors import PersistenceError
from core.events import (
    CALL_ANSWER_SDP,
    CALL_FAILED,
    CALL_OFFER,
    ERROR,
    ICE_CANDIDATE,
    MESSAGE_READ,
    MESSAGE_SENT,
    NEW_FRIEND_REQUEST,
    NEW_MESSAGE,
    USER_STOPPED_TYPING,
    USER_TYPING,
    CallAnswer,
    CallAnswerSdp,
    CallEnd,
    CallOffer,
    CallRequest,
    FriendRequestSent,
    IceCandidate,
    InboundEvent,
    MarkRead,
    SendMessage,
    StatusChange,
    TypingStart,
    TypingStop,
    error_payload,
    message_payload,
    profile_payload,
)
from core.models import ConnectionContext, MessageDraft, RelationshipSnapshot, utcnow
from core.ports import PersistencePort
from core.presence import PresenceNotifier
from core.registry import ConnectionRegistry

LOGGER = logging.getLogger(__name__)

Handler = Callable[[ConnectionContext, Any], Awaitable[None]]


async def load_relationships(persistence: PersistencePort, user_id: str) -> RelationshipSnapshot:
    friend_ids = await persistence.get_friend_ids(user_id)
    blocked_ids = await persistence.get_blocked_ids(user_id)
    return RelationshipSnapshot(
        user_id=user_id,
        friend_ids=frozenset(friend_ids),
        blocked_ids=frozenset(blocked_ids),
    )


class EventRouter:
    """Dispatch table keyed by inbound event type."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        persistence: PersistencePort,
        gate: AuthorizationGate,
        broker: CallSignalingBroker,
        presence: PresenceNotifier,
        config: RoutingConfig,
    ) -> None:
        self._registry = registry
        self._persistence = persistence
        self._gate = gate
        self._broker = broker
        self._presence = presence
        self._config = config
        self._handlers: dict[type, Handler] = {
            SendMessage: self._send_message,
            TypingStart: self._typing_start,
            TypingStop: self._typing_stop,
            MarkRead: self._mark_read,
            StatusChange: self._status_change,
            FriendRequestSent: self._friend_request_sent,
            CallRequest: self._call_request,
            CallAnswer: self._call_answer,
            CallOffer: self._call_offer,
            CallAnswerSdp: self._call_answer_sdp,
            IceCandidate: self._ice_candidate,
            CallEnd: self._call_end,
        }

    async def route(self, context: ConnectionContext, event: InboundEvent) -> None:
        handler = self._handlers.get(type(event))
        if handler is None:
            raise TypeError(f"No handler for {type(event).__name__}")
        await handler(context, event)

    async def relationships(self, context: ConnectionContext) -> RelationshipSnapshot:
        """Return the snapshot to authorize against, refreshing it if configured."""

        if self._config.refresh_relationships:
            context.relationships = await load_relationships(self._persistence, context.user_id)
        return context.relationships

    # -- messaging -----------------------------------------------------

    async def _send_message(self, context: ConnectionContext, event: SendMessage) -> None:
        # The acknowledgment is the delivery contract: exactly one of
        # message_sent or error goes back to the sender.
        try:
            snapshot = await self.relationships(context)
            decision = await self._gate.can_interact(snapshot, event.receiver_id, KIND_MESSAGE)
            if not decision.allowed:
                LOGGER.info(
                    "Message %s -> %s denied (%s)", context.user_id, event.receiver_id, decision.reason
                )
                await context.handle.emit(ERROR, error_payload(decision.message))
                return

            draft = MessageDraft(
                sender_id=context.user_id,
                receiver_id=event.receiver_id,
                content=event.content,
                message_type=event.message_type,
                reply_to_id=await self._valid_reply_to(context.user_id, event),
            )
            message = await self._persistence.save_message(draft)
        except PersistenceError:
            LOGGER.exception("Failed to persist message from %s", context.user_id)
            await context.handle.emit(ERROR, error_payload("Failed to send message"))
            return
        except Exception:
            LOGGER.exception("Unexpected error sending message from %s", context.user_id)
            await context.handle.emit(ERROR, error_payload("Failed to send message"))
            return

        body = message_payload(message)
        await self._registry.deliver(
            event.receiver_id,
            NEW_MESSAGE,
            {"message": body, "sender": profile_payload(context.profile)},
        )
        await context.handle.emit(MESSAGE_SENT, {"message": body})

    async def _valid_reply_to(self, sender_id: str, event: SendMessage) -> Optional[str]:
        if not event.reply_to:
            return None
        replied = await self._persistence.find_message(event.reply_to)
        if replied is None or not replied.involves(sender_id, event.receiver_id):
            LOGGER.debug("Ignoring replyTo %s from %s", event.reply_to, sender_id)
            return None
        return replied.id

    async def _typing_start(self, context: ConnectionContext, event: TypingStart) -> None:
        await self._registry.deliver(
            event.receiver_id,
            USER_TYPING,
            {"userId": context.user_id, "username": context.profile.username},
        )

    async def _typing_stop(self, context: ConnectionContext, event: TypingStop) -> None:
        await self._registry.deliver(event.receiver_id, USER_STOPPED_TYPING, {"userId": context.user_id})

    async def _mark_read(self, context: ConnectionContext, event: MarkRead) -> None:
        try:
            message = await self._persistence.find_message(event.message_id)
            if message is None:
                await context.handle.emit(ERROR, error_payload("Message not found"))
                return
            # Ownership, not friendship: only the receiver can mark a message read.
            if message.receiver_id != context.user_id:
                LOGGER.info("User %s may not mark message %s read", context.user_id, message.id)
                await context.handle.emit(ERROR, error_payload("Not allowed to mark this message read"))
                return
            if message.is_read:
                return
            read_at = utcnow()
            await self._persistence.mark_message_read(message.id, read_at)
        except PersistenceError:
            LOGGER.exception("Mark read failed for %s", event.message_id)
            return

        await self._registry.deliver(
            message.sender_id,
            MESSAGE_READ,
            {"messageId": message.id, "readBy": context.user_id, "readAt": read_at.isoformat()},
        )

    # -- presence ------------------------------------------------------

    async def _status_change(self, context: ConnectionContext, event: StatusChange) -> None:
        self._registry.set_status(context.user_id, event.status)
        context.profile = replace(context.profile, status=event.status)
        last_seen = utcnow() if event.status == "offline" else None
        try:
            await self._persistence.update_user_status(context.user_id, event.status, last_seen)
        except PersistenceError:
            LOGGER.warning("Could not persist status %s for %s", event.status, context.user_id)
        snapshot = await self.relationships(context)
        await self._presence.broadcast_status(context.user_id, snapshot.friend_ids, event.status)

    async def _friend_request_sent(self, context: ConnectionContext, event: FriendRequestSent) -> None:
        snapshot = await self.relationships(context)
        if snapshot.has_blocked(event.receiver_id):
            return
        if not self._registry.is_online(event.receiver_id):
            return
        try:
            receiver_blocked = await self._persistence.get_blocked_ids(event.receiver_id)
        except PersistenceError:
            LOGGER.warning("Skipping friend request notice to %s", event.receiver_id)
            return
        if context.user_id in receiver_blocked:
            return
        await self._registry.deliver(
            event.receiver_id,
            NEW_FRIEND_REQUEST,
            {
                "from": profile_payload(context.profile),
                "message": f"{context.profile.full_name} sent you a friend request",
            },
        )

    # -- calls ---------------------------------------------------------

    async def _call_request(self, context: ConnectionContext, event: CallRequest) -> None:
        if event.receiver_id != context.user_id:
            try:
                snapshot = await self.relationships(context)
                decision = await self._gate.can_interact(snapshot, event.receiver_id, KIND_CALL)
            except PersistenceError:
                LOGGER.exception("Call authorization failed for %s", context.user_id)
                await context.handle.emit(CALL_FAILED, failure_payload("error", "Failed to start call"))
                return
            if not decision.allowed:
                LOGGER.info("Call %s -> %s denied (%s)", context.user_id, event.receiver_id, decision.reason)
                await context.handle.emit(CALL_FAILED, failure_payload(decision.reason, decision.message))
                return
        await self._broker.request(context, event.receiver_id, event.call_type)

    async def _call_answer(self, context: ConnectionContext, event: CallAnswer) -> None:
        await self._broker.answer(context, event.caller_id, event.answer)

    async def _call_offer(self, context: ConnectionContext, event: CallOffer) -> None:
        await self._broker.relay(context.user_id, event.receiver_id, CALL_OFFER, "offer", event.offer)

    async def _call_answer_sdp(self, context: ConnectionContext, event: CallAnswerSdp) -> None:
        await self._broker.relay(context.user_id, event.receiver_id, CALL_ANSWER_SDP, "answer", event.answer)

    async def _ice_candidate(self, context: ConnectionContext, event: IceCandidate) -> None:
        await self._broker.relay(
            context.user_id, event.receiver_id, ICE_CANDIDATE, "candidate", event.candidate
        )

    async def _call_end(self, context: ConnectionContext, event: CallEnd) -> None:
        await self._broker.end(context.user_id, event.receiver_id)
