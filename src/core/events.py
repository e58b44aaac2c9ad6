"""Inbound event parsing and outbound payload builders (core domain).

Inbound payloads arrive as loose dicts keyed the way the web client sends
them (camelCase). They are parsed once into frozen dataclasses so the router
dispatches on a closed set of types instead of raw event names.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, Union

from core.errors import InvalidInputError
from core.models import (
    CALL_ANSWERS,
    CALL_TYPES,
    MESSAGE_TYPES,
    USER_STATUSES,
    StoredMessage,
    UserProfile,
)

# Outbound event names.
NEW_MESSAGE = "new_message"
MESSAGE_SENT = "message_sent"
USER_TYPING = "user_typing"
USER_STOPPED_TYPING = "user_stopped_typing"
MESSAGE_READ = "message_read"
FRIEND_STATUS_CHANGE = "friend_status_change"
NEW_FRIEND_REQUEST = "new_friend_request"
INCOMING_CALL = "incoming_call"
CALL_ANSWERED = "call_answered"
CALL_OFFER = "call_offer"
CALL_ANSWER_SDP = "call_answer_sdp"
ICE_CANDIDATE = "ice_candidate"
CALL_ENDED = "call_ended"
CALL_FAILED = "call_failed"
ERROR = "error"


@dataclass(frozen=True)
class SendMessage:
    receiver_id: str
    content: str
    message_type: str = "text"
    reply_to: Optional[str] = None


@dataclass(frozen=True)
class TypingStart:
    receiver_id: str


@dataclass(frozen=True)
class TypingStop:
    receiver_id: str


@dataclass(frozen=True)
class MarkRead:
    message_id: str


@dataclass(frozen=True)
class StatusChange:
    status: str


@dataclass(frozen=True)
class FriendRequestSent:
    receiver_id: str


@dataclass(frozen=True)
class CallRequest:
    receiver_id: str
    call_type: str = "video"


@dataclass(frozen=True)
class CallAnswer:
    caller_id: str
    answer: str


@dataclass(frozen=True)
class CallOffer:
    receiver_id: str
    offer: Any


@dataclass(frozen=True)
class CallAnswerSdp:
    receiver_id: str
    answer: Any


@dataclass(frozen=True)
class IceCandidate:
    receiver_id: str
    candidate: Any


@dataclass(frozen=True)
class CallEnd:
    receiver_id: str


InboundEvent = Union[
    SendMessage,
    TypingStart,
    TypingStop,
    MarkRead,
    StatusChange,
    FriendRequestSent,
    CallRequest,
    CallAnswer,
    CallOffer,
    CallAnswerSdp,
    IceCandidate,
    CallEnd,
]


def _require_mapping(payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise InvalidInputError("Event payload must be an object")
    return payload


def _require_id(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    # Numeric ids are tolerated and normalized; identifiers are opaque strings.
    if isinstance(value, int) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str) or not value.strip():
        raise InvalidInputError(f"{key} is required")
    return value.strip()


def _choice(payload: dict[str, Any], key: str, allowed: tuple[str, ...], default: Optional[str]) -> str:
    value = payload.get(key)
    if value is None and default is not None:
        return default
    if value not in allowed:
        raise InvalidInputError(f"{key} must be one of: {', '.join(allowed)}")
    return value


def _require_blob(payload: dict[str, Any], key: str) -> Any:
    value = payload.get(key)
    if value is None:
        raise InvalidInputError(f"{key} is required")
    return value


def _parse_send_message(payload: dict[str, Any], max_content_length: int) -> SendMessage:
    content = payload.get("content")
    if not isinstance(content, str) or not content.strip():
        raise InvalidInputError("content is required")
    if len(content) > max_content_length:
        raise InvalidInputError(f"content exceeds {max_content_length} characters")

    reply_to = payload.get("replyTo")
    if reply_to is not None and not isinstance(reply_to, str):
        reply_to = str(reply_to)

    return SendMessage(
        receiver_id=_require_id(payload, "receiverId"),
        content=content,
        message_type=_choice(payload, "messageType", MESSAGE_TYPES, "text"),
        reply_to=reply_to or None,
    )


_PARSERS: dict[str, Callable[[dict[str, Any]], InboundEvent]] = {
    "typing_start": lambda p: TypingStart(receiver_id=_require_id(p, "receiverId")),
    "typing_stop": lambda p: TypingStop(receiver_id=_require_id(p, "receiverId")),
    "mark_read": lambda p: MarkRead(message_id=_require_id(p, "messageId")),
    "status_change": lambda p: StatusChange(status=_choice(p, "status", USER_STATUSES, None)),
    "friend_request_sent": lambda p: FriendRequestSent(receiver_id=_require_id(p, "receiverId")),
    "video_call_request": lambda p: CallRequest(
        receiver_id=_require_id(p, "receiverId"),
        call_type=_choice(p, "callType", CALL_TYPES, "video"),
    ),
    "video_call_answer": lambda p: CallAnswer(
        caller_id=_require_id(p, "callerId"),
        answer=_choice(p, "answer", CALL_ANSWERS, None),
    ),
    "video_call_offer": lambda p: CallOffer(
        receiver_id=_require_id(p, "receiverId"),
        offer=_require_blob(p, "offer"),
    ),
    "video_call_answer_sdp": lambda p: CallAnswerSdp(
        receiver_id=_require_id(p, "receiverId"),
        answer=_require_blob(p, "answer"),
    ),
    "video_call_ice_candidate": lambda p: IceCandidate(
        receiver_id=_require_id(p, "receiverId"),
        candidate=_require_blob(p, "candidate"),
    ),
    "video_call_end": lambda p: CallEnd(receiver_id=_require_id(p, "receiverId")),
}

INBOUND_EVENT_NAMES = frozenset(_PARSERS) | {"send_message"}


def is_known_event(name: str) -> bool:
    return name in INBOUND_EVENT_NAMES


def parse_event(name: str, payload: Any, max_content_length: int = 5000) -> InboundEvent:
    """Parse a raw inbound event into its typed form.

    Raises InvalidInputError for unknown names or malformed payloads.
    """

    data = _require_mapping(payload)
    if name == "send_message":
        return _parse_send_message(data, max_content_length)
    parser = _PARSERS.get(name)
    if parser is None:
        raise InvalidInputError(f"Unknown event: {name}")
    return parser(data)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def profile_payload(profile: UserProfile) -> dict[str, Any]:
    """Public projection of a profile, safe to send to other users."""

    return {
        "_id": profile.user_id,
        "username": profile.username,
        "firstName": profile.first_name,
        "lastName": profile.last_name,
        "fullName": profile.full_name,
        "avatar": profile.avatar,
        "status": profile.status,
    }


def message_payload(message: StoredMessage) -> dict[str, Any]:
    return {
        "_id": message.id,
        "sender": message.sender_id,
        "receiver": message.receiver_id,
        "content": message.content,
        "messageType": message.message_type,
        "replyTo": message.reply_to_id,
        "isRead": message.is_read,
        "readAt": _iso(message.read_at),
        "createdAt": _iso(message.created_at),
    }


def error_payload(message: str) -> dict[str, Any]:
    return {"message": message}
