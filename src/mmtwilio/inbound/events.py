"""Typed Twilio Conversations webhook events.

The webhook body is parsed once into one of the event variants below; the
dispatcher only ever sees typed fields.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field

from mmtwilio.errors import ValidationError

CONVERSATION_ADDED = "onConversationAdded"
CONVERSATION_REMOVED = "onConversationRemoved"
MESSAGE_ADDED = "onMessageAdded"

KNOWN_EVENT_TYPES = frozenset(
    {
        CONVERSATION_ADDED,
        CONVERSATION_REMOVED,
        "onConversationUpdated",
        "onConversationStateUpdated",
        MESSAGE_ADDED,
        "onMessageUpdated",
        "onMessageRemoved",
        "onParticipantAdded",
        "onParticipantRemoved",
        "onParticipantUpdated",
        "onDeliveryUpdated",
        "onUserAdded",
        "onUserUpdated",
    }
)


@dataclass(frozen=True, slots=True)
class MediaItem:
    sid: str
    filename: str = ""
    content_type: str = "application/octet-stream"


@dataclass(frozen=True, slots=True)
class ConversationAdded:
    account_sid: str
    conversation_sid: str
    chat_service_sid: str | None = None
    event_type: str = CONVERSATION_ADDED


@dataclass(frozen=True, slots=True)
class ConversationRemoved:
    account_sid: str
    conversation_sid: str
    event_type: str = CONVERSATION_REMOVED


@dataclass(frozen=True, slots=True)
class MessageAdded:
    account_sid: str
    conversation_sid: str
    message_sid: str
    author: str
    body: str
    chat_service_sid: str | None = None
    media: tuple[MediaItem, ...] = field(default_factory=tuple)
    event_type: str = MESSAGE_ADDED


@dataclass(frozen=True, slots=True)
class IgnoredEvent:
    """A recognised event type the relay takes no action on."""

    account_sid: str
    event_type: str
    conversation_sid: str = ""


@dataclass(frozen=True, slots=True)
class UnrecognizedEvent:
    account_sid: str
    event_type: str


WebhookEvent = (
    ConversationAdded | ConversationRemoved | MessageAdded | IgnoredEvent | UnrecognizedEvent
)


def _required(form: Mapping[str, str], name: str) -> str:
    value = (form.get(name) or "").strip()
    if not value:
        raise ValidationError(f"missing {name}")
    return value


def parse_media(raw: str | None) -> tuple[MediaItem, ...]:
    if not raw:
        return ()
    try:
        decoded = json.loads(raw)
    except ValueError as exc:
        raise ValidationError(f"malformed Media field: {exc}") from exc
    if not isinstance(decoded, list):
        raise ValidationError("Media field is not a list")
    items: list[MediaItem] = []
    for entry in decoded:
        if not isinstance(entry, dict) or not entry.get("Sid"):
            raise ValidationError("Media entry has no Sid")
        items.append(
            MediaItem(
                sid=str(entry["Sid"]),
                filename=str(entry.get("Filename") or entry["Sid"]),
                content_type=str(entry.get("ContentType") or "application/octet-stream"),
            )
        )
    return tuple(items)


def parse_event(form: Mapping[str, str]) -> WebhookEvent:
    """Parse a webhook form body; raises ``ValidationError`` on a malformed payload."""
    account_sid = _required(form, "AccountSid")
    event_type = _required(form, "EventType")

    if event_type == MESSAGE_ADDED:
        return MessageAdded(
            account_sid=account_sid,
            conversation_sid=_required(form, "ConversationSid"),
            message_sid=(form.get("MessageSid") or "").strip(),
            author=(form.get("Author") or "").strip(),
            body=form.get("Body") or "",
            chat_service_sid=(form.get("ChatServiceSid") or "").strip() or None,
            media=parse_media(form.get("Media")),
        )
    if event_type == CONVERSATION_ADDED:
        return ConversationAdded(
            account_sid=account_sid,
            conversation_sid=_required(form, "ConversationSid"),
            chat_service_sid=(form.get("ChatServiceSid") or "").strip() or None,
        )
    if event_type == CONVERSATION_REMOVED:
        return ConversationRemoved(
            account_sid=account_sid,
            conversation_sid=_required(form, "ConversationSid"),
        )
    if event_type in KNOWN_EVENT_TYPES:
        return IgnoredEvent(
            account_sid=account_sid,
            event_type=event_type,
            conversation_sid=(form.get("ConversationSid") or "").strip(),
        )
    return UnrecognizedEvent(account_sid=account_sid, event_type=event_type)
