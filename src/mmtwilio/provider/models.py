"""Twilio Conversations resources, reduced to the fields the relay reads."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class Conversation:
    sid: str
    chat_service_sid: str | None = None
    friendly_name: str = ""
    state: str = ""
    date_created: str = ""

    @classmethod
    def from_api(cls, body: dict[str, Any]) -> Conversation:
        return cls(
            sid=str(body.get("sid", "")),
            chat_service_sid=body.get("chat_service_sid") or None,
            friendly_name=str(body.get("friendly_name") or ""),
            state=str(body.get("state") or ""),
            date_created=str(body.get("date_created") or ""),
        )


@dataclass(slots=True)
class Participant:
    sid: str
    identity: str = ""
    messaging_binding: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, body: dict[str, Any]) -> Participant:
        binding = body.get("messaging_binding")
        return cls(
            sid=str(body.get("sid", "")),
            identity=str(body.get("identity") or ""),
            messaging_binding=binding if isinstance(binding, dict) else {},
        )

    def labels(self) -> list[str]:
        """Display labels for this participant; proxy-side addresses carry a ``*`` prefix."""
        labels: list[str] = []
        for key, prefix in (
            ("address", ""),
            ("proxy_address", "*"),
            ("projected_address", "*"),
            ("author_address", ""),
        ):
            value = self.messaging_binding.get(key)
            if isinstance(value, str) and value:
                labels.append(prefix + value)
        return labels


def participant_labels(participants: list[Participant]) -> list[str]:
    labels: list[str] = []
    for participant in participants:
        labels.extend(participant.labels())
    return labels


@dataclass(slots=True)
class ConversationWebhook:
    sid: str
    target: str = ""
    url: str = ""
    method: str = ""
    filters: list[str] = field(default_factory=list)

    @classmethod
    def from_api(cls, body: dict[str, Any]) -> ConversationWebhook:
        configuration = body.get("configuration")
        config = configuration if isinstance(configuration, dict) else {}
        filters = config.get("filters")
        return cls(
            sid=str(body.get("sid", "")),
            target=str(body.get("target") or ""),
            url=str(config.get("url") or ""),
            method=str(config.get("method") or ""),
            filters=[str(item) for item in filters] if isinstance(filters, list) else [],
        )


@dataclass(slots=True)
class AddressConfiguration:
    sid: str
    address: str
    type: str = "sms"
    auto_creation: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, body: dict[str, Any]) -> AddressConfiguration:
        auto_creation = body.get("auto_creation")
        return cls(
            sid=str(body.get("sid", "")),
            address=str(body.get("address") or ""),
            type=str(body.get("type") or "sms"),
            auto_creation=auto_creation if isinstance(auto_creation, dict) else {},
        )
