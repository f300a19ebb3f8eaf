"""Conversation-to-channel binding record."""

from __future__ import annotations

import json
from dataclasses import dataclass, replace


@dataclass(frozen=True, slots=True)
class Binding:
    conversation_id: str
    channel_id: str
    team_id: str
    chat_service_sid: str | None = None

    def with_chat_service(self, chat_service_sid: str) -> Binding:
        return replace(self, chat_service_sid=chat_service_sid)

    def to_json(self) -> bytes:
        payload: dict[str, str] = {
            "conversation_sid": self.conversation_id,
            "team_id": self.team_id,
            "channel_id": self.channel_id,
        }
        if self.chat_service_sid:
            payload["chat_service_sid"] = self.chat_service_sid
        return json.dumps(payload).encode()

    @classmethod
    def from_json(cls, raw: bytes | str) -> Binding:
        """Decode a stored record; raises ``ValueError`` on any malformed shape."""
        decoded = json.loads(raw)
        if not isinstance(decoded, dict):
            raise ValueError("binding record is not an object")
        conversation_id = decoded.get("conversation_sid")
        channel_id = decoded.get("channel_id")
        if not isinstance(conversation_id, str) or not conversation_id:
            raise ValueError("binding record has no conversation_sid")
        if not isinstance(channel_id, str) or not channel_id:
            raise ValueError("binding record has no channel_id")
        chat_service_sid = decoded.get("chat_service_sid")
        return cls(
            conversation_id=conversation_id,
            channel_id=channel_id,
            team_id=str(decoded.get("team_id") or ""),
            chat_service_sid=chat_service_sid if isinstance(chat_service_sid, str) else None,
        )
