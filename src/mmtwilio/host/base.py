"""Chat host protocol and the host objects the relay works with."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

CHANNEL_TYPE_OPEN = "O"


@dataclass(slots=True)
class Team:
    id: str
    name: str
    display_name: str = ""


@dataclass(slots=True)
class Channel:
    id: str
    team_id: str
    name: str
    display_name: str = ""
    type: str = CHANNEL_TYPE_OPEN
    creator_id: str = ""
    props: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class Post:
    id: str
    channel_id: str
    user_id: str
    message: str
    type: str = ""
    props: dict[str, Any] = field(default_factory=dict)
    file_ids: list[str] = field(default_factory=list)

    @property
    def is_system(self) -> bool:
        return self.type.startswith("system_")


@dataclass(slots=True)
class FileInfo:
    id: str
    name: str
    mime_type: str = "application/octet-stream"
    size: int = 0


@dataclass(slots=True)
class OutgoingHook:
    id: str
    team_id: str
    channel_id: str
    callback_urls: list[str] = field(default_factory=list)
    token: str = ""
    display_name: str = ""


@dataclass(slots=True)
class BotAccount:
    user_id: str
    username: str
    display_name: str = ""
    owner_id: str = ""
    delete_at: int = 0

    @property
    def active(self) -> bool:
        return self.delete_at == 0


@runtime_checkable
class ChatHost(Protocol):
    """The subset of the chat host API the relay depends on.

    Lookups return ``None`` for missing objects; every other failure raises
    ``HostError``. A non-empty ``bot_token`` makes the call as the bot account
    instead of the session user, which is how posts get the bot as author.
    """

    async def get_team_by_name(self, name: str) -> Team | None: ...

    async def get_channel(self, channel_id: str) -> Channel | None: ...

    async def get_channel_by_name(self, team_id: str, name: str) -> Channel | None: ...

    async def create_channel(self, channel: Channel) -> Channel: ...

    async def add_channel_member(self, channel_id: str, user_id: str) -> None: ...

    async def get_user_ids_by_usernames(self, usernames: list[str]) -> dict[str, str]: ...

    async def get_post(self, post_id: str) -> Post | None: ...

    async def create_post(self, post: Post, *, bot_token: str = "") -> Post: ...

    async def get_file_info(self, file_id: str) -> FileInfo: ...

    async def get_file(self, file_id: str) -> bytes: ...

    async def upload_file(
        self, channel_id: str, filename: str, data: bytes, *, bot_token: str = ""
    ) -> FileInfo: ...

    async def list_bots(self, page: int, per_page: int) -> list[BotAccount]: ...

    async def create_bot(
        self, username: str, display_name: str, description: str, owner_id: str
    ) -> BotAccount: ...

    async def add_team_member(self, team_id: str, user_id: str) -> None: ...

    async def create_user_access_token(self, user_id: str, description: str) -> str: ...

    async def list_outgoing_hooks(self, channel_id: str) -> list[OutgoingHook]: ...

    async def create_outgoing_hook(self, hook: OutgoingHook) -> OutgoingHook: ...

    async def delete_outgoing_hook(self, hook_id: str) -> None: ...
