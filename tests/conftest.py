import asyncio
import os
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from mmtwilio.config import get_settings
from mmtwilio.db.migrations.runner import run_migrations
from mmtwilio.errors import HostError, ProviderError
from mmtwilio.host.base import BotAccount, Channel, FileInfo, OutgoingHook, Post, Team
from mmtwilio.provider.models import (
    AddressConfiguration,
    Conversation,
    ConversationWebhook,
    Participant,
)
from mmtwilio.runtime import build_runtime
from mmtwilio.snapshot import ConfigSnapshot, SnapshotHolder

CONVERSATION_SID = "CH" + "a" * 32
OTHER_CONVERSATION_SID = "CH" + "b" * 32
WEBHOOK_URL = "https://relay.example.com/twilio/conversation"
POSTS_URL = "https://relay.example.com/mattermost/posts"


class MemoryKV:
    def __init__(self) -> None:
        self.data: dict[str, bytes] = {}

    def get(self, key: str) -> bytes | None:
        return self.data.get(key)

    def set(self, key: str, value: bytes) -> None:
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)

    def list_keys(self, page: int, per_page: int) -> list[str]:
        keys = sorted(self.data)
        return keys[page * per_page : (page + 1) * per_page]


class FakeHost:
    def __init__(self) -> None:
        self.teams: dict[str, Team] = {"team": Team(id="team-id", name="team")}
        self.channels: dict[str, Channel] = {}
        self.posts: list[Post] = []
        self.members: list[tuple[str, str]] = []
        self.team_members: list[tuple[str, str]] = []
        self.users: dict[str, str] = {"alice": "user-alice", "bob": "user-bob"}
        # bearer token -> user the server attributes requests to
        self.tokens: dict[str, str] = {"bot-token": "bot-user"}
        self.session_user = "admin-user"
        self.files: dict[str, tuple[FileInfo, bytes]] = {}
        self.uploads: list[tuple[str, str, bytes]] = []
        self.upload_users: list[str] = []
        self.bots: list[BotAccount] = []
        self.hooks: dict[str, OutgoingHook] = {}
        self.fail_member_adds: set[str] = set()
        self.fail_create_channel = False
        self.create_channel_failures = 0
        self.fail_hooks = False

    def _author(self, bot_token: str) -> str:
        return self.tokens.get(bot_token, self.session_user)

    async def get_team_by_name(self, name: str) -> Team | None:
        return self.teams.get(name)

    async def get_channel(self, channel_id: str) -> Channel | None:
        return self.channels.get(channel_id)

    async def get_channel_by_name(self, team_id: str, name: str) -> Channel | None:
        for channel in self.channels.values():
            if channel.team_id == team_id and channel.name == name:
                return channel
        return None

    async def create_channel(self, channel: Channel) -> Channel:
        await asyncio.sleep(0)
        if self.fail_create_channel:
            raise HostError("channel creation failed", status_code=500)
        if self.create_channel_failures:
            self.create_channel_failures -= 1
            raise HostError("channel creation failed", status_code=500)
        if await self.get_channel_by_name(channel.team_id, channel.name) is not None:
            raise HostError("A channel with that name already exists", status_code=400)
        created = Channel(
            id=f"channel-{len(self.channels) + 1}",
            team_id=channel.team_id,
            name=channel.name,
            display_name=channel.display_name,
            type=channel.type,
            creator_id=channel.creator_id,
            props=dict(channel.props),
        )
        self.channels[created.id] = created
        return created

    async def add_channel_member(self, channel_id: str, user_id: str) -> None:
        if user_id in self.fail_member_adds:
            raise HostError(f"cannot add {user_id}", status_code=403)
        self.members.append((channel_id, user_id))

    async def add_team_member(self, team_id: str, user_id: str) -> None:
        self.team_members.append((team_id, user_id))

    async def get_user_ids_by_usernames(self, usernames: list[str]) -> dict[str, str]:
        return {name: self.users[name] for name in usernames if name in self.users}

    async def get_post(self, post_id: str) -> Post | None:
        for post in self.posts:
            if post.id == post_id:
                return post
        return None

    async def create_post(self, post: Post, *, bot_token: str = "") -> Post:
        created = Post(
            id=post.id or f"post-{len(self.posts) + 1}",
            channel_id=post.channel_id,
            user_id=self._author(bot_token),
            message=post.message,
            type=post.type,
            props=dict(post.props),
            file_ids=list(post.file_ids),
        )
        self.posts.append(created)
        return created

    async def get_file_info(self, file_id: str) -> FileInfo:
        if file_id not in self.files:
            raise HostError(f"file {file_id} not found", status_code=404)
        return self.files[file_id][0]

    async def get_file(self, file_id: str) -> bytes:
        if file_id not in self.files:
            raise HostError(f"file {file_id} not found", status_code=404)
        return self.files[file_id][1]

    async def upload_file(
        self, channel_id: str, filename: str, data: bytes, *, bot_token: str = ""
    ) -> FileInfo:
        self.uploads.append((channel_id, filename, data))
        self.upload_users.append(self._author(bot_token))
        return FileInfo(id=f"file-{len(self.uploads)}", name=filename, size=len(data))

    async def list_bots(self, page: int, per_page: int) -> list[BotAccount]:
        return self.bots[page * per_page : (page + 1) * per_page]

    async def create_bot(
        self, username: str, display_name: str, description: str, owner_id: str
    ) -> BotAccount:
        bot = BotAccount(
            user_id=f"bot-{len(self.bots) + 1}",
            username=username,
            display_name=display_name,
            owner_id=owner_id,
        )
        self.bots.append(bot)
        return bot

    async def create_user_access_token(self, user_id: str, description: str) -> str:
        token = f"token-{len(self.tokens) + 1}"
        self.tokens[token] = user_id
        return token

    async def list_outgoing_hooks(self, channel_id: str) -> list[OutgoingHook]:
        if self.fail_hooks:
            raise HostError("hooks unavailable", status_code=500)
        return [hook for hook in self.hooks.values() if hook.channel_id == channel_id]

    async def create_outgoing_hook(self, hook: OutgoingHook) -> OutgoingHook:
        if self.fail_hooks:
            raise HostError("hooks unavailable", status_code=500)
        number = len(self.hooks) + 1
        while f"hook-{number}" in self.hooks:
            number += 1
        created = OutgoingHook(
            id=f"hook-{number}",
            team_id=hook.team_id,
            channel_id=hook.channel_id,
            callback_urls=list(hook.callback_urls),
            token=f"hooktok-{number}",
            display_name=hook.display_name,
        )
        self.hooks[created.id] = created
        return created

    async def delete_outgoing_hook(self, hook_id: str) -> None:
        self.hooks.pop(hook_id, None)


class FakeTwilio:
    def __init__(self) -> None:
        self.conversations: dict[str, Conversation] = {}
        self.participants: dict[str, list[Participant]] = {}
        self.webhooks: dict[str, list[ConversationWebhook]] = {}
        self.addresses: dict[str, AddressConfiguration] = {}
        self.phone_numbers: list[str] = []
        self.media: dict[str, bytes] = {}
        self.sent: list[tuple[str, str]] = []
        self.sent_media: list[tuple[str, str]] = []
        self.uploaded: list[tuple[str, str, str, bytes]] = []
        self.fail_participants = False
        self.fail_participants_for: set[str] = set()
        self.fail_upload = False
        self.fetch_calls = 0

    def add_conversation(
        self,
        sid: str,
        chat_service_sid: str | None = "IS123",
        addresses: list[dict[str, str]] | None = None,
    ) -> Conversation:
        conversation = Conversation(sid=sid, chat_service_sid=chat_service_sid)
        self.conversations[sid] = conversation
        self.participants[sid] = [
            Participant(sid=f"MB{index}", messaging_binding=binding)
            for index, binding in enumerate(addresses or [])
        ]
        return conversation

    async def fetch_conversation(self, conversation_sid: str) -> Conversation:
        self.fetch_calls += 1
        if conversation_sid not in self.conversations:
            raise ProviderError(f"conversation {conversation_sid} not found", status_code=404)
        return self.conversations[conversation_sid]

    async def list_conversations(self) -> list[Conversation]:
        return list(self.conversations.values())

    async def list_participants(self, conversation_sid: str) -> list[Participant]:
        if self.fail_participants or conversation_sid in self.fail_participants_for:
            raise ProviderError("participants unavailable", status_code=500)
        return list(self.participants.get(conversation_sid, []))

    async def send_message(self, conversation_sid: str, body: str) -> str:
        self.sent.append((conversation_sid, body))
        return f"IM{len(self.sent)}"

    async def send_media_message(self, conversation_sid: str, media_sid: str) -> str:
        self.sent_media.append((conversation_sid, media_sid))
        return f"IM-media-{len(self.sent_media)}"

    async def upload_media(
        self, chat_service_sid: str, filename: str, content_type: str, data: bytes
    ) -> str:
        if self.fail_upload:
            raise ProviderError("upload failed", status_code=500)
        self.uploaded.append((chat_service_sid, filename, content_type, data))
        return f"ME{len(self.uploaded)}"

    async def download_media(self, chat_service_sid: str, media_sid: str) -> bytes:
        if media_sid not in self.media:
            raise ProviderError(f"media {media_sid} not found", status_code=404)
        return self.media[media_sid]

    async def list_conversation_webhooks(self, conversation_sid: str) -> list[ConversationWebhook]:
        return list(self.webhooks.get(conversation_sid, []))

    async def create_conversation_webhook(
        self, conversation_sid: str, url: str, filters: list[str]
    ) -> ConversationWebhook:
        hooks = self.webhooks.setdefault(conversation_sid, [])
        webhook = ConversationWebhook(
            sid=f"WH{len(hooks) + 1}", target="webhook", url=url, method="POST", filters=filters
        )
        hooks.append(webhook)
        return webhook

    async def delete_conversation_webhook(self, conversation_sid: str, webhook_sid: str) -> None:
        self.webhooks[conversation_sid] = [
            hook for hook in self.webhooks.get(conversation_sid, []) if hook.sid != webhook_sid
        ]

    async def fetch_address_configuration(self, address: str) -> AddressConfiguration | None:
        return self.addresses.get(address)

    async def create_address_configuration(
        self, address: str, webhook_url: str, filters: list[str]
    ) -> AddressConfiguration:
        config = AddressConfiguration(
            sid=f"IG{len(self.addresses) + 1}",
            address=address,
            auto_creation={"enabled": True, "webhook_url": webhook_url, "webhook_filters": filters},
        )
        self.addresses[address] = config
        return config

    async def update_address_configuration(
        self, address_sid: str, webhook_url: str, filters: list[str]
    ) -> AddressConfiguration:
        for config in self.addresses.values():
            if config.sid == address_sid:
                config.auto_creation = {
                    "enabled": True,
                    "webhook_url": webhook_url,
                    "webhook_filters": filters,
                }
                return config
        raise ProviderError(f"address {address_sid} not found", status_code=404)

    async def delete_address_configuration(self, address_sid: str) -> None:
        self.addresses = {
            address: config
            for address, config in self.addresses.items()
            if config.sid != address_sid
        }

    async def list_phone_numbers(self) -> list[str]:
        return list(self.phone_numbers)


@pytest.fixture(autouse=True)
def test_env(tmp_path: Path):
    db = tmp_path / "test.db"
    os.environ["APP_DB"] = str(db)
    os.environ["APP_ENV"] = "dev"
    os.environ["TWILIO_ACCOUNT_SID"] = "AC1"
    os.environ["TWILIO_AUTH_TOKEN"] = "secret"
    os.environ["TWILIO_VALIDATE_SIGNATURE"] = "0"
    os.environ["MATTERMOST_TEAM_NAME"] = "team"
    os.environ["MATTERMOST_BOT_OWNER_ID"] = "owner-1"
    os.environ["MATTERMOST_AUTO_ADD_USERNAMES"] = "alice,bob"
    os.environ["MATTERMOST_COMMAND_TOKEN"] = ""
    os.environ["MATTERMOST_OUTGOING_TOKEN"] = ""
    os.environ["MATTERMOST_BOT_TOKEN"] = ""
    os.environ["PUBLIC_BASE_URL"] = "https://relay.example.com"
    os.environ["ADMIN_TOKEN"] = "admin-token"
    os.environ["LEGACY_MIGRATION_ON_STARTUP"] = "0"
    get_settings.cache_clear()
    run_migrations()
    yield
    get_settings.cache_clear()


@pytest.fixture
def memory_kv() -> MemoryKV:
    return MemoryKV()


@pytest.fixture
def fake_host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def fake_twilio() -> FakeTwilio:
    twilio = FakeTwilio()
    twilio.add_conversation(
        CONVERSATION_SID,
        addresses=[{"address": "+15551234567", "proxy_address": "+15557654321"}],
    )
    return twilio


@pytest.fixture
def snapshot() -> ConfigSnapshot:
    return ConfigSnapshot(
        account_sid="AC1",
        auth_token="secret",
        team_id="team-id",
        team_name="team",
        bot_user_id="bot-user",
        webhook_url=WEBHOOK_URL,
        auto_add_user_ids=("user-alice", "user-bob"),
        posts_webhook_url=POSTS_URL,
        bot_token="bot-token",
    )


@pytest.fixture
def runtime(fake_host, fake_twilio, memory_kv, snapshot):
    return build_runtime(
        get_settings(),
        host=fake_host,
        twilio=fake_twilio,
        kv=memory_kv,
        snapshots=SnapshotHolder(snapshot),
    )


@pytest.fixture
def client(runtime):
    from mmtwilio.main import app

    app.state.runtime = runtime
    yield TestClient(app)
    del app.state.runtime
