"""Find-or-create of conversation bindings."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from mmtwilio.bindings.models import Binding
from mmtwilio.bindings.store import BindingStore
from mmtwilio.errors import HostError, UpstreamError
from mmtwilio.host.base import CHANNEL_TYPE_OPEN, Channel, ChatHost
from mmtwilio.outbound.hooks import PostHookRegistry
from mmtwilio.provider.models import Conversation, Participant, participant_labels
from mmtwilio.snapshot import ConfigSnapshot

logger = logging.getLogger(__name__)

CHANNEL_NAME_PREFIX = "twilio"
CHANNEL_PROP_CONVERSATION = "twilio_conversation_sid"
DISPLAY_NAME_MAX = 64


class ConversationSource(Protocol):
    async def fetch_conversation(self, conversation_sid: str) -> Conversation: ...

    async def list_participants(self, conversation_sid: str) -> list[Participant]: ...


def channel_name(conversation_id: str) -> str:
    return f"{CHANNEL_NAME_PREFIX}{conversation_id.lower()}"


def channel_display_name(conversation_id: str, labels: list[str] | None) -> str:
    if labels:
        name = "Text " + ", ".join(labels)
    else:
        name = f"Twilio Conversation {conversation_id}"
    return name[:DISPLAY_NAME_MAX]


class BindingResolver:
    """Returns the binding for a conversation, provisioning a channel on first contact.

    Creation for a given conversation id is serialized within this process so
    concurrent first messages produce one channel. A lock stays registered
    while any caller still holds or waits on it.
    """

    def __init__(
        self,
        store: BindingStore,
        host: ChatHost,
        twilio: ConversationSource,
        hooks: PostHookRegistry | None = None,
    ) -> None:
        self._store = store
        self._host = host
        self._twilio = twilio
        self._hooks = hooks
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    async def resolve(self, snapshot: ConfigSnapshot, conversation_id: str) -> Binding:
        existing = self._store.find_by_conversation(conversation_id)
        if existing is not None:
            return await self.backfill_chat_service(existing)

        lock = self._locks.setdefault(conversation_id, asyncio.Lock())
        self._lock_users[conversation_id] = self._lock_users.get(conversation_id, 0) + 1
        try:
            async with lock:
                existing = self._store.find_by_conversation(conversation_id)
                if existing is not None:
                    return await self.backfill_chat_service(existing)
                return await self._create(snapshot, conversation_id)
        finally:
            self._lock_users[conversation_id] -= 1
            if self._lock_users[conversation_id] == 0:
                del self._lock_users[conversation_id]
                del self._locks[conversation_id]

    async def attach_channel(self, snapshot: ConfigSnapshot, channel_id: str) -> None:
        """Make the bot a member of a bound channel and hook its posts; both best effort."""
        try:
            await self._host.add_channel_member(channel_id, snapshot.bot_user_id)
        except UpstreamError as exc:
            logger.error("Could not add the bot to channel %s: %s", channel_id, exc)
        if self._hooks is None:
            return
        try:
            await self._hooks.ensure(snapshot, channel_id)
        except UpstreamError as exc:
            logger.error("Could not register outgoing hook for channel %s: %s", channel_id, exc)

    async def backfill_chat_service(self, binding: Binding) -> Binding:
        """Fill in a missing chat service SID; failures leave the binding unchanged."""
        if binding.chat_service_sid:
            return binding
        try:
            conversation = await self._twilio.fetch_conversation(binding.conversation_id)
        except UpstreamError as exc:
            logger.warning(
                "Could not fetch conversation %s for chat service back-fill: %s",
                binding.conversation_id,
                exc,
            )
            return binding
        if not conversation.chat_service_sid:
            return binding
        updated = binding.with_chat_service(conversation.chat_service_sid)
        self._store.save(updated)
        logger.info(
            "Back-filled chat service %s for conversation %s",
            updated.chat_service_sid,
            updated.conversation_id,
        )
        return updated

    async def _create(self, snapshot: ConfigSnapshot, conversation_id: str) -> Binding:
        labels: list[str] | None
        try:
            labels = participant_labels(await self._twilio.list_participants(conversation_id))
        except UpstreamError as exc:
            logger.warning("Could not list participants of %s: %s", conversation_id, exc)
            labels = None

        name = channel_name(conversation_id)
        try:
            channel = await self._host.create_channel(
                Channel(
                    id="",
                    team_id=snapshot.team_id,
                    name=name,
                    display_name=channel_display_name(conversation_id, labels),
                    type=CHANNEL_TYPE_OPEN,
                    creator_id=snapshot.bot_user_id,
                    props={CHANNEL_PROP_CONVERSATION: conversation_id},
                )
            )
        except HostError:
            # a channel left behind by "channel disconnect" keeps its name
            existing = await self._host.get_channel_by_name(snapshot.team_id, name)
            if existing is None:
                raise
            channel = existing
            logger.info("Reusing channel %s for conversation %s", channel.id, conversation_id)
        else:
            logger.info("Created channel %s for conversation %s", channel.id, conversation_id)

        await self.attach_channel(snapshot, channel.id)

        for user_id in snapshot.auto_add_user_ids:
            try:
                await self._host.add_channel_member(channel.id, user_id)
            except UpstreamError as exc:
                logger.error(
                    "Could not add user %s to channel %s: %s", user_id, channel.id, exc
                )

        conversation = await self._twilio.fetch_conversation(conversation_id)
        binding = Binding(
            conversation_id=conversation_id,
            channel_id=channel.id,
            team_id=snapshot.team_id,
            chat_service_sid=conversation.chat_service_sid,
        )
        self._store.save(binding)
        return binding
