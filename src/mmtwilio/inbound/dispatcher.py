"""Routes parsed webhook events to their handlers."""

from __future__ import annotations

import logging

from mmtwilio.bindings.models import Binding
from mmtwilio.bindings.resolver import BindingResolver
from mmtwilio.errors import UpstreamError
from mmtwilio.host.base import ChatHost, Post
from mmtwilio.inbound.events import (
    ConversationAdded,
    ConversationRemoved,
    IgnoredEvent,
    MediaItem,
    MessageAdded,
    UnrecognizedEvent,
    WebhookEvent,
)
from mmtwilio.provider.client import TwilioClient
from mmtwilio.snapshot import ConfigSnapshot
from mmtwilio.webhooks.reconciler import WebhookReconciler

logger = logging.getLogger(__name__)

PROP_SENT_BY_TWILIO = "sent_by_twilio"
PROP_CONVERSATION_SID = "twilio_conversation_sid"
PROP_MESSAGE_SID = "twilio_message_sid"


def format_message(author: str, body: str) -> str:
    if not author:
        return body
    return f"<{author}>: {body}"


class EventDispatcher:
    def __init__(
        self,
        resolver: BindingResolver,
        reconciler: WebhookReconciler,
        host: ChatHost,
        twilio: TwilioClient,
    ) -> None:
        self._resolver = resolver
        self._reconciler = reconciler
        self._host = host
        self._twilio = twilio

    async def dispatch(self, snapshot: ConfigSnapshot, event: WebhookEvent) -> Post | None:
        """Apply one event. Returns the created post for ``onMessageAdded``."""
        if isinstance(event, MessageAdded):
            return await self._on_message_added(snapshot, event)
        if isinstance(event, ConversationAdded):
            await self._on_conversation_added(snapshot, event)
        elif isinstance(event, (ConversationRemoved, IgnoredEvent)):
            logger.debug("No action for %s", event.event_type)
        elif isinstance(event, UnrecognizedEvent):
            logger.info("Ignoring unrecognized event type %s", event.event_type)
        return None

    async def _on_conversation_added(
        self, snapshot: ConfigSnapshot, event: ConversationAdded
    ) -> None:
        await self._reconciler.ensure_webhook(event.conversation_sid, snapshot.webhook_url)
        binding = await self._resolver.resolve(snapshot, event.conversation_sid)
        logger.info(
            "Conversation %s bound to channel %s", binding.conversation_id, binding.channel_id
        )

    async def _on_message_added(self, snapshot: ConfigSnapshot, event: MessageAdded) -> Post:
        binding = await self._resolver.resolve(snapshot, event.conversation_sid)
        file_ids: list[str] = []
        chat_service_sid = event.chat_service_sid or binding.chat_service_sid
        for item in event.media:
            file_id = await self._transfer_media(snapshot, binding, chat_service_sid, item)
            if file_id:
                file_ids.append(file_id)

        post = await self._host.create_post(
            Post(
                id="",
                channel_id=binding.channel_id,
                user_id=snapshot.bot_user_id,
                message=format_message(event.author, event.body),
                props={
                    PROP_SENT_BY_TWILIO: True,
                    PROP_CONVERSATION_SID: event.conversation_sid,
                    PROP_MESSAGE_SID: event.message_sid,
                },
                file_ids=file_ids,
            ),
            bot_token=snapshot.bot_token,
        )
        logger.info(
            "Relayed message %s to channel %s (files=%d)",
            event.message_sid,
            binding.channel_id,
            len(file_ids),
        )
        return post

    async def _transfer_media(
        self,
        snapshot: ConfigSnapshot,
        binding: Binding,
        chat_service_sid: str | None,
        item: MediaItem,
    ) -> str | None:
        if not chat_service_sid:
            logger.error(
                "Cannot download media %s: conversation %s has no chat service",
                item.sid,
                binding.conversation_id,
            )
            return None
        try:
            data = await self._twilio.download_media(chat_service_sid, item.sid)
            info = await self._host.upload_file(
                binding.channel_id, item.filename, data, bot_token=snapshot.bot_token
            )
        except UpstreamError as exc:
            logger.error("Could not transfer media %s: %s", item.sid, exc)
            return None
        return info.id
