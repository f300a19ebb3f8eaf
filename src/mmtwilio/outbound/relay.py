"""Forwards chat posts in bound channels to their Twilio conversation."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from mmtwilio.bindings.resolver import BindingResolver
from mmtwilio.bindings.store import BindingStore
from mmtwilio.errors import UpstreamError
from mmtwilio.host.base import ChatHost, Post
from mmtwilio.inbound.dispatcher import PROP_SENT_BY_TWILIO
from mmtwilio.provider.client import TwilioClient
from mmtwilio.snapshot import ConfigSnapshot

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RelayResult:
    status: str
    reason: str = ""
    messages_sent: int = 0
    files_sent: int = 0
    files_failed: int = 0

    @classmethod
    def skipped(cls, reason: str) -> RelayResult:
        return cls(status="skipped", reason=reason)


class OutboundRelay:
    def __init__(
        self,
        store: BindingStore,
        resolver: BindingResolver,
        host: ChatHost,
        twilio: TwilioClient,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._host = host
        self._twilio = twilio

    async def handle_post(self, snapshot: ConfigSnapshot, post: Post) -> RelayResult:
        if post.is_system:
            return RelayResult.skipped("system_post")
        if post.props.get(PROP_SENT_BY_TWILIO) is True:
            return RelayResult.skipped("echo")

        channel = await self._host.get_channel(post.channel_id)
        if channel is None or channel.team_id != snapshot.team_id:
            return RelayResult.skipped("other_team")

        binding = self._store.find_by_channel(post.channel_id)
        if binding is None:
            return RelayResult.skipped("unbound")

        result = RelayResult(status="sent")
        if post.message.strip():
            await self._twilio.send_message(binding.conversation_id, post.message)
            result.messages_sent += 1

        if post.file_ids and not binding.chat_service_sid:
            binding = await self._resolver.backfill_chat_service(binding)
        for file_id in post.file_ids:
            if await self._forward_file(binding.conversation_id, binding.chat_service_sid, file_id):
                result.files_sent += 1
                result.messages_sent += 1
            else:
                result.files_failed += 1

        logger.info(
            "Forwarded post %s to %s (messages=%d files_failed=%d)",
            post.id,
            binding.conversation_id,
            result.messages_sent,
            result.files_failed,
        )
        return result

    async def _forward_file(
        self, conversation_id: str, chat_service_sid: str | None, file_id: str
    ) -> bool:
        if not chat_service_sid:
            logger.error(
                "Cannot forward file %s: conversation %s has no chat service",
                file_id,
                conversation_id,
            )
            return False
        try:
            info = await self._host.get_file_info(file_id)
            data = await self._host.get_file(file_id)
            media_sid = await self._twilio.upload_media(
                chat_service_sid, info.name, info.mime_type, data
            )
            await self._twilio.send_media_message(conversation_id, media_sid)
        except UpstreamError as exc:
            logger.error("Could not forward file %s to %s: %s", file_id, conversation_id, exc)
            return False
        return True
