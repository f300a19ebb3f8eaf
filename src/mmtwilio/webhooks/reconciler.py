"""Keeps Twilio-side webhooks pointed at this deployment's inbound endpoint.

A webhook belongs to this deployment when its configuration URL equals the
inbound endpoint, compared case-insensitively. Every operation is
idempotent: ensure adds only when absent, remove deletes every match.
"""

from __future__ import annotations

import logging

from mmtwilio.errors import UpstreamError
from mmtwilio.provider.client import TwilioClient
from mmtwilio.provider.models import Conversation, ConversationWebhook

logger = logging.getLogger(__name__)

CONVERSATION_FILTERS = ("onMessageAdded",)
ADDRESS_FILTERS = ("onMessageAdded", "onConversationAdded")


def url_matches(candidate: str, endpoint: str) -> bool:
    return candidate.casefold() == endpoint.casefold()


class WebhookReconciler:
    def __init__(self, twilio: TwilioClient) -> None:
        self._twilio = twilio

    async def list_webhooks(self, conversation_id: str) -> list[ConversationWebhook]:
        return await self._twilio.list_conversation_webhooks(conversation_id)

    async def ensure_webhook(self, conversation_id: str, endpoint: str) -> bool:
        """Register the endpoint on the conversation; returns True when one was created."""
        for webhook in await self._twilio.list_conversation_webhooks(conversation_id):
            if url_matches(webhook.url, endpoint):
                logger.debug(
                    "Webhook %s already registered on %s", webhook.sid, conversation_id
                )
                return False
        created = await self._twilio.create_conversation_webhook(
            conversation_id, endpoint, list(CONVERSATION_FILTERS)
        )
        logger.info("Registered webhook %s on conversation %s", created.sid, conversation_id)
        return True

    async def remove_webhook(self, conversation_id: str, endpoint: str) -> int:
        removed = 0
        for webhook in await self._twilio.list_conversation_webhooks(conversation_id):
            if not url_matches(webhook.url, endpoint):
                continue
            await self._twilio.delete_conversation_webhook(conversation_id, webhook.sid)
            logger.info("Removed webhook %s from conversation %s", webhook.sid, conversation_id)
            removed += 1
        return removed

    async def find_conversations_by_proxy_address(self, phone_number: str) -> list[Conversation]:
        """Conversations with a participant whose proxy address is ``phone_number``."""
        wanted = f"*{phone_number}"
        matches: list[Conversation] = []
        for conversation in await self._twilio.list_conversations():
            try:
                participants = await self._twilio.list_participants(conversation.sid)
            except UpstreamError as exc:
                logger.warning(
                    "Skipping conversation %s: could not list participants: %s",
                    conversation.sid,
                    exc,
                )
                continue
            for participant in participants:
                if any(url_matches(label, wanted) for label in participant.labels()):
                    matches.append(conversation)
                    break
        return matches

    async def setup_number(self, phone_number: str, endpoint: str) -> int:
        """Point the number's auto-creation at the endpoint and cover existing conversations.

        Returns the number of existing conversations that received a webhook.
        """
        existing = await self._twilio.fetch_address_configuration(phone_number)
        if existing is None:
            created = await self._twilio.create_address_configuration(
                phone_number, endpoint, list(ADDRESS_FILTERS)
            )
            logger.info("Created address configuration %s for %s", created.sid, phone_number)
        else:
            await self._twilio.update_address_configuration(
                existing.sid, endpoint, list(ADDRESS_FILTERS)
            )
            logger.info("Updated address configuration %s for %s", existing.sid, phone_number)

        added = 0
        for conversation in await self.find_conversations_by_proxy_address(phone_number):
            if await self.ensure_webhook(conversation.sid, endpoint):
                added += 1
        return added

    async def remove_number(self, phone_number: str, endpoint: str) -> int:
        removed = 0
        for conversation in await self.find_conversations_by_proxy_address(phone_number):
            removed += await self.remove_webhook(conversation.sid, endpoint)

        existing = await self._twilio.fetch_address_configuration(phone_number)
        if existing is None:
            logger.debug("No address configuration for %s", phone_number)
            return removed
        await self._twilio.delete_address_configuration(existing.sid)
        logger.info("Deleted address configuration %s for %s", existing.sid, phone_number)
        return removed
