"""Operator command execution."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from mmtwilio.bindings.models import Binding
from mmtwilio.bindings.resolver import BindingResolver
from mmtwilio.bindings.store import BindingStore
from mmtwilio.commands.handlers import (
    COMMAND_TRIGGER,
    conversation_sid_is_valid,
    parse_command,
    parse_page,
)
from mmtwilio.errors import MMTwilioError, UpstreamError
from mmtwilio.outbound.hooks import PostHookRegistry
from mmtwilio.provider.client import TwilioClient
from mmtwilio.provider.models import Conversation, participant_labels
from mmtwilio.snapshot import ConfigSnapshot
from mmtwilio.webhooks.reconciler import WebhookReconciler

logger = logging.getLogger(__name__)

RESPONSE_EPHEMERAL = "ephemeral"
LIST_PAGE_SIZE = 20
LIST_FANOUT = 5

INVALID_SID = "Invalid conversation SID format. It should match ^CH[0-9a-fA-F]{32}$."
NOT_LINKED = "This channel is not linked to a Twilio conversation."
TOP_LEVEL_HINT = (
    "Available commands are channel, conversation, number, help. "
    "Use /twilio help for more information."
)

HELP_TEXT = """**Command structure**
* **channel:**
  * **status:** shows conversation linked to this channel and participants
  * **connect <conversation_sid>:** links this channel to the given conversation
  * **disconnect:** unlinks this channel from any conversation
* **conversation:**
  * **list [page]:** lists conversations and participants (page size 20)
  * **participants <conversation_sid>:** lists participants in the given conversation
  * **webhooks:**
    * **list <conversation_sid>:** lists webhooks for the given conversation
    * **add <conversation_sid>:** adds a webhook to the given conversation
    * **remove <conversation_sid>:** removes the webhook from the given conversation
* **number:**
  * **list:** lists phone numbers associated with the Twilio account
  * **webhooks:**
    * **setup <phone_number>:** sets up a webhook for the given phone number
    * **remove <phone_number>:** removes the webhook for the given phone number
* **help:** shows this message"""


@dataclass(slots=True)
class CommandArgs:
    command: str
    channel_id: str
    team_id: str = ""
    user_id: str = ""


@dataclass(slots=True)
class CommandResponse:
    text: str
    response_type: str = RESPONSE_EPHEMERAL

    def to_dict(self) -> dict[str, str]:
        return {"response_type": self.response_type, "text": self.text}


class CommandService:
    def __init__(
        self,
        store: BindingStore,
        twilio: TwilioClient,
        reconciler: WebhookReconciler,
        resolver: BindingResolver,
        hooks: PostHookRegistry,
    ) -> None:
        self._store = store
        self._twilio = twilio
        self._reconciler = reconciler
        self._resolver = resolver
        self._hooks = hooks

    async def execute(self, snapshot: ConfigSnapshot, args: CommandArgs) -> CommandResponse:
        parsed = parse_command(args.command)
        if parsed is None or parsed[0] != COMMAND_TRIGGER:
            return CommandResponse(f"Unknown command: {args.command}")
        _, fields = parsed
        if not fields:
            return CommandResponse(TOP_LEVEL_HINT)

        group, rest = fields[0].lower(), fields[1:]
        if group == "channel":
            return await self._channel(snapshot, args, rest)
        if group == "conversation":
            return await self._conversation(snapshot, rest)
        if group == "number":
            return await self._number(snapshot, rest)
        if group == "help":
            return CommandResponse(HELP_TEXT)
        return CommandResponse(f"Unknown command: {fields[0]}. {TOP_LEVEL_HINT}")

    async def _channel(
        self, snapshot: ConfigSnapshot, args: CommandArgs, fields: list[str]
    ) -> CommandResponse:
        sub = fields[0].lower() if fields else ""
        if sub == "status":
            return await self._channel_status(args.channel_id)
        if sub == "connect":
            return await self._channel_connect(snapshot, args, fields[1:])
        if sub == "disconnect":
            return await self._channel_disconnect(snapshot, args.channel_id)
        return CommandResponse(
            "Unknown channel command. Available commands are status, "
            "connect <conversation_sid>, disconnect. Use /twilio help for more information."
        )

    async def _channel_status(self, channel_id: str) -> CommandResponse:
        binding = self._store.find_by_channel(channel_id)
        if binding is None:
            return CommandResponse(NOT_LINKED)
        try:
            labels = await self._labels(binding.conversation_id)
        except UpstreamError as exc:
            logger.error("Could not list participants of %s: %s", binding.conversation_id, exc)
            return CommandResponse("Could not get Twilio conversation participants.")
        return CommandResponse(
            f"This channel is linked to Twilio conversation {binding.conversation_id} "
            f"with participants: {', '.join(labels)}"
        )

    async def _channel_connect(
        self, snapshot: ConfigSnapshot, args: CommandArgs, fields: list[str]
    ) -> CommandResponse:
        if not fields:
            return CommandResponse(
                "Please provide a conversation SID to connect to. "
                "Usage: /twilio channel connect <conversation_sid>"
            )
        existing = self._store.find_by_channel(args.channel_id)
        if existing is not None:
            return CommandResponse(
                f"This channel is already linked to Twilio conversation "
                f"{existing.conversation_id}. Please disconnect first before connecting "
                "to a new conversation."
            )
        conversation_sid = fields[0]
        if not conversation_sid_is_valid(conversation_sid):
            return CommandResponse(INVALID_SID)
        bound = self._store.find_by_conversation(conversation_sid)
        if bound is not None:
            return CommandResponse(
                f"Twilio conversation {conversation_sid} is already linked to another channel."
            )
        try:
            conversation = await self._twilio.fetch_conversation(conversation_sid)
        except UpstreamError as exc:
            logger.error("Could not fetch conversation %s: %s", conversation_sid, exc)
            return CommandResponse(f"Could not find Twilio conversation with SID {conversation_sid}.")
        binding = Binding(
            conversation_id=conversation_sid,
            channel_id=args.channel_id,
            team_id=args.team_id or snapshot.team_id,
            chat_service_sid=conversation.chat_service_sid,
        )
        try:
            self._store.save(binding)
        except MMTwilioError as exc:
            logger.error("Could not save binding for %s: %s", conversation_sid, exc)
            return CommandResponse("Could not save conversation settings.")
        await self._resolver.attach_channel(snapshot, args.channel_id)
        logger.info("Channel %s linked to conversation %s", args.channel_id, conversation_sid)
        return CommandResponse(f"This channel is now linked to Twilio conversation {conversation_sid}.")

    async def _channel_disconnect(self, snapshot: ConfigSnapshot, channel_id: str) -> CommandResponse:
        binding = self._store.find_by_channel(channel_id)
        if binding is None:
            return CommandResponse(NOT_LINKED)
        self._store.delete(binding)
        try:
            await self._hooks.remove(snapshot, channel_id)
        except UpstreamError as exc:
            logger.error("Could not remove outgoing hook from channel %s: %s", channel_id, exc)
        logger.info("Channel %s unlinked from %s", channel_id, binding.conversation_id)
        return CommandResponse(
            f"This channel has been unlinked from Twilio conversation {binding.conversation_id}."
        )

    async def _conversation(self, snapshot: ConfigSnapshot, fields: list[str]) -> CommandResponse:
        sub = fields[0].lower() if fields else ""
        if sub == "list":
            return await self._conversation_list(fields[1:])
        if sub == "participants":
            return await self._conversation_participants(fields[1:])
        if sub == "webhooks":
            return await self._conversation_webhooks(snapshot, fields[1:])
        return CommandResponse(
            "Unknown conversation command. Available commands are list [page], "
            "participants <conversation_sid>, webhooks [list|add|remove] <conversation_sid>. "
            "Use /twilio help for more information."
        )

    async def _conversation_list(self, fields: list[str]) -> CommandResponse:
        page = 0
        if fields:
            parsed = parse_page(fields[0])
            if parsed is None:
                return CommandResponse("Invalid page number. Usage: /twilio conversation list [page]")
            page = parsed
        try:
            conversations = await self._twilio.list_conversations()
        except UpstreamError as exc:
            logger.error("Could not list conversations: %s", exc)
            return CommandResponse("Could not list Twilio conversations.")
        if not conversations:
            return CommandResponse("No Twilio conversations found.")
        start = page * LIST_PAGE_SIZE
        if start >= len(conversations):
            return CommandResponse("No more Twilio conversations found.")
        end = min(start + LIST_PAGE_SIZE, len(conversations))

        guard = asyncio.Semaphore(LIST_FANOUT)

        async def describe(conversation: Conversation) -> str:
            async with guard:
                try:
                    labels = await self._labels(conversation.sid)
                except UpstreamError:
                    return f"- {conversation.sid} (could not get participants)"
            return f"- {conversation.sid} (participants: {', '.join(labels)})"

        lines = await asyncio.gather(*(describe(item) for item in conversations[start:end]))
        return CommandResponse(
            "Twilio conversations:\n"
            + "\n".join(lines)
            + f"\nShowing {start + 1} to {end} of {len(conversations)} conversations. "
            f"Use /twilio conversation list {page + 1} to see the next page."
        )

    async def _conversation_participants(self, fields: list[str]) -> CommandResponse:
        if not fields:
            return CommandResponse(
                "Please provide a conversation SID to list participants for. "
                "Usage: /twilio conversation participants <conversation_sid>"
            )
        conversation_sid = fields[0]
        if not conversation_sid_is_valid(conversation_sid):
            return CommandResponse(INVALID_SID)
        try:
            labels = await self._labels(conversation_sid)
        except UpstreamError as exc:
            logger.error("Could not list participants of %s: %s", conversation_sid, exc)
            return CommandResponse(
                f"Could not get participants for Twilio conversation {conversation_sid}."
            )
        return CommandResponse(
            f"Participants in Twilio conversation {conversation_sid}: {', '.join(labels)}"
        )

    async def _conversation_webhooks(
        self, snapshot: ConfigSnapshot, fields: list[str]
    ) -> CommandResponse:
        if not fields:
            return CommandResponse(
                "Please provide a subcommand (list, add, remove) and a conversation SID. "
                "Usage: /twilio conversation webhooks [list|add|remove] <conversation_sid>"
            )
        sub = fields[0].lower()
        if sub not in {"list", "add", "remove"}:
            return CommandResponse(
                "Unknown webhooks subcommand. Available subcommands are list <conversation_sid>, "
                "add <conversation_sid>, remove <conversation_sid>. "
                "Use /twilio help for more information."
            )
        if len(fields) < 2:
            target = {"list": "list webhooks for", "add": "add a webhook to"}.get(
                sub, "remove the webhook from"
            )
            return CommandResponse(
                f"Please provide a conversation SID to {target}. "
                f"Usage: /twilio conversation webhooks {sub} <conversation_sid>"
            )
        conversation_sid = fields[1]
        if not conversation_sid_is_valid(conversation_sid):
            return CommandResponse(INVALID_SID)

        if sub == "list":
            try:
                webhooks = await self._reconciler.list_webhooks(conversation_sid)
            except UpstreamError as exc:
                logger.error("Could not list webhooks of %s: %s", conversation_sid, exc)
                return CommandResponse(
                    f"Could not list webhooks for Twilio conversation {conversation_sid}."
                )
            if not webhooks:
                return CommandResponse(f"No webhooks found for Twilio conversation {conversation_sid}.")
            lines = [
                f"- SID: {hook.sid}, URL: {hook.url}, Events: {', '.join(hook.filters)}"
                for hook in webhooks
            ]
            return CommandResponse(
                f"Webhooks for Twilio conversation {conversation_sid}:\n" + "\n".join(lines)
            )

        if sub == "add":
            try:
                await self._reconciler.ensure_webhook(conversation_sid, snapshot.webhook_url)
            except UpstreamError as exc:
                logger.error("Could not add webhook to %s: %s", conversation_sid, exc)
                return CommandResponse(f"Could not add webhook to Twilio conversation {conversation_sid}.")
            return CommandResponse(f"Webhook added to Twilio conversation {conversation_sid}.")

        try:
            await self._reconciler.remove_webhook(conversation_sid, snapshot.webhook_url)
        except UpstreamError as exc:
            logger.error("Could not remove webhook from %s: %s", conversation_sid, exc)
            return CommandResponse(
                f"Could not remove webhook from Twilio conversation {conversation_sid}."
            )
        return CommandResponse(f"Webhook removed from Twilio conversation {conversation_sid}.")

    async def _number(self, snapshot: ConfigSnapshot, fields: list[str]) -> CommandResponse:
        sub = fields[0].lower() if fields else ""
        if sub not in {"list", "webhooks"}:
            return CommandResponse(
                "Unknown number command. Available commands are list, "
                "webhooks [setup|remove] <phone_number>. Use /twilio help for more information."
            )
        try:
            numbers = await self._twilio.list_phone_numbers()
        except UpstreamError as exc:
            logger.error("Could not list phone numbers: %s", exc)
            return CommandResponse("Could not find phone numbers.")
        if not numbers:
            return CommandResponse("No phone numbers found.")

        if sub == "list":
            return CommandResponse("Phone numbers:\n" + "\n".join(f"- {num}" for num in numbers))

        if len(fields) < 2:
            return CommandResponse(
                "Please provide a subcommand (setup, remove) and a phone number. "
                "Usage: /twilio number webhooks [setup|remove] <phone_number>"
            )
        action = fields[1].lower()
        if action not in {"setup", "remove"}:
            return CommandResponse(
                "Unknown webhooks subcommand. Available subcommands are setup <phone_number>, "
                "remove <phone_number>. Use /twilio help for more information."
            )
        if len(fields) < 3:
            target = "set up a webhook for" if action == "setup" else "remove the webhook for"
            return CommandResponse(
                f"Please provide a phone number to {target}. "
                f"Usage: /twilio number webhooks {action} <phone_number>"
            )
        phone_number = fields[2]
        if phone_number not in numbers:
            return CommandResponse(
                f"Phone number {phone_number} is not associated with your Twilio account."
            )

        if action == "setup":
            try:
                added = await self._reconciler.setup_number(phone_number, snapshot.webhook_url)
            except UpstreamError as exc:
                logger.error("Could not set up webhook for %s: %s", phone_number, exc)
                return CommandResponse(f"Could not set up webhook for phone number {phone_number}.")
            return CommandResponse(
                f"Webhook set up for phone number {phone_number} "
                f"({added} existing conversations updated)."
            )

        try:
            await self._reconciler.remove_number(phone_number, snapshot.webhook_url)
        except UpstreamError as exc:
            logger.error("Could not remove webhook for %s: %s", phone_number, exc)
            return CommandResponse(f"Could not remove webhook for phone number {phone_number}.")
        return CommandResponse(f"Webhook removed for phone number {phone_number}.")

    async def _labels(self, conversation_sid: str) -> list[str]:
        return participant_labels(await self._twilio.list_participants(conversation_sid))
