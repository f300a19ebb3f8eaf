"""Per-channel outgoing hooks that deliver chat posts to ``/mattermost/posts``.

The chat host only calls an outgoing hook without trigger words for the one
channel it is attached to, so every bound channel gets its own hook. The
hook's id and token are kept in the key-value store so the posts route can
check the token without an API call.
"""

from __future__ import annotations

import json
import logging

from mmtwilio.host.base import ChatHost, OutgoingHook
from mmtwilio.kvstore import KVStore
from mmtwilio.snapshot import ConfigSnapshot
from mmtwilio.webhooks.reconciler import url_matches

logger = logging.getLogger(__name__)

HOOK_PREFIX = "outgoing-hook:"
HOOK_DISPLAY_NAME = "Twilio relay"


def hook_key(channel_id: str) -> str:
    return f"{HOOK_PREFIX}{channel_id}"


class PostHookRegistry:
    def __init__(self, host: ChatHost, kv: KVStore) -> None:
        self._host = host
        self._kv = kv

    def token_for(self, channel_id: str) -> str | None:
        if not channel_id:
            return None
        raw = self._kv.get(hook_key(channel_id))
        if raw is None:
            return None
        try:
            record = json.loads(raw)
        except ValueError:
            logger.warning("Ignoring undecodable hook record for channel %s", channel_id)
            return None
        token = record.get("token") if isinstance(record, dict) else None
        return token if isinstance(token, str) and token else None

    async def ensure(self, snapshot: ConfigSnapshot, channel_id: str) -> OutgoingHook:
        """Attach a hook for ``channel_id`` unless one already points at the posts route."""
        for hook in await self._host.list_outgoing_hooks(channel_id):
            if any(url_matches(url, snapshot.posts_webhook_url) for url in hook.callback_urls):
                self._remember(hook)
                return hook
        hook = await self._host.create_outgoing_hook(
            OutgoingHook(
                id="",
                team_id=snapshot.team_id,
                channel_id=channel_id,
                callback_urls=[snapshot.posts_webhook_url],
                display_name=HOOK_DISPLAY_NAME,
            )
        )
        self._remember(hook)
        logger.info("Registered outgoing hook %s for channel %s", hook.id, channel_id)
        return hook

    async def remove(self, snapshot: ConfigSnapshot, channel_id: str) -> int:
        removed = 0
        for hook in await self._host.list_outgoing_hooks(channel_id):
            if not any(url_matches(url, snapshot.posts_webhook_url) for url in hook.callback_urls):
                continue
            await self._host.delete_outgoing_hook(hook.id)
            logger.info("Removed outgoing hook %s from channel %s", hook.id, channel_id)
            removed += 1
        self._kv.delete(hook_key(channel_id))
        return removed

    def _remember(self, hook: OutgoingHook) -> None:
        record = {"hook_id": hook.id, "token": hook.token}
        self._kv.set(hook_key(hook.channel_id), json.dumps(record).encode())
