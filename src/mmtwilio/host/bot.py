"""Service bot account lookup and creation."""

from __future__ import annotations

import logging

from mmtwilio.host.base import BotAccount, ChatHost

logger = logging.getLogger(__name__)

BOT_USERNAME = "twilio"
BOT_DISPLAY_NAME = "Twilio"
BOT_DESCRIPTION = "Twilio Bot"
BOT_PAGE_SIZE = 20


async def find_bot(host: ChatHost) -> BotAccount | None:
    page = 0
    while True:
        bots = await host.list_bots(page, BOT_PAGE_SIZE)
        if not bots:
            return None
        for bot in bots:
            if bot.username == BOT_USERNAME and bot.active:
                return bot
        page += 1


async def ensure_bot(host: ChatHost, owner_id: str) -> BotAccount:
    """Return the ``twilio`` bot, creating it for ``owner_id`` when absent."""
    bot = await find_bot(host)
    if bot is not None:
        return bot
    bot = await host.create_bot(BOT_USERNAME, BOT_DISPLAY_NAME, BOT_DESCRIPTION, owner_id)
    logger.info("Created bot account %s (user_id=%s)", bot.username, bot.user_id)
    return bot
