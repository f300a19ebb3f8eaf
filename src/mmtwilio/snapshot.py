"""Immutable runtime configuration snapshot.

Settings from the environment are combined with values resolved against the
chat host (team id, bot user id and access token, auto-add user ids) into a frozen
``ConfigSnapshot``. Handlers read the current snapshot once per request and
pass it down explicitly; a reload builds a new snapshot and swaps the
reference held by ``SnapshotHolder``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from mmtwilio.config import Settings, parse_csv
from mmtwilio.errors import ConfigError, TeamNotFoundError
from mmtwilio.host.base import ChatHost
from mmtwilio.host.bot import ensure_bot

logger = logging.getLogger(__name__)

INBOUND_PATH = "/twilio/conversation"
POSTS_PATH = "/mattermost/posts"
BOT_TOKEN_DESCRIPTION = "mmtwilio relay"


@dataclass(frozen=True, slots=True)
class ConfigSnapshot:
    account_sid: str
    auth_token: str = field(repr=False)
    team_id: str
    team_name: str
    bot_user_id: str
    webhook_url: str
    auto_add_user_ids: tuple[str, ...] = ()
    validate_signature: bool = False
    posts_webhook_url: str = ""
    bot_token: str = field(default="", repr=False)


def inbound_webhook_url(settings: Settings) -> str:
    return f"{settings.public_base_url.rstrip('/')}{INBOUND_PATH}"


def posts_webhook_url(settings: Settings) -> str:
    return f"{settings.public_base_url.rstrip('/')}{POSTS_PATH}"


async def load_snapshot(
    settings: Settings, host: ChatHost, *, previous: ConfigSnapshot | None = None
) -> ConfigSnapshot:
    """Resolve host-side values for ``settings``.

    Without ``MATTERMOST_BOT_TOKEN`` an access token is minted for the bot,
    once: a reload for the same bot keeps the token of ``previous``.
    """
    team_name = settings.mattermost_team_name.strip()
    if not team_name:
        raise ConfigError("MATTERMOST_TEAM_NAME is not configured")
    team = await host.get_team_by_name(team_name)
    if team is None:
        raise TeamNotFoundError(f"team {team_name} not found")

    bot = await ensure_bot(host, settings.mattermost_bot_owner_id)
    await host.add_team_member(team.id, bot.user_id)
    bot_token = settings.mattermost_bot_token.strip()
    if not bot_token and previous is not None and previous.bot_user_id == bot.user_id:
        bot_token = previous.bot_token
    if not bot_token:
        bot_token = await host.create_user_access_token(bot.user_id, BOT_TOKEN_DESCRIPTION)
        logger.info("Minted access token for bot %s", bot.user_id)

    usernames = parse_csv(settings.mattermost_auto_add_usernames)
    user_ids: dict[str, str] = {}
    if usernames:
        user_ids = await host.get_user_ids_by_usernames(usernames)
        missing = [name for name in usernames if name not in user_ids]
        if missing:
            logger.warning("Auto-add usernames not found: %s", ", ".join(missing))

    return ConfigSnapshot(
        account_sid=settings.twilio_account_sid,
        auth_token=settings.twilio_auth_token,
        team_id=team.id,
        team_name=team.name,
        bot_user_id=bot.user_id,
        webhook_url=inbound_webhook_url(settings),
        auto_add_user_ids=tuple(user_ids[name] for name in usernames if name in user_ids),
        validate_signature=bool(settings.twilio_validate_signature),
        posts_webhook_url=posts_webhook_url(settings),
        bot_token=bot_token,
    )


class SnapshotHolder:
    def __init__(self, snapshot: ConfigSnapshot | None = None) -> None:
        self._snapshot = snapshot

    @property
    def loaded(self) -> bool:
        return self._snapshot is not None

    def current(self) -> ConfigSnapshot:
        snapshot = self._snapshot
        if snapshot is None:
            raise ConfigError("configuration has not been loaded")
        return snapshot

    def swap(self, snapshot: ConfigSnapshot) -> ConfigSnapshot | None:
        previous, self._snapshot = self._snapshot, snapshot
        return previous

    async def reload(self, settings: Settings, host: ChatHost) -> ConfigSnapshot:
        snapshot = await load_snapshot(settings, host, previous=self._snapshot)
        self.swap(snapshot)
        logger.info(
            "Configuration loaded (team=%s bot=%s)", snapshot.team_name, snapshot.bot_user_id
        )
        return snapshot
