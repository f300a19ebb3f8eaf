"""Application configuration contract."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = Field(alias="APP_ENV", default="dev")
    app_db: str = Field(alias="APP_DB", default="/tmp/mmtwilio.db")
    log_level: str = Field(alias="LOG_LEVEL", default="INFO")

    twilio_account_sid: str = Field(alias="TWILIO_ACCOUNT_SID", default="")
    twilio_auth_token: str = Field(alias="TWILIO_AUTH_TOKEN", default="")
    twilio_validate_signature: int = Field(alias="TWILIO_VALIDATE_SIGNATURE", default=0)
    twilio_timeout_seconds: int = Field(alias="TWILIO_TIMEOUT_SECONDS", default=20)
    twilio_media_timeout_seconds: int = Field(alias="TWILIO_MEDIA_TIMEOUT_SECONDS", default=60)

    mattermost_url: str = Field(alias="MATTERMOST_URL", default="http://localhost:8065")
    mattermost_token: str = Field(alias="MATTERMOST_TOKEN", default="")
    # posts are authored by the bot; minted at load when empty
    mattermost_bot_token: str = Field(alias="MATTERMOST_BOT_TOKEN", default="")
    mattermost_team_name: str = Field(alias="MATTERMOST_TEAM_NAME", default="")
    mattermost_bot_owner_id: str = Field(alias="MATTERMOST_BOT_OWNER_ID", default="")
    mattermost_auto_add_usernames: str = Field(alias="MATTERMOST_AUTO_ADD_USERNAMES", default="")
    mattermost_command_token: str = Field(alias="MATTERMOST_COMMAND_TOKEN", default="")
    mattermost_outgoing_token: str = Field(alias="MATTERMOST_OUTGOING_TOKEN", default="")
    mattermost_timeout_seconds: int = Field(alias="MATTERMOST_TIMEOUT_SECONDS", default=20)

    # Inbound endpoint registered on Twilio is PUBLIC_BASE_URL + /twilio/conversation
    public_base_url: str = Field(alias="PUBLIC_BASE_URL", default="http://localhost:8000")
    admin_token: str = Field(alias="ADMIN_TOKEN", default="")

    # Security: bind host defaults to loopback
    bind_host: str = Field(alias="BIND_HOST", default="127.0.0.1")
    bind_port: int = Field(alias="BIND_PORT", default=8000)

    rate_limit_webhooks_per_minute: int = Field(
        alias="RATE_LIMIT_WEBHOOKS_PER_MINUTE", default=600
    )
    legacy_migration_on_startup: int = Field(alias="LEGACY_MIGRATION_ON_STARTUP", default=1)


def parse_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def validate_settings_for_env(settings: Settings) -> None:
    import logging as _logging
    import warnings

    _logger = _logging.getLogger(__name__)

    if settings.app_env == "prod" and settings.bind_host == "0.0.0.0":
        msg = (
            "SECURITY WARNING: BIND_HOST=0.0.0.0 in production. "
            "This exposes the webhook endpoints on all network interfaces. "
            "Set BIND_HOST=127.0.0.1 and use a reverse proxy."
        )
        _logger.warning(msg)
        warnings.warn(msg, stacklevel=2)

    if settings.app_env != "prod":
        return

    missing: list[str] = []
    required_non_empty = {
        "APP_DB": settings.app_db,
        "TWILIO_ACCOUNT_SID": settings.twilio_account_sid,
        "TWILIO_AUTH_TOKEN": settings.twilio_auth_token,
        "MATTERMOST_URL": settings.mattermost_url,
        "MATTERMOST_TOKEN": settings.mattermost_token,
        "MATTERMOST_TEAM_NAME": settings.mattermost_team_name,
        "PUBLIC_BASE_URL": settings.public_base_url,
    }
    for key, value in required_non_empty.items():
        if not value.strip():
            missing.append(key)

    if settings.twilio_account_sid.strip() and not settings.twilio_account_sid.startswith("AC"):
        missing.append("TWILIO_ACCOUNT_SID(AC... value)")
    if not settings.public_base_url.startswith("https://"):
        missing.append("PUBLIC_BASE_URL(https required)")
    if not settings.app_db.startswith("/"):
        missing.append("APP_DB(absolute path required)")

    if missing:
        keys = ", ".join(sorted(set(missing)))
        raise ValueError(f"invalid production configuration: {keys}")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
