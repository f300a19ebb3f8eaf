"""mmtwilio exception hierarchy.

All relay-specific exceptions inherit from MMTwilioError so route
handlers can map the whole family to an HTTP status in one place.
"""


class MMTwilioError(Exception):
    """Base exception for all relay errors."""

    def __init__(self, message: str = "", *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class ValidationError(MMTwilioError):
    """Malformed request, payload or identifier."""


class NotFoundError(MMTwilioError):
    """A binding, team, channel or post does not exist."""


class BindingNotFoundError(NotFoundError):
    """No binding exists for the channel or conversation."""


class TeamNotFoundError(NotFoundError):
    """The configured team does not exist on the chat host."""


class UpstreamError(MMTwilioError):
    """An external API call failed."""

    def __init__(
        self,
        message: str = "",
        *,
        status_code: int | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message, retryable=retryable)
        self.status_code = status_code


class ProviderError(UpstreamError):
    """Error communicating with the Twilio REST API."""


class HostError(UpstreamError):
    """Error communicating with the Mattermost REST API."""


class ConfigError(MMTwilioError):
    """Invalid or missing configuration."""


class StoreError(MMTwilioError):
    """Error reading or writing the key-value store."""
