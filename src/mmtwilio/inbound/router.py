"""Twilio Conversations webhook route."""

import hmac
import json
import logging

from fastapi import APIRouter, Request, status
from fastapi.responses import PlainTextResponse
from slowapi import Limiter
from slowapi.util import get_remote_address

from mmtwilio.config import get_settings
from mmtwilio.errors import ConfigError, MMTwilioError, ValidationError
from mmtwilio.inbound.events import parse_event
from mmtwilio.logging import bind_context, clear_context
from mmtwilio.provider.signature import validate_signature
from mmtwilio.runtime import get_runtime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/twilio", tags=["twilio"])
_limiter = Limiter(key_func=get_remote_address)


def _webhook_rate() -> str:
    return f"{get_settings().rate_limit_webhooks_per_minute}/minute"


async def _read_params(request: Request) -> dict[str, str]:
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            decoded = json.loads(await request.body())
        except ValueError as exc:
            raise ValidationError(f"malformed JSON body: {exc}") from exc
        if not isinstance(decoded, dict):
            raise ValidationError("JSON body is not an object")
        return {
            str(key): value if isinstance(value, str) else json.dumps(value)
            for key, value in decoded.items()
        }
    try:
        form = await request.form()
    except Exception as exc:  # starlette raises assorted parser errors
        raise ValidationError(f"malformed form body: {exc}") from exc
    return {key: value for key, value in form.items() if isinstance(value, str)}


@router.post("/conversation")
@_limiter.limit(_webhook_rate)
async def conversation_webhook(request: Request) -> PlainTextResponse:
    runtime = get_runtime(request)
    try:
        snapshot = runtime.snapshots.current()
    except ConfigError as exc:
        logger.error("Webhook received before configuration loaded: %s", exc)
        return PlainTextResponse(str(exc), status_code=status.HTTP_503_SERVICE_UNAVAILABLE)

    try:
        params = await _read_params(request)
        event = parse_event(params)
    except ValidationError as exc:
        logger.warning("Rejected webhook: %s", exc)
        return PlainTextResponse(str(exc), status_code=status.HTTP_400_BAD_REQUEST)

    if not hmac.compare_digest(event.account_sid, snapshot.account_sid):
        logger.warning("Rejected webhook for account %s", event.account_sid)
        return PlainTextResponse("account mismatch", status_code=status.HTTP_400_BAD_REQUEST)

    if snapshot.validate_signature:
        signature = request.headers.get("X-Twilio-Signature", "")
        if not validate_signature(snapshot.auth_token, snapshot.webhook_url, params, signature):
            logger.warning("Rejected webhook with invalid signature")
            return PlainTextResponse("invalid signature", status_code=status.HTTP_403_FORBIDDEN)

    bind_context(
        event_type=event.event_type,
        conversation_sid=getattr(event, "conversation_sid", ""),
    )
    try:
        await runtime.dispatcher.dispatch(snapshot, event)
    except MMTwilioError as exc:
        logger.error("Webhook %s failed: %s", event.event_type, exc)
        return PlainTextResponse(
            str(exc) or exc.__class__.__name__,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    finally:
        clear_context()
    return PlainTextResponse("ok")
