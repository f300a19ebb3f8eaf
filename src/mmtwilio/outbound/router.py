"""Mattermost outgoing-webhook route for new chat posts."""

from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from mmtwilio.errors import ConfigError, MMTwilioError
from mmtwilio.logging import bind_context, clear_context
from mmtwilio.runtime import get_runtime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/mattermost", tags=["mattermost"])


class OutgoingWebhookPayload(BaseModel):
    token: str = ""
    post_id: str = Field(min_length=1)
    channel_id: str = ""
    team_id: str = ""
    user_id: str = ""


@router.post("/posts")
async def post_created(payload: OutgoingWebhookPayload, request: Request) -> JSONResponse:
    runtime = get_runtime(request)
    # the shared token from settings, or the token of the hook registered on the channel
    accepted_tokens = [
        token
        for token in (
            runtime.settings.mattermost_outgoing_token.strip(),
            runtime.hooks.token_for(payload.channel_id),
        )
        if token
    ]
    if accepted_tokens and not any(
        hmac.compare_digest(payload.token, token) for token in accepted_tokens
    ):
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"accepted": False, "error": "invalid_token"},
        )
    try:
        snapshot = runtime.snapshots.current()
    except ConfigError:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"accepted": False, "error": "not_configured"},
        )

    bind_context(post_id=payload.post_id, channel_id=payload.channel_id)
    try:
        post = await runtime.host.get_post(payload.post_id)
        if post is None:
            return JSONResponse(
                status_code=status.HTTP_404_NOT_FOUND,
                content={"accepted": False, "error": "post_not_found"},
            )
        result = await runtime.relay.handle_post(snapshot, post)
    except MMTwilioError as exc:
        logger.error("Could not relay post %s: %s", payload.post_id, exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"accepted": False, "error": str(exc)},
        )
    finally:
        clear_context()
    return JSONResponse(
        status_code=200,
        content={
            "accepted": True,
            "status": result.status,
            "reason": result.reason,
            "messages_sent": result.messages_sent,
            "files_sent": result.files_sent,
            "files_failed": result.files_failed,
        },
    )
