"""Slash command route."""

from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, Form, Request, status
from fastapi.responses import JSONResponse

from mmtwilio.commands.handlers import COMMAND_TRIGGER
from mmtwilio.commands.service import CommandArgs, CommandResponse
from mmtwilio.errors import ConfigError, MMTwilioError
from mmtwilio.runtime import get_runtime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/twilio", tags=["commands"])


@router.post("/command")
async def slash_command(
    request: Request,
    token: str = Form(default=""),
    command: str = Form(default=COMMAND_TRIGGER),
    text: str = Form(default=""),
    channel_id: str = Form(default=""),
    team_id: str = Form(default=""),
    user_id: str = Form(default=""),
) -> JSONResponse:
    runtime = get_runtime(request)
    required_token = runtime.settings.mattermost_command_token.strip()
    if required_token and not hmac.compare_digest(token, required_token):
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content=CommandResponse("Invalid command token.").to_dict(),
        )
    try:
        snapshot = runtime.snapshots.current()
    except ConfigError:
        return JSONResponse(
            status_code=200,
            content=CommandResponse("The Twilio integration is not configured yet.").to_dict(),
        )

    args = CommandArgs(
        command=f"{command} {text}".strip(),
        channel_id=channel_id,
        team_id=team_id,
        user_id=user_id,
    )
    try:
        response = await runtime.commands.execute(snapshot, args)
    except MMTwilioError as exc:
        logger.error("Command %r failed: %s", args.command, exc)
        response = CommandResponse("Could not run the command. Check the server logs.")
    return JSONResponse(status_code=200, content=response.to_dict())
