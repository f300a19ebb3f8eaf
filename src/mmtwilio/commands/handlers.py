"""Command parsing and argument validation."""

import re

COMMAND_TRIGGER = "/twilio"

_CONVERSATION_SID = re.compile(r"CH[0-9a-fA-F]{32}")


def parse_command(text: str) -> tuple[str, list[str]] | None:
    if not text.startswith("/"):
        return None
    tokens = text.strip().split()
    return tokens[0].lower(), tokens[1:]


def conversation_sid_is_valid(sid: str) -> bool:
    return len(sid) == 34 and _CONVERSATION_SID.fullmatch(sid) is not None


def parse_page(value: str) -> int | None:
    try:
        page = int(value)
    except ValueError:
        return None
    return page if page >= 0 else None
