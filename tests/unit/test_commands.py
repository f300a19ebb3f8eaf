import pytest

from mmtwilio.bindings.models import Binding
from mmtwilio.bindings.store import BindingStore
from mmtwilio.commands.handlers import parse_command, parse_page
from mmtwilio.commands.service import HELP_TEXT, INVALID_SID, NOT_LINKED, CommandArgs

SID = "CH" + "a" * 32
OTHER = "CH" + "b" * 32
ENDPOINT = "https://relay.example.com/twilio/conversation"


async def run(runtime, snapshot, text: str, channel_id: str = "channel-1") -> str:
    response = await runtime.commands.execute(
        snapshot, CommandArgs(command=text, channel_id=channel_id, team_id="team-id")
    )
    assert response.response_type == "ephemeral"
    return response.text


def test_parsing_helpers() -> None:
    assert parse_command("/Twilio  channel status ") == ("/twilio", ["channel", "status"])
    assert parse_command("twilio help") is None
    assert parse_page("2") == 2
    assert parse_page("-1") is None
    assert parse_page("two") is None


@pytest.mark.asyncio
async def test_help_and_unknown(runtime, snapshot) -> None:
    assert await run(runtime, snapshot, "/twilio help") == HELP_TEXT
    assert (await run(runtime, snapshot, "/twilio")).startswith("Available commands are")
    assert (await run(runtime, snapshot, "/twilio bogus")).startswith("Unknown command: bogus.")
    assert (await run(runtime, snapshot, "/other help")).startswith("Unknown command")


@pytest.mark.asyncio
async def test_connect_status_disconnect(runtime, memory_kv, snapshot) -> None:
    store = BindingStore(memory_kv)

    assert await run(runtime, snapshot, "/twilio channel status") == NOT_LINKED
    assert await run(runtime, snapshot, "/twilio channel connect CH123") == INVALID_SID

    text = await run(runtime, snapshot, f"/twilio channel connect {SID}")
    assert text == f"This channel is now linked to Twilio conversation {SID}."
    binding = store.find_by_channel("channel-1")
    assert binding == Binding(
        conversation_id=SID, channel_id="channel-1", team_id="team-id", chat_service_sid="IS123"
    )

    status = await run(runtime, snapshot, "/twilio channel status")
    assert status == (
        f"This channel is linked to Twilio conversation {SID} "
        "with participants: +15551234567, *+15557654321"
    )

    again = await run(runtime, snapshot, f"/twilio channel connect {OTHER}")
    assert again.startswith(f"This channel is already linked to Twilio conversation {SID}")

    taken = await run(runtime, snapshot, f"/twilio channel connect {SID}", channel_id="channel-2")
    assert taken == f"Twilio conversation {SID} is already linked to another channel."

    gone = await run(runtime, snapshot, "/twilio channel disconnect")
    assert gone == f"This channel has been unlinked from Twilio conversation {SID}."
    assert store.find_by_channel("channel-1") is None
    assert store.find_by_conversation(SID) is None


@pytest.mark.asyncio
async def test_connect_hooks_channel_and_disconnect_unhooks(runtime, fake_host, snapshot) -> None:
    await run(runtime, snapshot, f"/twilio channel connect {SID}")

    [hook] = fake_host.hooks.values()
    assert hook.channel_id == "channel-1"
    assert hook.callback_urls == ["https://relay.example.com/mattermost/posts"]
    assert ("channel-1", "bot-user") in fake_host.members
    assert runtime.hooks.token_for("channel-1") == hook.token

    await run(runtime, snapshot, "/twilio channel disconnect")

    assert fake_host.hooks == {}
    assert runtime.hooks.token_for("channel-1") is None


@pytest.mark.asyncio
async def test_connect_unknown_conversation(runtime, snapshot) -> None:
    text = await run(runtime, snapshot, f"/twilio channel connect {OTHER}")
    assert text == f"Could not find Twilio conversation with SID {OTHER}."


@pytest.mark.asyncio
async def test_conversation_list_pages(runtime, fake_twilio, snapshot) -> None:
    for index in range(25):
        fake_twilio.add_conversation(f"CH{index:032x}")

    first = await run(runtime, snapshot, "/twilio conversation list")
    second = await run(runtime, snapshot, "/twilio conversation list 1")

    assert first.startswith("Twilio conversations:\n")
    assert first.count("\n- ") == 20
    assert first.endswith(
        "Showing 1 to 20 of 26 conversations. Use /twilio conversation list 1 to see the next page."
    )
    assert "Showing 21 to 26 of 26 conversations." in second
    assert await run(runtime, snapshot, "/twilio conversation list 5") == (
        "No more Twilio conversations found."
    )
    assert (await run(runtime, snapshot, "/twilio conversation list x")).startswith(
        "Invalid page number."
    )


@pytest.mark.asyncio
async def test_conversation_list_empty(runtime, fake_twilio, snapshot) -> None:
    fake_twilio.conversations.clear()
    assert await run(runtime, snapshot, "/twilio conversation list") == "No Twilio conversations found."


@pytest.mark.asyncio
async def test_participants(runtime, snapshot) -> None:
    text = await run(runtime, snapshot, f"/twilio conversation participants {SID}")
    assert text == f"Participants in Twilio conversation {SID}: +15551234567, *+15557654321"


@pytest.mark.asyncio
async def test_conversation_webhooks(runtime, fake_twilio, snapshot) -> None:
    assert await run(runtime, snapshot, f"/twilio conversation webhooks list {SID}") == (
        f"No webhooks found for Twilio conversation {SID}."
    )
    assert await run(runtime, snapshot, f"/twilio conversation webhooks add {SID}") == (
        f"Webhook added to Twilio conversation {SID}."
    )
    await run(runtime, snapshot, f"/twilio conversation webhooks add {SID}")
    assert len(fake_twilio.webhooks[SID]) == 1

    listing = await run(runtime, snapshot, f"/twilio conversation webhooks list {SID}")
    assert f"- SID: WH1, URL: {ENDPOINT}, Events: onMessageAdded" in listing

    assert await run(runtime, snapshot, f"/twilio conversation webhooks remove {SID}") == (
        f"Webhook removed from Twilio conversation {SID}."
    )
    assert fake_twilio.webhooks[SID] == []
    assert (await run(runtime, snapshot, "/twilio conversation webhooks")).startswith(
        "Please provide a subcommand"
    )
    assert (await run(runtime, snapshot, "/twilio conversation webhooks add nope")) == INVALID_SID


@pytest.mark.asyncio
async def test_number_commands(runtime, fake_twilio, snapshot) -> None:
    assert await run(runtime, snapshot, "/twilio number list") == "No phone numbers found."

    fake_twilio.phone_numbers = ["+15557654321"]
    assert await run(runtime, snapshot, "/twilio number list") == "Phone numbers:\n- +15557654321"

    unknown = await run(runtime, snapshot, "/twilio number webhooks setup +15550000000")
    assert unknown == "Phone number +15550000000 is not associated with your Twilio account."

    setup = await run(runtime, snapshot, "/twilio number webhooks setup +15557654321")
    assert setup.startswith("Webhook set up for phone number +15557654321")
    assert "+15557654321" in fake_twilio.addresses
    assert len(fake_twilio.webhooks[SID]) == 1

    removed = await run(runtime, snapshot, "/twilio number webhooks remove +15557654321")
    assert removed == "Webhook removed for phone number +15557654321."
    assert fake_twilio.addresses == {}
