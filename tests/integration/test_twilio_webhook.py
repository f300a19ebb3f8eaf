import json
from dataclasses import replace

from mmtwilio.bindings.store import BindingStore
from mmtwilio.provider.signature import compute_signature
from mmtwilio.snapshot import SnapshotHolder

SID = "CH" + "a" * 32
WEBHOOK_URL = "https://relay.example.com/twilio/conversation"
MESSAGE = {
    "AccountSid": "AC1",
    "EventType": "onMessageAdded",
    "ConversationSid": SID,
    "MessageSid": "IM1",
    "Author": "+15551234567",
    "Body": "Hello",
}


def test_first_message_creates_channel_and_post(client, fake_host, memory_kv) -> None:
    response = client.post("/twilio/conversation", data=MESSAGE)

    assert response.status_code == 200
    assert response.text == "ok"
    assert len(fake_host.channels) == 1
    channel = next(iter(fake_host.channels.values()))
    assert channel.team_id == "team-id"
    assert channel.display_name == "Text +15551234567, *+15557654321"
    assert len(fake_host.posts) == 1
    post = fake_host.posts[0]
    assert post.channel_id == channel.id
    assert post.message == "<+15551234567>: Hello"
    assert post.props["sent_by_twilio"] is True
    assert ("channel-1", "user-alice") in fake_host.members
    assert BindingStore(memory_kv).find_by_channel(channel.id).conversation_id == SID


def test_second_message_reuses_binding(client, fake_host) -> None:
    client.post("/twilio/conversation", data=MESSAGE)
    response = client.post("/twilio/conversation", data={**MESSAGE, "MessageSid": "IM2", "Body": "Again"})

    assert response.status_code == 200
    assert len(fake_host.channels) == 1
    assert [post.message for post in fake_host.posts] == [
        "<+15551234567>: Hello",
        "<+15551234567>: Again",
    ]


def test_json_body_is_accepted(client, fake_host) -> None:
    response = client.post("/twilio/conversation", json=MESSAGE)

    assert response.status_code == 200
    assert len(fake_host.posts) == 1


def test_account_mismatch_is_rejected(client, fake_host) -> None:
    response = client.post("/twilio/conversation", data={**MESSAGE, "AccountSid": "AC2"})

    assert response.status_code == 400
    assert fake_host.posts == []
    assert fake_host.channels == {}


def test_malformed_payload_is_rejected(client, fake_host) -> None:
    missing = client.post("/twilio/conversation", data={"AccountSid": "AC1", "EventType": "onMessageAdded"})
    bad_media = client.post("/twilio/conversation", data={**MESSAGE, "Media": "not-json"})
    bad_json = client.post(
        "/twilio/conversation",
        content=b"{",
        headers={"Content-Type": "application/json"},
    )

    assert missing.status_code == 400
    assert bad_media.status_code == 400
    assert bad_json.status_code == 400
    assert fake_host.posts == []


def test_other_events_are_acknowledged(client, fake_host) -> None:
    ignored = client.post(
        "/twilio/conversation",
        data={"AccountSid": "AC1", "EventType": "onParticipantAdded", "ConversationSid": SID},
    )
    unknown = client.post("/twilio/conversation", data={"AccountSid": "AC1", "EventType": "onNew"})

    assert ignored.status_code == 200
    assert unknown.status_code == 200
    assert fake_host.channels == {}


def test_conversation_added_registers_webhook(client, fake_twilio) -> None:
    response = client.post(
        "/twilio/conversation",
        data={"AccountSid": "AC1", "EventType": "onConversationAdded", "ConversationSid": SID},
    )

    assert response.status_code == 200
    assert [hook.url for hook in fake_twilio.webhooks[SID]] == [WEBHOOK_URL]


def test_signature_is_enforced_when_enabled(client, runtime, snapshot, fake_host) -> None:
    runtime.snapshots.swap(replace(snapshot, validate_signature=True))

    forged = client.post(
        "/twilio/conversation", data=MESSAGE, headers={"X-Twilio-Signature": "bogus"}
    )
    unsigned = client.post("/twilio/conversation", data=MESSAGE)
    signed = client.post(
        "/twilio/conversation",
        data=MESSAGE,
        headers={"X-Twilio-Signature": compute_signature("secret", WEBHOOK_URL, MESSAGE)},
    )

    assert forged.status_code == 403
    assert unsigned.status_code == 403
    assert signed.status_code == 200
    assert len(fake_host.posts) == 1


def test_unconfigured_relay_answers_503(client, runtime, fake_host) -> None:
    runtime.snapshots = SnapshotHolder()

    response = client.post("/twilio/conversation", data=MESSAGE)

    assert response.status_code == 503
    assert fake_host.posts == []


def test_host_failure_answers_500(client, fake_host) -> None:
    fake_host.fail_create_channel = True

    response = client.post("/twilio/conversation", data=MESSAGE)

    assert response.status_code == 500
    assert fake_host.posts == []


def test_media_is_attached(client, fake_host, fake_twilio) -> None:
    fake_twilio.media["ME1"] = b"jpeg"
    media = json.dumps([{"Sid": "ME1", "Filename": "cat.jpg", "ContentType": "image/jpeg"}])

    response = client.post("/twilio/conversation", data={**MESSAGE, "Media": media})

    assert response.status_code == 200
    assert fake_host.posts[0].file_ids == ["file-1"]
