from mmtwilio.bindings.store import LEGACY_MIGRATION_MARKER
from mmtwilio.snapshot import SnapshotHolder


def test_healthz(client) -> None:
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"ok": True}


def test_readyz_reports_configuration(client, runtime, memory_kv) -> None:
    ready = client.get("/readyz")
    assert ready.status_code == 200
    assert ready.json()["legacy_migrated"] is False

    memory_kv.set(LEGACY_MIGRATION_MARKER, b"done")
    assert client.get("/readyz").json()["legacy_migrated"] is True

    runtime.snapshots = SnapshotHolder()
    not_ready = client.get("/readyz")
    assert not_ready.status_code == 503
    assert not_ready.json()["configured"] is False


def test_admin_reload_requires_token(client) -> None:
    assert client.post("/admin/reload").status_code == 401
    assert (
        client.post("/admin/reload", headers={"Authorization": "Bearer wrong"}).status_code == 401
    )


def test_admin_reload_swaps_snapshot(client, runtime, fake_host) -> None:
    response = client.post("/admin/reload", headers={"Authorization": "Bearer admin-token"})

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["team_id"] == "team-id"
    assert runtime.snapshots.current().bot_user_id == body["bot_user_id"]


def test_admin_reload_reports_missing_team(client, runtime, fake_host) -> None:
    fake_host.teams.clear()

    response = client.post("/admin/reload", headers={"Authorization": "Bearer admin-token"})

    assert response.status_code == 502
    assert runtime.snapshots.current().team_id == "team-id"
