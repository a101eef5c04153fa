"""Run checks API: auth gate, submission, status view and live fan-out."""

from __future__ import annotations

import json
import time

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from runchecks.app import create_app
from runchecks.common.config.app_config import AppConfig
from runchecks.common.errors import CatalogFormatError

YAML = {
    "run_provider": "config",
    "timezone": "America/Los_Angeles",
    "superusers": [{"email": "director@example.org", "name": "Patrol Director"}],
    "patrollers": ["Alex Rivera", "Patrol Director"],
    "runs": [
        {"section": "Front Side", "runs": ["Bear Claw", "Grizzly"]},
        {"section": "Back Side", "runs": ["Snowshoe"]},
    ],
}


def _config(tmp_path, **env) -> AppConfig:
    base = {
        "DATABASE_URL": f"sqlite+aiosqlite:///{tmp_path / 'api.db'}",
        "SESSION_SECRET": "test-secret",
        "ENABLE_LOGIN_WITHOUT_PASSWORD": "true",
        "DISABLE_MAGIC_LINK": "true",
    }
    base.update(env)
    return AppConfig(env=base, yaml_data=YAML)


@pytest_asyncio.fixture
async def app(tmp_path):
    application = create_app(_config(tmp_path))
    async with application.router.lifespan_context(application):
        yield application


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


async def _login(client: AsyncClient, email: str = "director@example.org") -> None:
    r = await client.post("/auth/dev-login", json={"email": email})
    assert r.status_code == 200, r.text


def _submission(*names: str, offset_seconds: int = 0) -> dict:
    now = int(time.time()) + offset_seconds
    return {
        "checks": [
            {"runName": name, "section": "Front Side", "patroller": "Alex Rivera", "checkTime": now}
            for name in names
        ]
    }


class _FakeSocket:
    def __init__(self) -> None:
        self.sent: list[str] = []

    async def send_text(self, payload: str) -> None:
        self.sent.append(payload)

    async def close(self) -> None:
        return None


@pytest.mark.asyncio
async def test_health(client) -> None:
    r = await client.get("/health")
    assert r.json() == {"status": "ok", "provider": "config"}


@pytest.mark.asyncio
@pytest.mark.parametrize("path", ["/api/run_status", "/api/runs", "/api/runchecks/today", "/api/patrollers"])
async def test_endpoints_require_a_session(client, path) -> None:
    r = await client.get(path)
    assert r.status_code == 401
    assert r.json()["detail"] == "Authentication required"


@pytest.mark.asyncio
async def test_runs_are_listed_in_catalog_order(client) -> None:
    await _login(client)

    r = await client.get("/api/runs")

    assert r.status_code == 200
    assert [run["name"] for run in r.json()["runs"]] == ["Bear Claw", "Grizzly", "Snowshoe"]


@pytest.mark.asyncio
async def test_submit_records_checks_and_broadcasts(app, client) -> None:
    await _login(client)
    viewer = _FakeSocket()
    app.state.connections.add_connection("viewer", viewer)

    r = await client.post("/api/runchecks", json=_submission("Bear Claw", "Grizzly"))

    assert r.status_code == 200, r.text
    body = r.json()
    assert body["googleDriveSaved"] is False
    assert [c["runName"] for c in body["checks"]] == ["Bear Claw", "Grizzly"]
    assert len({c["id"] for c in body["checks"]}) == 2

    event = json.loads(viewer.sent[0])
    assert event["type"] == "runcheck:new"
    assert [c["id"] for c in event["data"]["checks"]] == [c["id"] for c in body["checks"]]

    today = (await client.get("/api/runchecks/today")).json()["checks"]
    assert [c["id"] for c in today] == [c["id"] for c in body["checks"]]


@pytest.mark.asyncio
async def test_run_status_combines_runs_checks_and_freshness(client) -> None:
    await _login(client)
    await client.post("/api/runchecks", json=_submission("Bear Claw", offset_seconds=-90 * 60))

    r = await client.get("/api/run_status")

    assert r.status_code == 200
    body = r.json()
    assert body["timezone"] == "America/Los_Angeles"
    assert body["patrollers"] == ["Alex Rivera", "Patrol Director"]
    assert len(body["checks"]) == 1
    statuses = {s["name"]: s for s in body["statuses"]}
    assert statuses["Bear Claw"]["tier"] == "aging"
    assert statuses["Bear Claw"]["color"] == "yellow"
    assert statuses["Bear Claw"]["lastPatroller"] == "Alex Rivera"
    assert statuses["Grizzly"]["tier"] == "stale"
    assert statuses["Grizzly"]["timeSince"] == "Never"
    assert body["notifications"] == []


@pytest.mark.asyncio
async def test_future_check_rejects_whole_batch(client) -> None:
    await _login(client)
    payload = _submission("Bear Claw")
    payload["checks"].append(
        {"runName": "Grizzly", "section": "Front Side", "patroller": "Alex", "checkTime": int(time.time()) + 16 * 60}
    )

    r = await client.post("/api/runchecks", json=payload)

    assert r.status_code == 400
    assert r.json()["detail"] == "Check time cannot be more than 15 minutes in the future"
    assert (await client.get("/api/runchecks/today")).json()["checks"] == []


@pytest.mark.asyncio
async def test_missing_fields_and_malformed_bodies_are_400(client) -> None:
    await _login(client)

    r = await client.post("/api/runchecks", json={"checks": []})
    assert r.status_code == 400
    assert r.json()["detail"] == "Checks array is required"

    r = await client.post("/api/runchecks", json={"checks": [{"runName": "Bear Claw"}]})
    assert r.status_code == 400
    assert r.json()["detail"] == "Missing required fields"

    r = await client.post("/api/runchecks", json={"checks": "Bear Claw"})
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_sheets_provider_outside_production_reports_memory_only(tmp_path) -> None:
    application = create_app(_config(tmp_path, RUN_PROVIDER="sheets"))
    async with application.router.lifespan_context(application):
        async with AsyncClient(transport=ASGITransport(app=application), base_url="http://test") as c:
            await _login(c)
            body = (await c.get("/api/run_status")).json()

    assert [n["type"] for n in body["notifications"]] == ["info"]
    # Falls back to the configured runs.
    assert len(body["runs"]) == 3


@pytest.mark.asyncio
async def test_misconfigured_run_catalog_aborts_startup(tmp_path) -> None:
    bad = dict(YAML, runs=[{"runs": ["Nameless"]}])
    application = create_app(
        AppConfig(env={"DATABASE_URL": f"sqlite+aiosqlite:///{tmp_path / 'bad.db'}", "SESSION_SECRET": "s"}, yaml_data=bad)
    )
    with pytest.raises(CatalogFormatError):
        async with application.router.lifespan_context(application):
            pass


@pytest.mark.asyncio
async def test_oauth_only_production_starts_before_drive_is_linked(tmp_path) -> None:
    env = {
        "APP_ENV": "production",
        "RUN_PROVIDER": "sheets",
        "GOOGLE_CLIENT_ID": "client-id",
        "GOOGLE_CLIENT_SECRET": "client-secret",
        "DATABASE_URL": f"sqlite+aiosqlite:///{tmp_path / 'oauth.db'}",
        "SESSION_SECRET": "s",
    }
    application = create_app(AppConfig(env=env, yaml_data=YAML))
    async with application.router.lifespan_context(application):
        assert application.state.oauth_service is not None
        assert application.state.store is not None
        # Nothing linked yet: the catalog stays empty until refresh-runs.
        assert application.state.run_provider.get_runs() == []
        assert application.state.cache.get_checks() == []
        async with AsyncClient(transport=ASGITransport(app=application), base_url="http://test") as c:
            r = await c.get("/health")
    assert r.status_code == 200
