from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import pytest
import pytest_asyncio

from runchecks.common.database.database import DatabaseManager
from runchecks.common.database.repositories import GoogleOAuthRepository, UserRepository
from runchecks.common.errors import ConfigurationError, OAuthRefreshError
from runchecks.common.models.db_models import GoogleOAuth, User
from runchecks.integrations.google_oauth import GoogleOAuthClient, GoogleOAuthService, OAuthTokens

NOW = datetime(2025, 1, 15, 18, 0, tzinfo=timezone.utc)


class _FakeResp:
    def __init__(self, status_code: int, payload: dict, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text or json.dumps(payload)

    def json(self):
        return self._payload


def _client() -> GoogleOAuthClient:
    return GoogleOAuthClient(
        client_id="cid",
        client_secret="secret",
        redirect_uri="http://localhost:8000/api/google/oauth/callback",
        clock=lambda: NOW,
    )


def _record(expires_in: timedelta, *, is_active: bool = True) -> GoogleOAuth:
    return GoogleOAuth(
        user_id="u1",
        access_token="old-access",
        refresh_token="refresh-1",
        token_expires_at=NOW + expires_in,
        google_email="drive@example.org",
        google_drive_folder_id="folder-1",
        google_sheets_id="catalog-1",
        is_active=is_active,
    )


def test_authorization_url_requests_offline_consent() -> None:
    url = _client().authorization_url("nonce-1")
    query = parse_qs(urlparse(url).query)

    assert query["access_type"] == ["offline"]
    assert query["prompt"] == ["consent"]
    assert query["state"] == ["nonce-1"]
    assert "https://www.googleapis.com/auth/drive.file" in query["scope"][0]


def test_refresh_keeps_refresh_token_when_google_omits_it(monkeypatch) -> None:
    captured = {}

    def fake_request(method, url, headers=None, data=None, timeout=None):
        captured["data"] = data
        return _FakeResp(200, {"access_token": "new-access", "expires_in": 1800})

    monkeypatch.setattr("requests.request", fake_request)

    tokens = _client().refresh("refresh-1")

    assert captured["data"]["grant_type"] == "refresh_token"
    assert tokens.access_token == "new-access"
    assert tokens.refresh_token == "refresh-1"
    assert tokens.expires_at == NOW + timedelta(seconds=1800)


def test_exchange_code_requires_both_tokens(monkeypatch) -> None:
    monkeypatch.setattr(
        "requests.request",
        lambda method, url, headers=None, data=None, timeout=None: _FakeResp(200, {"access_token": "a"}),
    )
    with pytest.raises(RuntimeError, match="Missing tokens"):
        _client().exchange_code("code-1")


def test_http_error_raises(monkeypatch) -> None:
    monkeypatch.setattr(
        "requests.request",
        lambda method, url, headers=None, data=None, timeout=None: _FakeResp(400, {"error": "invalid_grant"}),
    )
    with pytest.raises(RuntimeError, match="HTTP 400"):
        _client().refresh("refresh-1")


def test_client_from_config_requires_credentials() -> None:
    class _Cfg:
        GOOGLE_CLIENT_ID = ""
        GOOGLE_CLIENT_SECRET = ""

    with pytest.raises(ConfigurationError):
        GoogleOAuthClient.from_config(_Cfg())


@pytest_asyncio.fixture
async def db(tmp_path):
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'oauth.db'}")
    await manager.init()
    yield manager
    await manager.dispose()


@pytest.mark.asyncio
async def test_token_with_time_left_is_not_refreshed(monkeypatch, db) -> None:
    client = _client()
    monkeypatch.setattr(client, "refresh", lambda token: pytest.fail("should not refresh"))
    service = GoogleOAuthService(client=client, db=db, clock=lambda: NOW)
    record = _record(timedelta(minutes=30))

    tokens = await service.refresh_token_if_needed(record)

    assert tokens.access_token == "old-access"


@pytest.mark.asyncio
async def test_expiring_token_is_refreshed_in_place(monkeypatch, db) -> None:
    client = _client()
    monkeypatch.setattr(
        client,
        "refresh",
        lambda token: OAuthTokens(access_token="new-access", refresh_token=token, expires_at=NOW + timedelta(hours=1)),
    )
    service = GoogleOAuthService(client=client, db=db, clock=lambda: NOW)
    record = _record(timedelta(minutes=4))

    await service.refresh_token_if_needed(record)

    assert record.access_token == "new-access"
    assert record.token_expires_at == NOW + timedelta(hours=1)
    assert record.last_tested_at == NOW


@pytest.mark.asyncio
async def test_refresh_failure_raises_oauth_refresh_error(monkeypatch, db) -> None:
    client = _client()

    def broken(token):
        raise RuntimeError("invalid_grant")

    monkeypatch.setattr(client, "refresh", broken)
    service = GoogleOAuthService(client=client, db=db, clock=lambda: NOW)

    with pytest.raises(OAuthRefreshError, match="re-authenticate"):
        await service.refresh_token_if_needed(_record(timedelta(minutes=-1)))


async def _seed(db: DatabaseManager, record: GoogleOAuth) -> None:
    async with db.session() as session:
        await UserRepository(session).add(User(id="u1", email="admin@example.org", name="Admin", is_admin=True))
        await GoogleOAuthRepository(session).add(record)


@pytest.mark.asyncio
async def test_get_access_reactivates_record(monkeypatch, db) -> None:
    await _seed(db, _record(timedelta(hours=1), is_active=False))
    service = GoogleOAuthService(client=_client(), db=db, clock=lambda: NOW)

    access = await service.get_access()

    assert access.folder_id == "folder-1"
    assert access.sheets_id == "catalog-1"
    assert access.credentials.token == "old-access"
    async with db.session() as session:
        assert (await GoogleOAuthRepository(session).get_latest()).is_active is True


@pytest.mark.asyncio
async def test_get_access_failure_marks_record_inactive(monkeypatch, db) -> None:
    await _seed(db, _record(timedelta(minutes=-5)))
    client = _client()

    def broken(token):
        raise RuntimeError("invalid_grant")

    monkeypatch.setattr(client, "refresh", broken)
    service = GoogleOAuthService(client=client, db=db, clock=lambda: NOW)

    with pytest.raises(OAuthRefreshError):
        await service.get_access()

    async with db.session() as session:
        assert (await GoogleOAuthRepository(session).get_latest()).is_active is False


@pytest.mark.asyncio
async def test_get_access_without_link_is_configuration_error(db) -> None:
    service = GoogleOAuthService(client=_client(), db=db, clock=lambda: NOW)

    with pytest.raises(ConfigurationError):
        await service.get_access()


@pytest.mark.asyncio
async def test_validate_marks_invalid_token_inactive(monkeypatch, db) -> None:
    await _seed(db, _record(timedelta(hours=1)))
    client = _client()

    def rejected(access_token):
        raise RuntimeError("HTTP 401")

    monkeypatch.setattr(client, "fetch_user_email", rejected)
    service = GoogleOAuthService(client=client, db=db, clock=lambda: NOW)

    await service.validate_oauth_token()

    async with db.session() as session:
        assert (await GoogleOAuthRepository(session).get_latest()).is_active is False


@pytest.mark.asyncio
async def test_schedule_next_refresh_tracks_active_record(db) -> None:
    service = GoogleOAuthService(client=_client(), db=db, clock=lambda: NOW)

    await service.schedule_next_refresh()
    assert not service.refresh_pending

    await _seed(db, _record(timedelta(hours=1)))
    await service.schedule_next_refresh()
    try:
        assert service.refresh_pending
    finally:
        service.shutdown()
    assert not service.refresh_pending
