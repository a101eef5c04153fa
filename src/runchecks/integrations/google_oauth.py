"""Google OAuth for the admin-linked Drive account.

Purpose
- Provide a small, testable wrapper for the OAuth endpoints (authorize URL,
  code exchange, refresh, userinfo).
- Keep token handling (load/save/refresh) in one place, backed by the
  ``google_oauth`` table.
- Keep the access token alive: a scheduled validation runs 10 minutes before
  expiry and reschedules itself from the new expiry.

This module is intentionally independent of FastAPI.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from urllib.parse import urlencode

import requests

from runchecks.common.database.database import DatabaseManager
from runchecks.common.database.repositories import GoogleOAuthRepository
from runchecks.common.errors import ConfigurationError, OAuthRefreshError
from runchecks.common.models.db_models import GoogleOAuth, as_utc
from runchecks.integrations.google_sheets import GoogleAccess
from runchecks.services.scheduler import ScheduledTask

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
OAUTH_SCOPES = [
    "https://www.googleapis.com/auth/drive.file",
    "https://www.googleapis.com/auth/userinfo.email",
]

REFRESH_MARGIN = timedelta(minutes=5)
SCHEDULE_LEAD = timedelta(minutes=10)
SCHEDULE_RETRY_SECONDS = 5 * 60
STARTUP_DELAY_SECONDS = 10.0
DEFAULT_TOKEN_LIFETIME_SECONDS = 3600


@dataclass(slots=True)
class OAuthTokens:
    access_token: str
    refresh_token: str
    expires_at: datetime


class GoogleOAuthClient:
    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        timeout_seconds: int = 30,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._timeout_seconds = timeout_seconds
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_config(cls, config: Any) -> "GoogleOAuthClient":
        if not config.GOOGLE_CLIENT_ID or not config.GOOGLE_CLIENT_SECRET:
            raise ConfigurationError("Missing GOOGLE_CLIENT_ID or GOOGLE_CLIENT_SECRET")
        return cls(
            client_id=config.GOOGLE_CLIENT_ID,
            client_secret=config.GOOGLE_CLIENT_SECRET,
            redirect_uri=config.oauth_redirect_uri,
            timeout_seconds=config.GOOGLE_HTTP_TIMEOUT_SECONDS,
        )

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self._client_id,
            "redirect_uri": self._redirect_uri,
            "response_type": "code",
            "scope": " ".join(OAUTH_SCOPES),
            "access_type": "offline",
            # Force the consent screen so Google returns a refresh token.
            "prompt": "consent",
            "state": state,
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    def _expiry_from(self, payload: dict[str, Any]) -> datetime:
        expires_in = int(payload.get("expires_in") or DEFAULT_TOKEN_LIFETIME_SECONDS)
        return self._clock() + timedelta(seconds=expires_in)

    def _request_json(
        self,
        method: str,
        url: str,
        *,
        data: dict[str, str] | None = None,
        bearer_token: str | None = None,
    ) -> dict[str, Any]:
        headers = {"Accept": "application/json"}
        if bearer_token:
            headers["Authorization"] = f"Bearer {bearer_token}"
        resp = requests.request(
            method,
            url,
            headers=headers,
            data=data,
            timeout=self._timeout_seconds,
        )
        if resp.status_code >= 400:
            raise RuntimeError(f"HTTP {resp.status_code}: {resp.text}")
        return resp.json()

    def exchange_code(self, code: str) -> OAuthTokens:
        payload = self._request_json(
            "POST",
            GOOGLE_TOKEN_URL,
            data={
                "code": code,
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "redirect_uri": self._redirect_uri,
                "grant_type": "authorization_code",
            },
        )
        if not payload.get("access_token") or not payload.get("refresh_token"):
            raise RuntimeError("Missing tokens from Google OAuth")
        return OAuthTokens(
            access_token=payload["access_token"],
            refresh_token=payload["refresh_token"],
            expires_at=self._expiry_from(payload),
        )

    def refresh(self, refresh_token: str) -> OAuthTokens:
        payload = self._request_json(
            "POST",
            GOOGLE_TOKEN_URL,
            data={
                "refresh_token": refresh_token,
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "grant_type": "refresh_token",
            },
        )
        if not payload.get("access_token"):
            raise RuntimeError("Failed to get new access token")
        return OAuthTokens(
            access_token=payload["access_token"],
            # Google usually omits the refresh token on refresh; keep the old one.
            refresh_token=payload.get("refresh_token") or refresh_token,
            expires_at=self._expiry_from(payload),
        )

    def fetch_user_email(self, access_token: str) -> str:
        payload = self._request_json("GET", GOOGLE_USERINFO_URL, bearer_token=access_token)
        return payload.get("email") or ""

    def build_credentials(self, tokens: OAuthTokens) -> Any:
        from google.oauth2.credentials import Credentials

        return Credentials(
            token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_uri=GOOGLE_TOKEN_URL,
            client_id=self._client_id,
            client_secret=self._client_secret,
            scopes=OAUTH_SCOPES,
            # google-auth compares against a naive UTC datetime.
            expiry=tokens.expires_at.astimezone(timezone.utc).replace(tzinfo=None),
        )


class GoogleOAuthService:
    """Token lifecycle for the linked account plus the refresh scheduler."""

    def __init__(
        self,
        *,
        client: GoogleOAuthClient,
        db: DatabaseManager,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._client = client
        self._db = db
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._refresh_task = ScheduledTask("oauth-refresh")

    @property
    def client(self) -> GoogleOAuthClient:
        return self._client

    @property
    def refresh_pending(self) -> bool:
        return self._refresh_task.pending

    async def refresh_token_if_needed(self, record: GoogleOAuth) -> OAuthTokens:
        """Refresh when the token expires within 5 minutes; ``record`` is updated in place."""

        expires_at = as_utc(record.token_expires_at)
        if expires_at > self._clock() + REFRESH_MARGIN:
            return OAuthTokens(
                access_token=record.access_token,
                refresh_token=record.refresh_token,
                expires_at=expires_at,
            )

        logger.info(
            "Refreshing OAuth token (expires soon or expired) for user %s, expires at %s",
            record.user_id,
            expires_at.isoformat(),
        )
        try:
            tokens = await asyncio.to_thread(self._client.refresh, record.refresh_token)
        except Exception as e:
            logger.error("Failed to refresh OAuth token: %s", e)
            raise OAuthRefreshError("OAuth token refresh failed. User needs to re-authenticate.") from e

        record.access_token = tokens.access_token
        record.refresh_token = tokens.refresh_token
        record.token_expires_at = tokens.expires_at
        record.last_tested_at = self._clock()
        logger.info("OAuth token refreshed successfully for user %s", record.user_id)
        return tokens

    async def test_token(self, access_token: str) -> bool:
        try:
            await asyncio.to_thread(self._client.fetch_user_email, access_token)
            return True
        except Exception as e:
            logger.error("OAuth token test failed: %s", e)
            return False

    async def mark_inactive(self) -> None:
        try:
            async with self._db.session() as session:
                record = await GoogleOAuthRepository(session).get_latest()
                if record is not None:
                    record.is_active = False
        except Exception as e:
            logger.error("Failed to mark OAuth as inactive: %s", e)

    async def get_access(self) -> GoogleAccess:
        """Refreshed credentials for the active linked account (store credentials source)."""

        try:
            async with self._db.session() as session:
                # An inactive record may recover here once a refresh succeeds again.
                record = await GoogleOAuthRepository(session).get_latest()
                if record is None:
                    raise ConfigurationError(
                        "Google OAuth not configured. Please link Google Drive in admin settings."
                    )
                tokens = await self.refresh_token_if_needed(record)
                record.is_active = True
                access = GoogleAccess(
                    credentials=self._client.build_credentials(tokens),
                    folder_id=record.google_drive_folder_id,
                    sheets_id=record.google_sheets_id,
                )
        except Exception as e:
            logger.error("Failed to get authenticated sheets client: %s", e)
            if not isinstance(e, ConfigurationError):
                await self.mark_inactive()
            raise
        return access

    async def validate_oauth_token(self) -> None:
        """Refresh if needed, test with a userinfo call, and record the outcome."""

        try:
            async with self._db.session() as session:
                record = await GoogleOAuthRepository(session).get_latest()
                if record is None:
                    logger.debug("No OAuth configuration to validate")
                    return
                tokens = await self.refresh_token_if_needed(record)
                is_valid = await self.test_token(tokens.access_token)
                record.is_active = is_valid
                if is_valid:
                    record.last_tested_at = self._clock()
                    logger.info(
                        "OAuth token validation successful for user %s, expires at %s",
                        record.user_id,
                        tokens.expires_at.isoformat(),
                    )
                else:
                    logger.error("OAuth token validation failed - marking as inactive (user %s)", record.user_id)
        except Exception as e:
            logger.error("Error during OAuth validation: %s", e)
            await self.mark_inactive()

    async def schedule_next_refresh(self) -> None:
        try:
            async with self._db.session() as session:
                record = await GoogleOAuthRepository(session).get_active()
                expires_at = as_utc(record.token_expires_at) if record is not None else None
        except Exception as e:
            logger.error("Error scheduling OAuth refresh: %s", e)
            self._refresh_task.schedule(SCHEDULE_RETRY_SECONDS, self.schedule_next_refresh)
            return

        if expires_at is None:
            logger.debug("No active OAuth configuration to schedule refresh for")
            self._refresh_task.cancel()
            return

        now = self._clock()
        refresh_at = expires_at - SCHEDULE_LEAD
        delay = (refresh_at - now).total_seconds()
        if delay <= 0:
            # Inside the lead window: wait until the refresh margin so the
            # validation actually refreshes instead of looping.
            delay = max((expires_at - REFRESH_MARGIN - now).total_seconds(), 0.0)
            logger.info(
                "Token expires soon, refreshing in %.0f seconds (expires at %s)", delay, expires_at.isoformat()
            )
        else:
            logger.info(
                "Scheduled OAuth token refresh at %s (expires at %s)",
                refresh_at.isoformat(),
                expires_at.isoformat(),
            )
        self._refresh_task.schedule(delay, self._run_scheduled_refresh)

    async def _run_scheduled_refresh(self) -> None:
        logger.info("Running scheduled OAuth token refresh")
        await self.validate_oauth_token()
        await self.schedule_next_refresh()

    def start(self, *, startup_delay: float = STARTUP_DELAY_SECONDS) -> None:
        logger.info("Starting OAuth validation scheduler")
        self._refresh_task.schedule(startup_delay, self._run_scheduled_refresh)

    def shutdown(self) -> None:
        self._refresh_task.cancel()
