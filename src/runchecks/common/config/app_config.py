"""Application configuration.

Settings come from two places:
- Environment variables (``.env`` is loaded with python-dotenv; blank
  placeholders in ``.env.example`` never override real values).
- A YAML file (``RUNCHECKS_CONFIG_FILE``, default ``config.yaml``) holding the
  run catalog, superusers, patroller names and feature flags.

Environment variables win over YAML keys where both exist (``RUN_PROVIDER``,
``TIMEZONE``).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from dotenv import dotenv_values, load_dotenv

from runchecks.common.errors import ConfigurationError

logger = logging.getLogger(__name__)

load_dotenv(override=False)

# Convenience: allow local runs with only `.env.example` filled.
if not os.environ.get("SESSION_SECRET"):
    example_path = os.path.abspath(".env.example")
    if os.path.exists(example_path):
        for k, v in (dotenv_values(example_path) or {}).items():
            if not k or v is None or v == "":
                continue
            if not os.environ.get(k):
                os.environ[k] = v


RUN_PROVIDERS = ("config", "sheets")


@dataclass(frozen=True, slots=True)
class Superuser:
    email: str
    name: str


def _env_bool(env: dict[str, str], name: str, default: bool = False) -> bool:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def load_yaml_config(path: str | os.PathLike[str]) -> dict[str, Any]:
    """Read the YAML config file; a missing file yields an empty mapping."""

    p = Path(path)
    if not p.exists():
        logger.warning("Config file %s not found; using defaults", p)
        return {}
    with open(p, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {p} must contain a mapping")
    return data


class AppConfig:
    """Typed view over environment variables and the YAML config file."""

    def __init__(self, *, env: dict[str, str] | None = None, yaml_data: dict[str, Any] | None = None):
        env = dict(os.environ) if env is None else env
        if yaml_data is None:
            yaml_data = load_yaml_config(env.get("RUNCHECKS_CONFIG_FILE", "config.yaml"))

        self.APP_ENV = env.get("APP_ENV", "development")
        self.APP_URL = env.get("APP_URL", "http://localhost:8000").rstrip("/")
        self.PORT = int(env.get("PORT", "8000"))
        self.DATABASE_URL = env.get("DATABASE_URL", "sqlite+aiosqlite:///./data/runchecks.db")
        self.SESSION_SECRET = env.get("SESSION_SECRET", "dev-session-secret")
        self.LOG_LEVEL = env.get("LOG_LEVEL", "INFO" if self.APP_ENV == "production" else "DEBUG")

        self.SMTP_HOST = env.get("SMTP_HOST", "")
        self.SMTP_PORT = int(env.get("SMTP_PORT", "587"))
        self.SMTP_USER = env.get("SMTP_USER", "")
        self.SMTP_PASS = env.get("SMTP_PASS", "")
        self.EMAIL_FROM = env.get("EMAIL_FROM", "")

        self.GOOGLE_SHEETS_ID = env.get("GOOGLE_SHEETS_ID", "")
        self.GOOGLE_DRIVE_FOLDER_ID = env.get("GOOGLE_DRIVE_FOLDER_ID", "")
        self.GOOGLE_SA_FILE = env.get("GOOGLE_SA_FILE", "")
        self.GOOGLE_SERVICE_ACCOUNT_EMAIL = env.get("GOOGLE_SERVICE_ACCOUNT_EMAIL", "")
        self.GOOGLE_PRIVATE_KEY = env.get("GOOGLE_PRIVATE_KEY", "")
        self.GOOGLE_CLIENT_ID = env.get("GOOGLE_CLIENT_ID", "")
        self.GOOGLE_CLIENT_SECRET = env.get("GOOGLE_CLIENT_SECRET", "")
        self.GOOGLE_HTTP_TIMEOUT_SECONDS = int(env.get("GOOGLE_HTTP_TIMEOUT_SECONDS", "30"))

        self.RUN_PROVIDER = env.get("RUN_PROVIDER") or yaml_data.get("run_provider") or "config"
        if self.RUN_PROVIDER not in RUN_PROVIDERS:
            raise ConfigurationError(f"Unknown run provider: {self.RUN_PROVIDER}")

        self.TIMEZONE = env.get("TIMEZONE") or yaml_data.get("timezone") or "America/Los_Angeles"
        try:
            self.tz = ZoneInfo(self.TIMEZONE)
        except ZoneInfoNotFoundError as e:
            raise ConfigurationError(f"Unknown timezone: {self.TIMEZONE}") from e

        self.run_sections: list[dict[str, Any]] = list(yaml_data.get("runs") or [])
        self.superusers = [
            Superuser(email=str(su["email"]).strip().lower(), name=str(su.get("name") or su["email"]))
            for su in (yaml_data.get("superusers") or [])
            if su and su.get("email")
        ]
        self.patrollers = [str(p) for p in (yaml_data.get("patrollers") or []) if p]
        self.ENABLE_LOGIN_WITHOUT_PASSWORD = _env_bool(
            env, "ENABLE_LOGIN_WITHOUT_PASSWORD", bool(yaml_data.get("enable_login_without_password", False))
        )
        self.DISABLE_MAGIC_LINK = _env_bool(env, "DISABLE_MAGIC_LINK", bool(yaml_data.get("disable_magic_link", False)))

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    @property
    def use_google_sheets(self) -> bool:
        """Sheets-backed catalog and check persistence are production-only."""
        return self.RUN_PROVIDER == "sheets" and self.is_production

    @property
    def has_service_account(self) -> bool:
        return bool(self.GOOGLE_SA_FILE or (self.GOOGLE_SERVICE_ACCOUNT_EMAIL and self.GOOGLE_PRIVATE_KEY))

    @property
    def oauth_redirect_uri(self) -> str:
        return f"{self.APP_URL}/api/google/oauth/callback"

    def is_superuser(self, email: str | None) -> bool:
        if not email:
            return False
        email = email.strip().lower()
        return any(su.email == email for su in self.superusers)


config = AppConfig()
