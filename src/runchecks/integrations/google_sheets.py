"""Google Sheets / Drive store for run checks and the run catalog.

Goals
- Provide a small, testable integration wrapper around the Sheets and Drive APIs.
- Keep all network calls here; keep row parsing deterministic and unit-testable.

Layout in Drive:
- One spreadsheet per day, titled ``YYYY-MM-DD`` (configured timezone), inside
  the configured folder, with a ``Run Checks`` sheet whose header row is
  ``Timestamp, Check Time, Section, Run Name, Patroller``.
- A source spreadsheet whose first sheet lists runs under ``Section`` and
  ``Run Name`` header columns.

The Google client library is synchronous; every call runs in a worker thread
so the event loop keeps serving requests.

This intentionally does not depend on FastAPI.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Any, Callable, Protocol

from runchecks.common.errors import CatalogFormatError, ConfigurationError, ExternalStoreError
from runchecks.common.models.messages import Run, RunCheck
from runchecks.services.scheduler import local_date_string

logger = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive",
]
SPREADSHEET_MIME_TYPE = "application/vnd.google-apps.spreadsheet"
CHECKS_SHEET_TITLE = "Run Checks"
CHECKS_HEADER = ["Timestamp", "Check Time", "Section", "Run Name", "Patroller"]
CATALOG_RANGE = "A:Z"
CATALOG_COLUMNS = ("Section", "Run Name")


def _norm(s: str | None) -> str:
    return (s or "").strip().lower()


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _cell(row: list[str], index: int) -> str:
    return row[index] if index < len(row) and row[index] is not None else ""


# ---------------------------------------------------------------------------
# Row parsing
# ---------------------------------------------------------------------------


def detect_header_row(rows: list[list[str]], *, header_search_rows: int = 10) -> int | None:
    """Index of the first non-empty row within the first ``header_search_rows``."""

    for i, r in enumerate(rows[: max(header_search_rows, 1)]):
        if any((c or "").strip() for c in r):
            return i
    return None


def find_header_columns(header: list[str], names: tuple[str, ...]) -> dict[str, int]:
    """Map each wanted column name to its index in ``header``.

    Matching is case-insensitive after trimming. A missing column is a
    configuration problem with the sheet, not a transient fault.
    """

    normalized = [_norm(h) for h in header]
    out: dict[str, int] = {}
    missing: list[str] = []
    for name in names:
        try:
            out[name] = normalized.index(_norm(name))
        except ValueError:
            missing.append(name)
    if missing:
        raise CatalogFormatError(
            f"Run catalog sheet is missing required column(s): {', '.join(missing)}"
        )
    return out


def rows_to_runs(rows: list[list[str]]) -> list[Run]:
    """Convert catalog sheet rows into runs, skipping rows with a blank field."""

    header_row_index = detect_header_row(rows)
    if header_row_index is None:
        raise CatalogFormatError("Run catalog sheet is empty; expected a header row")

    columns = find_header_columns(rows[header_row_index], CATALOG_COLUMNS)
    section_col = columns["Section"]
    name_col = columns["Run Name"]

    runs: list[Run] = []
    for row in rows[header_row_index + 1 :]:
        section = _cell(row, section_col).strip()
        name = _cell(row, name_col).strip()
        if not section or not name:
            continue
        runs.append(Run(name=name, section=section))
    return runs


def rows_to_run_checks(rows: list[list[str]], *, date_key: str) -> list[RunCheck]:
    """Convert data rows of a daily ``Run Checks`` sheet into run checks.

    Columns: Timestamp, Check Time, Section, Run Name, Patroller. The check
    time falls back to the timestamp when blank; rows without any parseable
    time are skipped.
    """

    checks: list[RunCheck] = []
    for index, row in enumerate(rows):
        created_at = _parse_timestamp(_cell(row, 0))
        check_time = _parse_timestamp(_cell(row, 1)) or created_at
        if check_time is None:
            logger.warning("Skipping run check row %d with no parseable time: %s", index + 2, row)
            continue
        checks.append(
            RunCheck(
                id=f"{date_key}-{index}",
                run_name=_cell(row, 3),
                section=_cell(row, 2),
                patroller=_cell(row, 4),
                check_time=check_time,
                created_at=created_at or check_time,
            )
        )
    return checks


def run_check_to_row(check: RunCheck) -> list[str]:
    return [
        check.created_at.astimezone(timezone.utc).isoformat(),
        check.check_time.astimezone(timezone.utc).isoformat(),
        check.section,
        check.run_name,
        check.patroller,
    ]


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class GoogleAccess:
    """Credentials plus the Drive folder / source sheet they should be used with."""

    credentials: Any
    folder_id: str | None
    sheets_id: str | None


class CredentialsSource(Protocol):
    async def get_access(self) -> GoogleAccess: ...


class ServiceAccountSource:
    """Service-account credentials from a JSON key file or an email + private key pair."""

    def __init__(
        self,
        *,
        folder_id: str | None,
        sheets_id: str | None,
        service_account_path: str | None = None,
        client_email: str | None = None,
        private_key: str | None = None,
    ) -> None:
        self._folder_id = folder_id
        self._sheets_id = sheets_id
        self._service_account_path = os.path.expanduser(service_account_path) if service_account_path else None
        self._client_email = client_email
        self._private_key = private_key
        self._credentials: Any = None

    @classmethod
    def from_config(cls, config: Any) -> "ServiceAccountSource":
        if not config.GOOGLE_SHEETS_ID or not config.GOOGLE_DRIVE_FOLDER_ID or not config.has_service_account:
            logger.error(
                "Google Sheets/Drive credentials not configured: %s",
                {
                    "hasGoogleSheetsId": bool(config.GOOGLE_SHEETS_ID),
                    "hasGoogleDriveFolderId": bool(config.GOOGLE_DRIVE_FOLDER_ID),
                    "hasServiceAccount": config.has_service_account,
                },
            )
            raise ConfigurationError("Google Sheets/Drive credentials not configured")
        return cls(
            folder_id=config.GOOGLE_DRIVE_FOLDER_ID,
            sheets_id=config.GOOGLE_SHEETS_ID,
            service_account_path=config.GOOGLE_SA_FILE or None,
            client_email=config.GOOGLE_SERVICE_ACCOUNT_EMAIL or None,
            private_key=config.GOOGLE_PRIVATE_KEY or None,
        )

    def _load_credentials(self) -> Any:
        from google.oauth2 import service_account

        if self._service_account_path:
            if not os.path.exists(self._service_account_path):
                raise ConfigurationError(
                    f"Service account file not found: {self._service_account_path}"
                )
            with open(self._service_account_path, "r", encoding="utf-8") as f:
                info = json.load(f)
        else:
            info = {
                "type": "service_account",
                "client_email": self._client_email,
                # Keys pasted into env files usually carry literal "\n" sequences.
                "private_key": (self._private_key or "").replace("\\n", "\n"),
                "token_uri": "https://oauth2.googleapis.com/token",
            }
        return service_account.Credentials.from_service_account_info(info, scopes=SCOPES)

    async def get_access(self) -> GoogleAccess:
        if self._credentials is None:
            self._credentials = self._load_credentials()
        return GoogleAccess(
            credentials=self._credentials,
            folder_id=self._folder_id,
            sheets_id=self._sheets_id,
        )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


def _build_services(credentials: Any) -> tuple[Any, Any]:
    from googleapiclient.discovery import build

    sheets = build("sheets", "v4", credentials=credentials, cache_discovery=False)
    drive = build("drive", "v3", credentials=credentials, cache_discovery=False)
    return sheets, drive


class GoogleSheetsStore:
    """Row-oriented run check store keyed by today's date."""

    def __init__(
        self,
        *,
        credentials_source: CredentialsSource,
        tz: tzinfo,
        clock: Callable[[], datetime] | None = None,
        services_factory: Callable[[Any], tuple[Any, Any]] = _build_services,
    ) -> None:
        self._credentials_source = credentials_source
        self._tz = tz
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._services_factory = services_factory
        self._daily_spreadsheet_id: str | None = None
        self._daily_spreadsheet_date: str | None = None
        self._daily_spreadsheet_folder: str | None = None
        self._ensure_lock = asyncio.Lock()

    def today_key(self) -> str:
        return local_date_string(self._clock(), self._tz)

    async def _connect(self) -> tuple[Any, Any, GoogleAccess]:
        try:
            access = await self._credentials_source.get_access()
            sheets, drive = await asyncio.to_thread(self._services_factory, access.credentials)
        except ConfigurationError:
            raise
        except Exception as e:
            raise ExternalStoreError(f"Could not connect to Google APIs: {e}") from e
        return sheets, drive, access

    async def ensure_daily_spreadsheet(self) -> str:
        """Return today's spreadsheet id, creating it in the folder if needed.

        The cached id is tied to both the date and the Drive folder, so a
        relinked account or a changed folder picks up its own daily sheet.
        """

        today = self.today_key()
        async with self._ensure_lock:
            sheets, drive, access = await self._connect()
            if not access.folder_id:
                raise ConfigurationError("Google Drive folder is not configured")
            if (
                self._daily_spreadsheet_id
                and self._daily_spreadsheet_date == today
                and self._daily_spreadsheet_folder == access.folder_id
            ):
                return self._daily_spreadsheet_id

            try:
                spreadsheet_id = await asyncio.to_thread(
                    self._find_or_create_daily_sync, sheets, drive, access.folder_id, today
                )
            except Exception as e:
                logger.error("Error ensuring daily spreadsheet %s: %s", today, e)
                raise ExternalStoreError(f"Could not open daily spreadsheet {today}: {e}") from e

            self._daily_spreadsheet_id = spreadsheet_id
            self._daily_spreadsheet_date = today
            self._daily_spreadsheet_folder = access.folder_id
            return spreadsheet_id

    def _find_or_create_daily_sync(self, sheets: Any, drive: Any, folder_id: str, today: str) -> str:
        found = (
            drive.files()
            .list(
                q=(
                    f"name='{today}' and '{folder_id}' in parents "
                    f"and mimeType='{SPREADSHEET_MIME_TYPE}' and trashed=false"
                ),
                fields="files(id, name)",
                spaces="drive",
            )
            .execute(num_retries=2)
        )
        files = found.get("files") or []
        if files:
            logger.info("Found existing daily spreadsheet: %s (%s)", today, files[0]["id"])
            return files[0]["id"]

        created = (
            sheets.spreadsheets()
            .create(
                body={
                    "properties": {"title": today},
                    "sheets": [{"properties": {"title": CHECKS_SHEET_TITLE}}],
                },
                fields="spreadsheetId",
            )
            .execute(num_retries=2)
        )
        spreadsheet_id = created["spreadsheetId"]

        drive.files().update(
            fileId=spreadsheet_id,
            addParents=folder_id,
            fields="id, parents",
        ).execute(num_retries=2)

        sheets.spreadsheets().values().update(
            spreadsheetId=spreadsheet_id,
            range=f"{CHECKS_SHEET_TITLE}!A1:E1",
            valueInputOption="RAW",
            body={"values": [CHECKS_HEADER]},
        ).execute(num_retries=2)

        logger.info("Created new daily spreadsheet: %s (%s)", today, spreadsheet_id)
        return spreadsheet_id

    async def append_run_check(self, check: RunCheck) -> None:
        spreadsheet_id = await self.ensure_daily_spreadsheet()
        sheets, _, _ = await self._connect()
        body = {"values": [run_check_to_row(check)]}
        try:
            await asyncio.to_thread(
                lambda: sheets.spreadsheets()
                .values()
                .append(
                    spreadsheetId=spreadsheet_id,
                    range=f"{CHECKS_SHEET_TITLE}!A:E",
                    valueInputOption="RAW",
                    body=body,
                )
                .execute(num_retries=2)
            )
        except Exception as e:
            raise ExternalStoreError(f"Could not append run check: {e}") from e

    async def load_today_checks(self) -> list[RunCheck]:
        today = self.today_key()
        spreadsheet_id = await self.ensure_daily_spreadsheet()
        rows = await self.fetch_rows(a1_range=f"{CHECKS_SHEET_TITLE}!A2:E", spreadsheet_id=spreadsheet_id)
        return rows_to_run_checks(rows, date_key=today)

    async def fetch_rows(self, *, a1_range: str, spreadsheet_id: str | None = None) -> list[list[str]]:
        sheets, _, access = await self._connect()
        spreadsheet_id = spreadsheet_id or access.sheets_id
        if not spreadsheet_id:
            raise ConfigurationError("Run catalog spreadsheet is not configured")
        try:
            resp = await asyncio.to_thread(
                lambda: sheets.spreadsheets()
                .values()
                .get(spreadsheetId=spreadsheet_id, range=a1_range)
                .execute(num_retries=2)
            )
        except Exception as e:
            raise ExternalStoreError(f"Could not read {a1_range}: {e}") from e
        rows = resp.get("values", [])
        return rows if isinstance(rows, list) else []

    async def fetch_catalog_rows(self) -> list[list[str]]:
        return await self.fetch_rows(a1_range=CATALOG_RANGE)


# ---------------------------------------------------------------------------
# Workspace setup (OAuth linking)
# ---------------------------------------------------------------------------

WORKSPACE_FOLDER_NAME = "Bear Valley Run Checks"
CATALOG_SPREADSHEET_NAME = "Run Names"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"


@dataclass(frozen=True, slots=True)
class DriveWorkspace:
    folder_id: str
    sheets_id: str


def _find_or_create_workspace_sync(sheets: Any, drive: Any) -> DriveWorkspace:
    folders = (
        drive.files()
        .list(
            q=f"name='{WORKSPACE_FOLDER_NAME}' and mimeType='{FOLDER_MIME_TYPE}' and trashed=false",
            fields="files(id, name)",
            spaces="drive",
        )
        .execute(num_retries=2)
        .get("files")
        or []
    )
    if folders:
        folder_id = folders[0]["id"]
        logger.info("Found existing Drive folder %s", folder_id)
    else:
        folder_id = (
            drive.files()
            .create(body={"name": WORKSPACE_FOLDER_NAME, "mimeType": FOLDER_MIME_TYPE}, fields="id, name")
            .execute(num_retries=2)["id"]
        )
        logger.info("Created new Drive folder %s", folder_id)

    catalogs = (
        drive.files()
        .list(
            q=(
                f"name='{CATALOG_SPREADSHEET_NAME}' and '{folder_id}' in parents "
                f"and mimeType='{SPREADSHEET_MIME_TYPE}' and trashed=false"
            ),
            fields="files(id, name)",
            spaces="drive",
        )
        .execute(num_retries=2)
        .get("files")
        or []
    )
    if catalogs:
        sheets_id = catalogs[0]["id"]
        logger.info("Found existing Run Names spreadsheet %s", sheets_id)
        return DriveWorkspace(folder_id=folder_id, sheets_id=sheets_id)

    sheets_id = (
        drive.files()
        .create(
            body={
                "name": CATALOG_SPREADSHEET_NAME,
                "mimeType": SPREADSHEET_MIME_TYPE,
                "parents": [folder_id],
            },
            fields="id, name",
        )
        .execute(num_retries=2)["id"]
    )
    sheets.spreadsheets().values().update(
        spreadsheetId=sheets_id,
        range="A1:B1",
        valueInputOption="RAW",
        body={"values": [list(CATALOG_COLUMNS)]},
    ).execute(num_retries=2)
    logger.info("Created new Run Names spreadsheet %s with headers", sheets_id)
    return DriveWorkspace(folder_id=folder_id, sheets_id=sheets_id)


async def ensure_drive_workspace(
    credentials: Any,
    *,
    services_factory: Callable[[Any], tuple[Any, Any]] = _build_services,
) -> DriveWorkspace:
    """Find or create the run checks folder and its ``Run Names`` catalog sheet."""

    def _run() -> DriveWorkspace:
        sheets, drive = services_factory(credentials)
        return _find_or_create_workspace_sync(sheets, drive)

    return await asyncio.to_thread(_run)
