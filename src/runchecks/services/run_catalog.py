"""Run catalog providers.

Two sources, selected by ``run_provider`` in the config:
- ``config``: the ``runs`` section of the YAML config file.
- ``sheets``: the source spreadsheet's ``Section`` / ``Run Name`` columns.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional, Protocol

from runchecks.common.errors import CatalogFormatError, ConfigurationError
from runchecks.common.models.messages import Run
from runchecks.integrations.google_sheets import rows_to_runs

logger = logging.getLogger(__name__)


class CatalogRowSource(Protocol):
    async def fetch_catalog_rows(self) -> list[list[str]]: ...


def flatten_run_sections(sections: list[dict[str, Any]]) -> list[Run]:
    """``[{section, runs: [name, ...]}, ...]`` -> one Run per name, in file order."""

    runs: list[Run] = []
    for entry in sections:
        section = str(entry.get("section") or "").strip()
        if not section:
            raise CatalogFormatError(f"Run section entry without a name: {entry!r}")
        for name in entry.get("runs") or []:
            runs.append(Run(name=str(name), section=section))
    return runs


class RunProvider(ABC):
    @abstractmethod
    async def initialize(self) -> None:
        """Load the catalog."""

    @abstractmethod
    def get_runs(self) -> list[Run]:
        """Return the loaded catalog."""


class ConfigRunProvider(RunProvider):
    def __init__(self, sections: list[dict[str, Any]]) -> None:
        self._runs = flatten_run_sections(sections)

    async def initialize(self) -> None:
        logger.info("ConfigRunProvider initialized with %d runs", len(self._runs))

    def get_runs(self) -> list[Run]:
        return self._runs


class SheetsRunProvider(RunProvider):
    def __init__(self, source: CatalogRowSource) -> None:
        self._source = source
        self._runs: list[Run] = []

    async def initialize(self) -> None:
        """Read the catalog sheet; on any error the previous list is kept."""
        rows = await self._source.fetch_catalog_rows()
        runs = rows_to_runs(rows)
        self._runs = runs
        logger.info("SheetsRunProvider loaded %d runs from Google Sheets", len(runs))

    def get_runs(self) -> list[Run]:
        return self._runs


def create_run_provider(config: Any, source: Optional[CatalogRowSource] = None) -> RunProvider:
    if config.RUN_PROVIDER == "config":
        return ConfigRunProvider(config.run_sections)
    if config.RUN_PROVIDER == "sheets":
        if source is None:
            # Sheets access is production-only; elsewhere fall back to the YAML runs.
            logger.warning("Sheets run provider configured without Google access; using config runs")
            return ConfigRunProvider(config.run_sections)
        return SheetsRunProvider(source)
    raise ConfigurationError(f"Unknown run provider: {config.RUN_PROVIDER}")
