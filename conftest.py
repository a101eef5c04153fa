"""Pytest configuration.

Ensures the local package can be imported during test collection without an
editable install, and keeps tests away from the developer's .env and config.yaml.
"""

import os
import sys
from pathlib import Path


def _prepend_sys_path(path: Path) -> None:
    resolved = str(path.resolve())
    if resolved not in sys.path:
        sys.path.insert(0, resolved)


REPO_ROOT = Path(__file__).resolve().parent

# Allow importing `runchecks` as a top-level package.
_prepend_sys_path(REPO_ROOT / "src")

os.environ.setdefault("SESSION_SECRET", "test-session-secret")
os.environ.setdefault("RUNCHECKS_CONFIG_FILE", str(REPO_ROOT / "config.example.yaml"))
