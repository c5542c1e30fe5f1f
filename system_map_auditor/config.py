"""Filesystem locations and scanning defaults for the auditor."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Set, Tuple

BASE_DIR = Path(
    os.environ.get("SYSTEM_MAP_AUDITOR_HOME", str(Path.home() / ".system-map-auditor"))
).expanduser()
CONFIG_FILE = BASE_DIR / "config.toml"
LOCAL_CONFIG_NAME = ".system-map-auditor.toml"

SOURCE_EXTENSIONS: Tuple[str, ...] = (".ts", ".tsx", ".js", ".jsx")

SKIP_DIRS: Set[str] = {
    "node_modules", ".git", "dist", "build", "coverage", ".next",
    ".cache", ".turbo", "out", ".venv", "venv", "__pycache__",
    ".pytest_cache", ".system-map-auditor",
}

# Files larger than this are truncated before scanning.
MAX_FILE_BYTES = 1_000_000
