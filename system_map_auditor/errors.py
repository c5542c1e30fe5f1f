"""Exception types raised at the loading seams of the auditor."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Union


class AuditorError(Exception):
    """Base class for all auditor errors."""


class SystemMapError(AuditorError):
    """A system map document could not be loaded or is malformed."""

    def __init__(
        self,
        message: str,
        path: Optional[Union[str, Path]] = None,
        problems: Optional[List[str]] = None,
    ) -> None:
        self.path = str(path) if path is not None else None
        self.problems = list(problems or [])
        detail = message
        if self.problems:
            detail = f"{message}: " + "; ".join(self.problems)
        if self.path:
            detail = f"{self.path}: {detail}"
        super().__init__(detail)


class ConfigError(AuditorError):
    """The TOML configuration is unreadable or holds invalid values."""
