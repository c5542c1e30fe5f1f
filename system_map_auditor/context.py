"""Shared, immutable collaborators injected into every validator."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .config import MAX_FILE_BYTES
from .config_manager import AuditConfig
from .extractors import FactExtractor, create_extractor
from .paths import PathResolver
from .similarity import SimilarityScorer

logger = logging.getLogger(__name__)


def read_text_bounded(path: Path, max_bytes: int = MAX_FILE_BYTES) -> str:
    """Read at most *max_bytes* of a file as UTF-8.

    Raises:
        OSError: The file cannot be opened or read.
    """
    with open(path, "rb") as f:
        data = f.read(max_bytes + 1)
    if len(data) > max_bytes:
        logger.warning("Truncating %s to %d bytes for scanning", path, max_bytes)
        data = data[:max_bytes]
    return data.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class AuditContext:
    """Project root, resolver, scorer, extractor and config for one audit run."""

    project_root: Path
    resolver: PathResolver
    scorer: SimilarityScorer
    extractor: FactExtractor
    config: AuditConfig = field(default_factory=AuditConfig)

    @classmethod
    def create(
        cls,
        project_root: Path,
        config: Optional[AuditConfig] = None,
        extractor: Optional[FactExtractor] = None,
    ) -> "AuditContext":
        config = config or AuditConfig()
        root = Path(project_root).resolve()
        return cls(
            project_root=root,
            resolver=PathResolver(root),
            scorer=SimilarityScorer(),
            extractor=extractor or create_extractor(config.scanning.prefer_ast),
            config=config,
        )

    def read_source(self, rel_path: str) -> str:
        """Read a project file by its project-relative path."""
        return read_text_bounded(self.resolver.absolute(rel_path), self.config.scanning.max_file_bytes)
