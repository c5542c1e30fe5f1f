"""Builds the immutable codebase index from a source tree."""

from __future__ import annotations

import fnmatch
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .config_manager import ScanningConfig
from .context import read_text_bounded
from .extractors import FactExtractor, RegexFactExtractor
from .models import ApiInfo, ComponentInfo, ParsedCodebase

logger = logging.getLogger(__name__)

# Only files under these path fragments are scanned for route registrations
ROUTE_PATH_HINTS: Tuple[str, ...] = ("server", "api", "routes")


class CodebaseIndexer:
    """Scans a project and produces a ``ParsedCodebase``.

    Every file with a configured extension becomes a ``ComponentInfo`` keyed
    by its project-relative POSIX path. Route registrations found in server
    files populate ``apis``; on duplicate ``"METHOD path"`` keys the file
    scanned last (in sorted path order) wins.
    """

    def __init__(
        self,
        project_root: Path,
        scanning: Optional[ScanningConfig] = None,
        extractor: Optional[FactExtractor] = None,
    ) -> None:
        self.project_root = Path(project_root).resolve()
        self.scanning = scanning or ScanningConfig()
        self.extractor = extractor or RegexFactExtractor()
        self.skipped: List[Tuple[str, str]] = []

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def discover_files(self) -> List[str]:
        """Project-relative paths of every file to scan, sorted."""
        exclude = set(self.scanning.exclude)
        extensions = tuple(self.scanning.extensions)
        found: List[str] = []
        for dirpath, dirnames, filenames in os.walk(self.project_root):
            dirnames[:] = sorted(d for d in dirnames if d not in exclude and not d.endswith(".egg-info"))
            for filename in filenames:
                if not filename.endswith(extensions) or filename.endswith(".d.ts"):
                    continue
                rel = Path(dirpath, filename).relative_to(self.project_root).as_posix()
                if self._included(rel):
                    found.append(rel)
        return sorted(found)

    def _included(self, rel_path: str) -> bool:
        for pattern in self.scanning.include:
            if fnmatch.fnmatch(rel_path, pattern):
                return True
            if pattern.startswith("**/") and fnmatch.fnmatch(rel_path, pattern[3:]):
                return True
        return False

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def build(self) -> ParsedCodebase:
        """Scan every discovered file and freeze the result."""
        components: Dict[str, ComponentInfo] = {}
        apis: Dict[str, ApiInfo] = {}
        self.skipped = []

        files = self.discover_files()
        logger.info("Indexing %d source files under %s", len(files), self.project_root)
        for rel_path in files:
            try:
                source = read_text_bounded(self.project_root / rel_path, self.scanning.max_file_bytes)
            except OSError as e:
                logger.warning("Skipping unreadable file %s: %s", rel_path, e)
                self.skipped.append((rel_path, str(e)))
                continue
            components[rel_path] = self.scan_component(rel_path, source)
            for api in self.scan_routes(rel_path, source):
                if api.key in apis:
                    logger.debug("Route %s redefined in %s", api.key, rel_path)
                apis[api.key] = api

        logger.info("Indexed %d files and %d endpoints", len(components), len(apis))
        return ParsedCodebase(
            project_root=self.project_root, components=components, apis=apis, skipped=tuple(self.skipped)
        )

    def scan_component(self, rel_path: str, source: str) -> ComponentInfo:
        return ComponentInfo(
            file_path=rel_path,
            exports=tuple(self.extractor.exports(source, rel_path)),
            imports=tuple(self.extractor.imports(source, rel_path)),
            type=self.extractor.infer_type(rel_path, source),
        )

    def scan_routes(self, rel_path: str, source: str) -> List[ApiInfo]:
        if not any(hint in rel_path for hint in ROUTE_PATH_HINTS):
            return []
        return [
            ApiInfo(method=method, endpoint=path, handler_file=rel_path, handler_function=handler)
            for method, path, handler in self.extractor.routes(source, rel_path)
        ]


def index_project(project_root: Path, scanning: Optional[ScanningConfig] = None,
                  extractor: Optional[FactExtractor] = None) -> ParsedCodebase:
    """Convenience wrapper around ``CodebaseIndexer.build``."""
    return CodebaseIndexer(project_root, scanning, extractor).build()
