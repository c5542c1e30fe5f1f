"""Resolution of declared paths to files under the project root."""

from __future__ import annotations

import posixpath
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from .models import ParsedCodebase
from .similarity import kebab_case

COMMON_SOURCE_DIRS: Tuple[str, ...] = ("src", "client/src", "server", "shared")

COMPONENT_SEARCH_DIRS: Tuple[str, ...] = (
    "src/components",
    "client/src/components",
    "src/pages",
    "client/src/pages",
    "src/hooks",
    "client/src/hooks",
    "src/utils",
    "client/src/utils",
    "shared",
)

HANDLER_SEARCH_DIRS: Tuple[str, ...] = ("server/routes", "server/api", "server", "api", "routes")

COMPONENT_EXTENSIONS: Tuple[str, ...] = (".tsx", ".ts", ".jsx", ".js")
HANDLER_EXTENSIONS: Tuple[str, ...] = (".ts", ".js")


class PathResolver:
    """Maps paths written in system maps onto real files.

    All public methods return project-relative POSIX paths so findings read
    the same on every platform.
    """

    def __init__(self, project_root: Path) -> None:
        self.project_root = Path(project_root).resolve()

    # ------------------------------------------------------------------
    # Basics
    # ------------------------------------------------------------------

    def relative(self, path: Path) -> str:
        try:
            return Path(path).resolve().relative_to(self.project_root).as_posix()
        except ValueError:
            return Path(path).as_posix()

    def absolute(self, rel_path: str) -> Path:
        path = Path(rel_path)
        return path if path.is_absolute() else self.project_root / path

    def exists(self, rel_path: str) -> bool:
        return self.absolute(rel_path).is_file()

    def is_within_project(self, path: Path) -> bool:
        try:
            Path(path).resolve().relative_to(self.project_root)
            return True
        except ValueError:
            return False

    def resolve_source_file(self, file_path: str) -> str:
        """Resolve a declared path, trying common source directories.

        Returns the first existing candidate, else the root-relative guess.
        """
        if Path(file_path).is_absolute():
            return self.relative(Path(file_path))
        cleaned = file_path[2:] if file_path.startswith("./") else file_path
        if self.exists(cleaned):
            return Path(cleaned).as_posix()
        for base in COMMON_SOURCE_DIRS:
            candidate = f"{base}/{cleaned}"
            if self.exists(candidate):
                return candidate
        return Path(cleaned).as_posix()

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    def find_component_locations(
        self,
        name: str,
        codebase: Optional[ParsedCodebase] = None,
    ) -> List[str]:
        """Every plausible file for component *name*.

        Probes the conventional component directories (direct file,
        ``Name/index.ext`` and kebab-case file) and, when an index is given,
        adds every scanned file exporting *name*.
        """
        found = set()
        kebab = kebab_case(name)
        for directory in COMPONENT_SEARCH_DIRS:
            if not self.absolute(directory).is_dir():
                continue
            for ext in COMPONENT_EXTENSIONS:
                for candidate in (
                    f"{directory}/{name}{ext}",
                    f"{directory}/{name}/index{ext}",
                    f"{directory}/{kebab}{ext}",
                ):
                    if self.exists(candidate):
                        found.add(candidate)
        if codebase is not None:
            found.update(codebase.files_exporting(name))
        return sorted(found)

    # ------------------------------------------------------------------
    # API handlers
    # ------------------------------------------------------------------

    def resolve_api_handler(self, handler_path: str) -> Optional[str]:
        """Resolve a declared handler path, or None when nothing exists."""
        for candidate in (
            handler_path,
            f"server/{handler_path}",
            f"server/routes/{handler_path}",
            f"api/{handler_path}",
            handler_path + ".ts",
            handler_path + ".js",
        ):
            resolved = self.resolve_source_file(candidate)
            if self.exists(resolved):
                return resolved
        return None

    def find_handler_locations(self, handler_path: str) -> List[str]:
        """Search the standard handler directories for the handler's basename."""
        stem = Path(handler_path).name
        for ext in HANDLER_EXTENSIONS + (".tsx", ".jsx"):
            if stem.endswith(ext):
                stem = stem[: -len(ext)]
                break
        found = []
        for directory in HANDLER_SEARCH_DIRS:
            for ext in HANDLER_EXTENSIONS:
                candidate = f"{directory}/{stem}{ext}"
                if self.exists(candidate) and candidate not in found:
                    found.append(candidate)
        return found

    # ------------------------------------------------------------------
    # Imports
    # ------------------------------------------------------------------

    @staticmethod
    def resolve_import(module: str, from_file: str, known_files: Iterable[str]) -> Optional[str]:
        """Resolve a relative import specifier against a set of known files."""
        if not module.startswith("."):
            return None
        known = set(known_files)
        base = posixpath.normpath(posixpath.join(posixpath.dirname(from_file), module))
        if base in known:
            return base
        for ext in COMPONENT_EXTENSIONS:
            if base + ext in known:
                return base + ext
        for ext in COMPONENT_EXTENSIONS:
            index = f"{base}/index{ext}"
            if index in known:
                return index
        return None
