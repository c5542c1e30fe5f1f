"""Import graph over the indexed files.

Covers cycles, chain depth, the critical loading path, optimization
suggestions and two architecture checks (bidirectional imports, oversized
module interfaces).
"""

from __future__ import annotations

import logging
import time
from typing import Dict, List, Optional, Set, Tuple

from .config_manager import DependencyChecks
from .context import AuditContext
from .models import OptimizationSuggestion, ParsedCodebase, ValidationIssue, ValidationResult
from .paths import PathResolver

logger = logging.getLogger(__name__)


class DependencyAnalyzer:
    """Directed graph of relative imports between indexed files.

    Bare module specifiers (packages) are not part of the graph.
    """

    def __init__(self, codebase: ParsedCodebase, context: Optional[AuditContext] = None) -> None:
        self.codebase = codebase
        self.context = context
        self.settings = context.config.dependencies if context else DependencyChecks()
        self.graph = self.build_graph(codebase)
        self._depths: Dict[str, int] = {}
        self._paths: Dict[str, List[str]] = {}

    @staticmethod
    def build_graph(codebase: ParsedCodebase) -> Dict[str, List[str]]:
        known = set(codebase.components)
        graph: Dict[str, List[str]] = {}
        for file_path, info in codebase.components.items():
            targets: List[str] = []
            for imp in info.imports:
                target = PathResolver.resolve_import(imp.module, file_path, known)
                if target is not None and target != file_path and target not in targets:
                    targets.append(target)
            graph[file_path] = sorted(targets)
        return graph

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    def find_cycles(self) -> List[List[str]]:
        """Elementary cycles reachable by DFS, each reported once.

        Every cycle is rotated to start at its smallest path so repeated runs
        produce identical output.
        """
        white, grey, black = 0, 1, 2
        colour = {node: white for node in self.graph}
        cycles: List[List[str]] = []
        seen: Set[tuple] = set()

        for start in sorted(self.graph):
            if colour[start] != white:
                continue
            path: List[str] = []
            # iterative DFS: (node, index of next child to visit)
            stack = [(start, 0)]
            colour[start] = grey
            path.append(start)
            while stack:
                node, index = stack[-1]
                children = self.graph.get(node, [])
                if index >= len(children):
                    stack.pop()
                    path.pop()
                    colour[node] = black
                    continue
                stack[-1] = (node, index + 1)
                child = children[index]
                if colour.get(child, black) == grey:
                    cycle = path[path.index(child):]
                    key = self._normalize(cycle)
                    if key not in seen:
                        seen.add(key)
                        cycles.append(list(key))
                elif colour.get(child) == white:
                    colour[child] = grey
                    path.append(child)
                    stack.append((child, 0))
        return sorted(cycles)

    @staticmethod
    def _normalize(cycle: List[str]) -> tuple:
        pivot = cycle.index(min(cycle))
        return tuple(cycle[pivot:] + cycle[:pivot])

    # ------------------------------------------------------------------
    # Depth
    # ------------------------------------------------------------------

    def dependency_depth(self, file_path: str) -> int:
        """Length of the longest acyclic import chain starting at *file_path*."""
        if file_path in self._depths:
            return self._depths[file_path]
        return self._depth(file_path, set())[0]

    def _depth(self, node: str, visiting: Set[str]) -> Tuple[int, bool]:
        """(depth, exact). A result is inexact when a back edge was cut below *node*."""
        if node in self._depths:
            return self._depths[node], True
        visiting.add(node)
        best = 0
        exact = True
        for child in self.graph.get(node, []):
            if child in visiting:
                exact = False
                continue
            depth, child_exact = self._depth(child, visiting)
            exact = exact and child_exact
            best = max(best, 1 + depth)
        visiting.discard(node)
        if exact:
            self._depths[node] = best
        return best, exact

    # ------------------------------------------------------------------
    # Critical path
    # ------------------------------------------------------------------

    def critical_path(self) -> List[str]:
        """The longest acyclic import chain in the project.

        Ties go to the chain whose first file sorts first.
        """
        longest: List[str] = []
        for node in sorted(self.graph):
            path, _ = self._longest(node, set())
            if len(path) > len(longest):
                longest = path
        return longest

    def critical_paths(self, max_length: Optional[int] = None) -> List[List[str]]:
        """Critical paths holding more than *max_length* files."""
        limit = self.settings.critical_path_length if max_length is None else max_length
        path = self.critical_path()
        return [path] if len(path) > limit else []

    def _longest(self, node: str, visiting: Set[str]) -> Tuple[List[str], bool]:
        if node in self._paths:
            return self._paths[node], True
        visiting.add(node)
        best: List[str] = []
        exact = True
        for child in self.graph.get(node, []):
            if child in visiting:
                exact = False
                continue
            sub, child_exact = self._longest(child, visiting)
            exact = exact and child_exact
            if len(sub) > len(best):
                best = sub
        visiting.discard(node)
        path = [node] + best
        if exact:
            self._paths[node] = path
        return path, exact

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def transitive_dependencies(self, file_path: str) -> List[str]:
        """Every file reachable from *file_path* through imports."""
        seen: Set[str] = set()
        stack = list(self.graph.get(file_path, []))
        while stack:
            node = stack.pop()
            if node in seen or node == file_path:
                continue
            seen.add(node)
            stack.extend(self.graph.get(node, []))
        return sorted(seen)

    def dependents(self, file_path: str) -> List[str]:
        return [node for node, children in self.graph.items() if file_path in children]

    def clusters(self) -> List[List[str]]:
        """Groups of files connected by imports in either direction.

        Isolated files are left out.
        """
        neighbours: Dict[str, Set[str]] = {node: set() for node in self.graph}
        for node, children in self.graph.items():
            for child in children:
                neighbours[node].add(child)
                neighbours.setdefault(child, set()).add(node)

        visited: Set[str] = set()
        clusters: List[List[str]] = []
        for start in sorted(neighbours):
            if start in visited:
                continue
            cluster: Set[str] = set()
            stack = [start]
            while stack:
                node = stack.pop()
                if node in visited:
                    continue
                visited.add(node)
                cluster.add(node)
                stack.extend(neighbours[node] - visited)
            if len(cluster) > 1:
                clusters.append(sorted(cluster))
        return clusters

    def bidirectional_edges(self) -> List[Tuple[str, str]]:
        """Pairs of files that import each other, smaller path first."""
        pairs = []
        for node in sorted(self.graph):
            for child in self.graph[node]:
                if node < child and node in self.graph.get(child, []):
                    pairs.append((node, child))
        return pairs

    def suggest_optimizations(self) -> List[OptimizationSuggestion]:
        """Ways to shrink or untangle the import graph.

        Returns:
            Suggestions in a fixed order: cycles to break, heavy files to
            lazy load, deep chains to flatten, then clusters to code split.
        """
        settings = self.settings
        suggestions: List[OptimizationSuggestion] = []

        for cycle in self.find_cycles():
            chain = " -> ".join(cycle + [cycle[0]])
            suggestions.append(OptimizationSuggestion(
                type="break-circular",
                target=chain,
                description=f"Break the circular import {chain} by extracting the shared code",
                impact="medium",
                effort="medium",
                files=list(cycle),
            ))

        heavy = []
        for node in sorted(self.graph):
            count = len(self.transitive_dependencies(node))
            if count > settings.heavy_threshold:
                heavy.append((count, node))
        for count, node in sorted(heavy, key=lambda item: (-item[0], item[1])):
            suggestions.append(OptimizationSuggestion(
                type="lazy-load",
                target=node,
                description=f"Consider lazy loading {node} ({count} transitive dependencies)",
                impact="medium",
                effort="low",
                files=[node],
            ))

        deep = [(self.dependency_depth(node), node) for node in sorted(self.graph)]
        deep = [item for item in deep if item[0] > settings.deep_threshold]
        for depth, node in sorted(deep, key=lambda item: (-item[0], item[1])):
            suggestions.append(OptimizationSuggestion(
                type="reduce-dependencies",
                target=node,
                description=f"Reduce the import depth of {node} (depth {depth})",
                impact="medium",
                effort="high",
                files=[node],
            ))

        for index, cluster in enumerate(self.clusters()):
            if len(cluster) < settings.min_cluster_size:
                continue
            suggestions.append(OptimizationSuggestion(
                type="code-split",
                target=f"cluster-{index}",
                description=f"Code split the group of {len(cluster)} connected modules: {', '.join(cluster)}",
                impact="high",
                effort="medium",
                files=cluster,
            ))
        return suggestions

    # ------------------------------------------------------------------
    # Findings
    # ------------------------------------------------------------------

    def validate(self, max_depth: Optional[int] = None, detect_circular: bool = True) -> ValidationResult:
        started = time.perf_counter()
        if max_depth is None:
            max_depth = self.settings.max_depth
        issues: List[ValidationIssue] = []

        cycles = self.find_cycles() if detect_circular else []
        for cycle in cycles:
            chain = " -> ".join(cycle + [cycle[0]])
            issues.append(ValidationIssue(
                type="cross-reference-error",
                severity="warning",
                message=f"Circular dependency detected: {chain}",
                location=cycle[0],
                suggestion="Break the cycle by extracting shared code into a separate module",
                metadata={"cycle": cycle},
            ))

        for file_path in sorted(self.graph):
            depth = self.dependency_depth(file_path)
            if depth > max_depth:
                issues.append(ValidationIssue(
                    type="cross-reference-error",
                    severity="info",
                    message=f"{file_path} has an import chain {depth} levels deep (limit {max_depth})",
                    location=file_path,
                    suggestion="Flatten the dependency chain to reduce coupling",
                    metadata={"depth": depth},
                ))
        logger.debug("Dependency analysis found %d cycles over %d files", len(cycles), len(self.graph))
        return ValidationResult.build(issues, len(self.graph), started)

    def validate_architecture(self) -> ValidationResult:
        """Bidirectional imports, oversized interfaces and split candidates."""
        started = time.perf_counter()
        issues: List[ValidationIssue] = []

        for first, second in self.bidirectional_edges():
            issues.append(ValidationIssue(
                type="cross-reference-error",
                severity="warning",
                message=f'Bidirectional dependency between "{first}" and "{second}"',
                location=f"dependencies.{first}-{second}",
                suggestion="Keep data flowing one way: lift shared state into a store or pass callbacks down",
                metadata={"files": [first, second]},
            ))

        limit = self.settings.max_exports
        for file_path, info in self.codebase.components.items():
            if len(info.exports) > limit:
                issues.append(ValidationIssue(
                    type="cross-reference-error",
                    severity="info",
                    message=f"{file_path} exports {len(info.exports)} symbols (limit {limit})",
                    location=file_path,
                    suggestion="Consider splitting it into smaller, more focused modules",
                    metadata={"exportCount": len(info.exports)},
                ))

        for suggestion in self.suggest_optimizations():
            # cycles and depth are reported by validate()
            if suggestion.type not in ("lazy-load", "code-split"):
                continue
            issues.append(ValidationIssue(
                type="cross-reference-error",
                severity="info",
                message=suggestion.description,
                location=suggestion.target,
                suggestion=f"Optimization: {suggestion.type} ({suggestion.impact} impact, {suggestion.effort} effort)",
                metadata={"files": suggestion.files},
            ))
        return ValidationResult.build(issues, len(self.graph), started)
