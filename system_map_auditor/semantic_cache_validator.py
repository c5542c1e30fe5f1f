"""Semantic checks on the cache and status declarations inside system maps."""

from __future__ import annotations

import json
import logging
import re
import time
from pathlib import Path
from typing import Dict, Iterable, List, Mapping

from .context import AuditContext
from .models import ValidationIssue, ValidationResult
from .system_map import ComponentDef, SystemMap

logger = logging.getLogger(__name__)

_QUERY_MENTION = re.compile(r"query[:\s]*([/\w-]+)", re.IGNORECASE)
_KEY_FIELDS = ("uses", "invalidates", "dependsOn")

MONOLITHIC_ROUTES_FILE = "server/routes.ts"
MODULAR_ROUTES_DIR = "server/routes"


class SemanticCacheValidator:
    """Detects differently named keys for the same data and broken declarations."""

    def __init__(self, context: AuditContext) -> None:
        self.context = context
        self.scorer = context.scorer

    def validate(self, system_map: SystemMap) -> ValidationResult:
        started = time.perf_counter()
        issues: List[ValidationIssue] = []
        issues.extend(self.validate_broken_feature_status(system_map))
        if self.context.config.cache.check_semantic_keys:
            issues.extend(self.validate_declared_cache_keys(system_map))
        issues.extend(self.validate_feature_cache_chains(system_map))
        issues.extend(self.validate_component_definitions(system_map))
        issues.extend(self.validate_handler_file_references(system_map))
        checks = (
            len(system_map.integration_status)
            + len(system_map.components)
            + len(system_map.features)
            + len(system_map.apis)
        )
        return ValidationResult.build(issues, checks, started)

    # ------------------------------------------------------------------
    # Feature status
    # ------------------------------------------------------------------

    def validate_broken_feature_status(self, system_map: SystemMap) -> List[ValidationIssue]:
        """A broken feature with known issues is always an error."""
        issues = []
        for feature_name, status in sorted(system_map.integration_status.items()):
            if status.status == "broken" and status.known_issues:
                issues.append(ValidationIssue(
                    type="broken-feature-status",
                    severity="error",
                    message=(
                        f'Feature "{feature_name}" is marked as broken with known issues: '
                        f"{', '.join(status.known_issues)}"
                    ),
                    location=f"{system_map.path}#/integrationStatus/{feature_name}",
                    suggestion='Fix the underlying issues or change status to "partial"',
                    metadata={
                        "featureName": feature_name,
                        "knownIssues": list(status.known_issues),
                        "lastVerified": status.last_verified,
                    },
                ))
        return issues

    # ------------------------------------------------------------------
    # Declared cache keys
    # ------------------------------------------------------------------

    def declared_keys(self, component: ComponentDef) -> List[str]:
        """Explicit uses/invalidates/dependsOn keys plus ``query ...`` mentions elsewhere."""
        keys = list(component.uses) + list(component.invalidates) + list(component.depends_on)
        explicit = {self.scorer.normalize_cache_key(k) for k in keys}
        rest = {k: v for k, v in component.raw.items() if k not in _KEY_FIELDS}
        for mention in _QUERY_MENTION.findall(json.dumps(rest, sort_keys=True)):
            if self.scorer.normalize_cache_key(mention) not in explicit:
                keys.append(mention)
        return list(dict.fromkeys(keys))

    def validate_declared_cache_keys(self, system_map: SystemMap) -> List[ValidationIssue]:
        used_by: Dict[str, List[str]] = {}
        invalidated_by: Dict[str, List[str]] = {}
        for name, component in sorted(system_map.components.items()):
            for key in self.declared_keys(component):
                used_by.setdefault(key, [])
                invalidated_by.setdefault(key, [])
                if key in component.uses or key in component.depends_on:
                    used_by[key].append(name)
                if key in component.invalidates:
                    invalidated_by[key].append(name)

        location = f"{system_map.path}#/components"
        issues = self.similar_key_issues(used_by, location, severity="error")
        for key in sorted(used_by):
            if used_by[key] and not invalidated_by[key]:
                issues.append(ValidationIssue(
                    type="cache-invalidation-missing",
                    severity="warning",
                    message=f'Cache key "{key}" is used by {", ".join(used_by[key])} but never invalidated',
                    location=location,
                    suggestion="Declare which component invalidates this key when data changes",
                    metadata={"queryKey": key, "usedBy": used_by[key]},
                ))
        return issues

    def similar_key_issues(
        self,
        users: Mapping[str, Iterable[str]],
        location: str,
        severity: str = "error",
    ) -> List[ValidationIssue]:
        """One cache-key-inconsistency issue per group of similar keys."""
        issues = []
        for group in self.scorer.group_similar_keys(users):
            affected = sorted({u for key in group for u in users.get(key, [])})
            issues.append(ValidationIssue(
                type="cache-key-inconsistency",
                severity=severity,  # type: ignore[arg-type]
                message=(
                    f"Cache key inconsistency detected: {', '.join(group)} - "
                    f"different keys used for the same data"
                    + (f" by {', '.join(affected)}" if affected else "")
                ),
                location=location,
                suggestion="Standardize on one cache key for this data source",
                metadata={"inconsistentKeys": group, "affectedComponents": affected},
            ))
        return issues

    def validate_source_keys(self, reads: Mapping[str, List[str]],
                             invalidations: Mapping[str, List[str]]) -> ValidationResult:
        """Similar-but-different keys found in source. Heuristic, so warnings."""
        started = time.perf_counter()
        users: Dict[str, List[str]] = {}
        for mapping in (reads, invalidations):
            for key, locations in mapping.items():
                users.setdefault(key, []).extend(loc.rsplit(":", 1)[0] for loc in locations)
        issues = self.similar_key_issues(users, "source", severity="warning")
        return ValidationResult.build(issues, len(users), started)

    # ------------------------------------------------------------------
    # Feature groups
    # ------------------------------------------------------------------

    def validate_feature_cache_chains(self, system_map: SystemMap) -> List[ValidationIssue]:
        issues = []
        for feature_name, feature in sorted(system_map.features.items()):
            deps = feature.cache_dependencies
            if deps is None:
                continue
            location = (
                f"{system_map.path}#/featureGroups/{feature.group}/features/{feature_name}"
                f"/apiIntegration/cacheDependencies"
            )
            if deps.missing_invalidations:
                issues.append(ValidationIssue(
                    type="cache-invalidation-missing",
                    severity="error",
                    message=(
                        f'Feature "{feature_name}" has incomplete cache invalidation chain: '
                        f"missing {', '.join(deps.missing_invalidations)}"
                    ),
                    location=location,
                    suggestion="Add the missing invalidations so every dependent component refreshes",
                    metadata={
                        "featureName": feature_name,
                        "missingInvalidations": list(deps.missing_invalidations),
                        "currentInvalidations": list(deps.invalidates),
                    },
                ))
            for component_name in deps.refreshes_components:
                if component_name not in system_map.components:
                    issues.append(ValidationIssue(
                        type="missing-component-definition",
                        severity="error",
                        message=(
                            f'Component "{component_name}" is referenced in cache refresh chain '
                            f"but not defined in components section"
                        ),
                        location=location,
                        suggestion="Define the component or remove it from refreshesComponents",
                        metadata={"componentName": component_name, "referencedBy": feature_name},
                    ))
        return issues

    def validate_component_definitions(self, system_map: SystemMap) -> List[ValidationIssue]:
        """Components named by features or the table of contents must be defined."""
        issues = []
        refs = system_map.component_references(include_cache=False)
        for name in sorted(refs):
            if name in system_map.components:
                continue
            issues.append(ValidationIssue(
                type="missing-component-definition",
                severity="error",
                message=f'Component "{name}" is referenced but not defined in components section',
                location=f"{system_map.path}#/components",
                suggestion="Add a component definition or remove the reference",
                metadata={"componentName": name, "referencedFrom": refs[name]},
            ))
        return issues

    # ------------------------------------------------------------------
    # Handler files
    # ------------------------------------------------------------------

    def validate_handler_file_references(self, system_map: SystemMap) -> List[ValidationIssue]:
        """Endpoints still pointing at the monolithic routes file after a split."""
        stale = [
            api for api in system_map.apis
            if api.handler_file and api.handler_file.endswith(MONOLITHIC_ROUTES_FILE)
        ]
        if not stale:
            return []
        modular = self.modular_route_files()
        if not modular:
            return []

        issues = []
        for api in stale:
            suggested = self._best_route_file(api.path, modular)
            issues.append(ValidationIssue(
                type="handler-file-mismatch",
                severity="warning",
                message=(
                    f'API endpoint "{api.key}" references outdated handler file '
                    f'"{MONOLITHIC_ROUTES_FILE}" but modular routes exist'
                ),
                location=f"{system_map.path}#/apiEndpoints/{api.key}",
                suggestion=f"Update the handler file reference (e.g. {suggested})",
                metadata={
                    "endpoint": api.key,
                    "currentHandler": api.handler_file,
                    "suggestedHandler": suggested,
                },
            ))
        return issues

    def modular_route_files(self) -> List[str]:
        routes_dir = self.context.resolver.absolute(MODULAR_ROUTES_DIR)
        if not routes_dir.is_dir():
            return []
        return sorted(
            f"{MODULAR_ROUTES_DIR}/{p.name}"
            for p in routes_dir.iterdir()
            if p.is_file() and p.suffix in (".ts", ".js")
        )

    @staticmethod
    def _best_route_file(endpoint: str, candidates: List[str]) -> str:
        segments = [s for s in endpoint.split("/") if s and s != "api" and not s.startswith(":")]
        for segment in segments:
            stem = segment.split("-")[0].rstrip("s")
            for candidate in candidates:
                if stem and stem in Path(candidate).stem:
                    return candidate
        return candidates[0]
