"""React Query cache invalidation analysis over the scanned source files."""

from __future__ import annotations

import logging
import re
import time
from typing import Dict, List, Optional, Tuple

from .context import AuditContext
from .models import (
    CacheInvalidationChain,
    MutationSite,
    ParsedCodebase,
    ValidationIssue,
    ValidationResult,
)

logger = logging.getLogger(__name__)

_SUCCESS_MARKER = re.compile(r"\bon(?:Success|Settled)\s*[:(]")
_HANDLER_MARKER = re.compile(r"\bon(?:Success|Error|Settled)\b")
_INVALIDATE_CALL = re.compile(r"invalidateQueries\s*\(")
_QUERY_USAGE = ("useQuery", "useMutation", "queryClient")


def _api_resource(endpoint: str) -> Optional[str]:
    """``/api/memories/manual`` -> ``memories``."""
    parts = [p for p in endpoint.split("/") if p]
    if len(parts) >= 2 and parts[0] == "api":
        return parts[1]
    return parts[0] if parts else None


class CacheValidationService:
    """Builds invalidation chains per mutation and checks query-key hygiene.

    Chain rules map a mutation endpoint prefix to the query keys that must be
    invalidated after it succeeds. The first matching prefix wins.
    """

    def __init__(self, context: AuditContext) -> None:
        self.context = context
        self.extractor = context.extractor
        self.settings = context.config.cache

    # ------------------------------------------------------------------
    # Chains
    # ------------------------------------------------------------------

    def expected_invalidations(self, endpoint: str) -> List[str]:
        for prefix, keys in self.settings.invalidation_rules.items():
            if prefix in endpoint or endpoint.rstrip("/") == prefix.rstrip("/"):
                return list(keys)
        return []

    def extract_invalidation_chains(self, file_path: str, source: str) -> List[CacheInvalidationChain]:
        return [chain for chain, _ in self._chains_with_sites(file_path, source)]

    def _chains_with_sites(self, file_path: str, source: str) -> List[Tuple[CacheInvalidationChain, MutationSite]]:
        invalidations = self.extractor.invalidation_keys(source)
        window = self.settings.invalidation_window
        pairs = []
        for site in self.extractor.mutations(source):
            if not site.endpoint:
                continue
            actual = [key for key, line in invalidations if site.line <= line < site.line + window]
            actual.extend(key for key, _ in self.extractor.invalidation_keys(site.block))
            chain = CacheInvalidationChain(
                starting_action="mutation",
                api_endpoint=site.endpoint,
                expected_invalidations=self.expected_invalidations(site.endpoint),
                actual_invalidations=list(dict.fromkeys(actual)),
                affected_components=[file_path],
            )
            pairs.append((chain, site))
        return pairs

    @staticmethod
    def invalidation_timed_correctly(site: MutationSite) -> bool:
        """True when an invalidation follows an onSuccess/onSettled marker in the same block."""
        marker = _SUCCESS_MARKER.search(site.block)
        if marker is None:
            return False
        return _INVALIDATE_CALL.search(site.block, marker.end()) is not None

    def validate_invalidation_chains(self, codebase: ParsedCodebase) -> ValidationResult:
        started = time.perf_counter()
        issues: List[ValidationIssue] = []
        checks = 0
        for file_path, source in self._sources(codebase, issues, ("useMutation", "mutationFn")):
            checks += 1
            for chain, site in self._chains_with_sites(file_path, source):
                location = f"{file_path}:{site.line + 1}"
                if not chain.chain_complete:
                    issues.append(ValidationIssue(
                        type="cache-invalidation-missing",
                        severity="error",
                        message=f"Incomplete cache invalidation chain for {chain.api_endpoint} in {file_path}",
                        location=location,
                        suggestion=f"Add invalidation for: {', '.join(chain.missing_invalidations)}",
                        metadata={
                            "missingInvalidations": chain.missing_invalidations,
                            "affectedComponents": chain.affected_components,
                        },
                    ))
                needs_timing = chain.expected_invalidations or chain.actual_invalidations
                if needs_timing and not self.invalidation_timed_correctly(site):
                    issues.append(ValidationIssue(
                        type="cache-invalidation-missing",
                        severity="warning",
                        message=f"Cache invalidation for {chain.api_endpoint} may not be properly timed",
                        location=location,
                        suggestion="Invalidate inside the mutation's onSuccess or onSettled callback",
                    ))
        return ValidationResult.build(issues, checks, started)

    # ------------------------------------------------------------------
    # Per-file dependency hygiene
    # ------------------------------------------------------------------

    def validate_cache_dependencies(self, codebase: ParsedCodebase) -> ValidationResult:
        started = time.perf_counter()
        issues: List[ValidationIssue] = []
        checks = 0
        for file_path, source in self._sources(codebase, issues, _QUERY_USAGE):
            checks += 1
            issues.extend(self._component_cache_issues(file_path, source))
        return ValidationResult.build(issues, checks, started)

    def _component_cache_issues(self, file_path: str, source: str) -> List[ValidationIssue]:
        issues: List[ValidationIssue] = []
        lines = source.split("\n")
        window = self.settings.handler_window

        for site in self.extractor.mutations(source):
            start = max(0, site.line - 2)
            nearby = "\n".join(lines[start:site.line + window])
            if not _HANDLER_MARKER.search(nearby) and not _HANDLER_MARKER.search(site.block):
                issues.append(ValidationIssue(
                    type="cache-invalidation-missing",
                    severity="warning",
                    message=f"Mutation in {file_path} lacks success or error handling",
                    location=f"{file_path}:{site.line + 1}",
                    suggestion="Add an onSuccess handler that invalidates the affected queries",
                ))

        invalidated = {key for key, _ in self.extractor.invalidation_keys(source)}
        read_keys = {key for key, _ in self.extractor.query_keys(source)}
        reported = set()
        for site in self.extractor.mutations(source):
            resource = _api_resource(site.endpoint) if site.endpoint else None
            if not resource:
                continue
            for key in sorted(read_keys - invalidated):
                if resource in key and (site.endpoint, key) not in reported:
                    reported.add((site.endpoint, key))
                    issues.append(ValidationIssue(
                        type="cache-invalidation-missing",
                        severity="warning",
                        message=(
                            f"Mutation to {site.endpoint} may leave query \"{key}\" stale in {file_path}"
                        ),
                        location=f"{file_path}:{site.line + 1}",
                        suggestion=f"Invalidate \"{key}\" after the mutation succeeds",
                        metadata={"queryKey": key, "endpoint": site.endpoint},
                    ))
        return issues

    # ------------------------------------------------------------------
    # Query key consistency
    # ------------------------------------------------------------------

    def collect_keys(self, codebase: ParsedCodebase, issues: Optional[List[ValidationIssue]] = None
                     ) -> Tuple[Dict[str, List[str]], Dict[str, List[str]]]:
        """Query key -> reading locations, and key -> invalidating locations."""
        reads: Dict[str, List[str]] = {}
        invalidations: Dict[str, List[str]] = {}
        sink: List[ValidationIssue] = issues if issues is not None else []
        for file_path, source in self._sources(codebase, sink, _QUERY_USAGE, severity="warning"):
            for key, line in self.extractor.query_keys(source):
                reads.setdefault(key, []).append(f"{file_path}:{line + 1}")
            for key, line in self.extractor.invalidation_keys(source):
                invalidations.setdefault(key, []).append(f"{file_path}:{line + 1}")
        return reads, invalidations

    def validate_query_key_consistency(self, codebase: ParsedCodebase) -> ValidationResult:
        started = time.perf_counter()
        issues: List[ValidationIssue] = []
        reads, invalidations = self.collect_keys(codebase, issues)

        for key in sorted(reads):
            if len(reads[key]) > 1 and not invalidations.get(key):
                issues.append(ValidationIssue(
                    type="cache-invalidation-missing",
                    severity="warning",
                    message=f'Query key "{key}" is used in multiple places but never invalidated',
                    location=", ".join(reads[key]),
                    suggestion="Invalidate this query key wherever its data changes",
                ))
        for key in sorted(invalidations):
            if key not in reads:
                issues.append(ValidationIssue(
                    type="cache-invalidation-missing",
                    severity="info",
                    message=f'Query key "{key}" is invalidated but not used in any query',
                    location=", ".join(invalidations[key]),
                    suggestion="Remove the unused invalidation or add the corresponding query",
                ))
        return ValidationResult.build(issues, len(reads) + len(invalidations), started)

    def validate_all(self, codebase: ParsedCodebase) -> ValidationResult:
        results = []
        if self.settings.check_invalidation_chains:
            results.append(self.validate_invalidation_chains(codebase))
            results.append(self.validate_cache_dependencies(codebase))
        if self.settings.check_key_consistency:
            results.append(self.validate_query_key_consistency(codebase))
        return ValidationResult.merge(results)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _sources(self, codebase: ParsedCodebase, issues: List[ValidationIssue],
                 markers: Tuple[str, ...], severity: str = "error"):
        """Yield (path, source) for indexed files containing any marker.

        Read failures become one issue per file.
        """
        for file_path in codebase.components:
            try:
                source = self.context.read_source(file_path)
            except OSError as e:
                issues.append(ValidationIssue(
                    type="cache-invalidation-missing",
                    severity=severity,  # type: ignore[arg-type]
                    message=f"Failed to analyze cache usage in {file_path}: {e}",
                    location=file_path,
                    suggestion="Verify the file is readable",
                ))
                continue
            if any(marker in source for marker in markers):
                yield file_path, source
