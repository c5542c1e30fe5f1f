"""Coordinates the validators over a set of system map documents."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from .api_validator import ApiValidator
from .cache_validator import CacheValidationService
from .component_validator import ComponentValidator
from .context import AuditContext
from .dependency_analyzer import DependencyAnalyzer
from .errors import SystemMapError
from .evidence_validator import IntegrationEvidenceValidator
from .flow_validator import FlowValidator
from .indexer import CodebaseIndexer
from .models import FeatureIntegrationStatus, ParsedCodebase, ValidationIssue, ValidationResult
from .semantic_cache_validator import SemanticCacheValidator
from .system_map import SystemMap, SystemMapLoader
from .ui_refresh_validator import UiRefreshValidator

logger = logging.getLogger(__name__)


@dataclass
class DocumentReport:
    """Result of auditing one system map document."""
    path: str
    name: str
    result: ValidationResult

    @property
    def passed(self) -> bool:
        return self.result.passed


@dataclass
class AuditReport:
    """Per-document results plus the checks that span the whole codebase."""
    documents: List[DocumentReport] = field(default_factory=list)
    codebase: ValidationResult = field(default_factory=ValidationResult)

    @property
    def passed(self) -> bool:
        return self.codebase.passed and all(doc.passed for doc in self.documents)

    @property
    def issues(self) -> List[ValidationIssue]:
        issues: List[ValidationIssue] = []
        for doc in self.documents:
            issues.extend(doc.result.issues)
        issues.extend(self.codebase.issues)
        return issues

    def combined(self) -> ValidationResult:
        return ValidationResult.merge([doc.result for doc in self.documents] + [self.codebase])

    def counts(self) -> Dict[str, int]:
        counts = {"error": 0, "warning": 0, "info": 0}
        for issue in self.issues:
            counts[issue.severity] += 1
        return counts


def failure_issue(location: str, message: str, exc: Optional[BaseException] = None) -> ValidationIssue:
    """An error issue standing in for a check that could not run."""
    return ValidationIssue(
        type="cross-reference-error",
        severity="error",
        message=f"{message}: {exc}" if exc is not None else message,
        location=location,
        suggestion="Fix the document or file and re-run the audit",
        metadata={"exception": type(exc).__name__} if exc is not None else {},
    )


class ValidationOrchestrator:
    """Runs the validator set per document and the codebase-wide checks once.

    Never raises for problems in its inputs: unreadable documents, failing
    validators and exceeded time budgets all become error issues.
    """

    def __init__(self, context: AuditContext, codebase: Optional[ParsedCodebase] = None) -> None:
        self.context = context
        self.config = context.config
        self.loader = SystemMapLoader(context.project_root)
        self._codebase = codebase

        self.components = ComponentValidator(context)
        self.apis = ApiValidator(context)
        self.cache = CacheValidationService(context)
        self.semantic = SemanticCacheValidator(context)
        self.flows = FlowValidator(context)
        self.ui_refresh = UiRefreshValidator(context)
        self.evidence = IntegrationEvidenceValidator(context)

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    @property
    def codebase(self) -> ParsedCodebase:
        """The codebase index, built on first use."""
        if self._codebase is None:
            indexer = CodebaseIndexer(self.context.project_root, self.config.scanning, self.context.extractor)
            self._codebase = indexer.build()
        return self._codebase

    def load_maps(self, paths: Iterable[Path]) -> Tuple[List[SystemMap], List[DocumentReport]]:
        """Load documents. Returns (maps, reports for documents that failed to load)."""
        maps: List[SystemMap] = []
        failures: List[DocumentReport] = []
        for path in paths:
            try:
                maps.append(self.loader.load(path))
            except SystemMapError as e:
                logger.warning("Cannot load system map %s: %s", path, e)
                location = e.path or str(path)
                issue = failure_issue(location, "Failed to load system map", e)
                issue.metadata["problems"] = e.problems
                failures.append(DocumentReport(location, Path(path).name, ValidationResult(issues=[issue])))
            except Exception as e:
                logger.exception("Unexpected failure loading system map %s", path)
                issue = failure_issue(str(path), "Failed to load system map", e)
                failures.append(DocumentReport(str(path), Path(path).name, ValidationResult(issues=[issue])))
        return maps, failures

    # ------------------------------------------------------------------
    # Per-validator entry points
    # ------------------------------------------------------------------

    def validate_components(self, system_map: SystemMap) -> ValidationResult:
        return self.components.validate_all(system_map.components.values(), self.codebase)

    def validate_apis(self, system_map: SystemMap, declared_keys: Optional[Set[str]] = None,
                      include_orphans: bool = True) -> ValidationResult:
        return self.apis.validate_all(system_map.apis, self.codebase, declared_keys, include_orphans)

    def validate_flows(self, system_map: SystemMap) -> ValidationResult:
        return self.flows.validate_all(system_map, self.codebase)

    def validate_cache(self, system_map: Optional[SystemMap] = None) -> ValidationResult:
        results = [self.cache.validate_all(self.codebase)]
        if system_map is not None:
            results.append(self.semantic.validate(system_map))
        return ValidationResult.merge(results)

    def validate_ui_refresh(self) -> ValidationResult:
        return self.ui_refresh.validate_all(self.codebase)

    def validate_evidence(self, system_map: SystemMap) -> ValidationResult:
        return self.evidence.validate_all(system_map)

    def validate_scan(self) -> ValidationResult:
        """One error per source file the indexer could not read."""
        started = time.perf_counter()
        issues = [
            ValidationIssue(
                type="cross-reference-error",
                severity="error",
                message=f"Failed to read source file {path}: {reason}",
                location=path,
                suggestion="Fix the file permissions or remove the broken file",
            )
            for path, reason in self.codebase.skipped
        ]
        return ValidationResult.build(issues, len(self.codebase.skipped), started)

    def detect_circular(self) -> ValidationResult:
        return DependencyAnalyzer(self.codebase, self.context).validate(
            detect_circular=self.config.dependencies.detect_circular
        )

    def validate_architecture(self) -> ValidationResult:
        return DependencyAnalyzer(self.codebase, self.context).validate_architecture()

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def validate_document(self, system_map: SystemMap, declared_keys: Optional[Set[str]] = None) -> DocumentReport:
        """Every per-document check, each guarded, under the time budget."""
        started = time.perf_counter()
        location = system_map.path
        steps: List[tuple] = [
            ("components", lambda: self.validate_components(system_map)),
            ("apis", lambda: self.validate_apis(system_map, declared_keys, include_orphans=False)),
            ("flows", lambda: self.validate_flows(system_map)),
            ("semantic cache", lambda: self.semantic.validate(system_map)),
            ("evidence", lambda: self.validate_evidence(system_map)),
        ]
        result = ValidationResult.merge(self._guarded(name, location, run) for name, run in steps)

        elapsed = (time.perf_counter() - started) * 1000.0
        budget = self.config.performance.max_execution_time
        if budget and elapsed > budget:
            logger.warning("Validation of %s took %.0fms (budget %dms)", location, elapsed, budget)
            result.issues.append(ValidationIssue(
                type="cross-reference-error",
                severity="error",
                message=f"Validation exceeded the {budget}ms time budget ({elapsed:.0f}ms)",
                location=location,
                suggestion="Split the system map or narrow the scanning include patterns",
            ))
        logger.info("Audited %s: %d issues", location, len(result.issues))
        return DocumentReport(path=location, name=system_map.name, result=result)

    def validate_codebase(self, maps: List[SystemMap]) -> ValidationResult:
        """Checks over the whole index, run once per audit rather than per document."""
        declared_keys = {api.key for m in maps for api in m.apis}
        apis = self.config.apis
        flows = self.config.flows
        steps: List[tuple] = [
            ("scan", self.validate_scan),
            ("cache", lambda: self.cache.validate_all(self.codebase)),
            ("ui refresh", self.validate_ui_refresh),
        ]
        if apis.check_orphaned_endpoints:
            steps.append(("orphaned endpoints",
                          lambda: self.apis.find_orphaned_endpoints([], self.codebase, declared_keys)))
        if flows.check_cross_feature:
            steps.append(("cross-feature", lambda: self.flows.validate_cross_feature_references(maps)))
        if flows.check_integration_points:
            steps.append(("integration points", lambda: self.flows.validate_integration_points(self.codebase)))
        if self.config.cache.check_semantic_keys:
            steps.append(("semantic keys", lambda: self.semantic.validate_source_keys(
                *self.cache.collect_keys(self.codebase))))
        if self.config.dependencies.detect_circular:
            steps.append(("dependencies", self.detect_circular))
        if self.config.dependencies.check_architecture:
            steps.append(("architecture", self.validate_architecture))
        return ValidationResult.merge(self._guarded(name, "codebase", run) for name, run in steps)

    def audit_maps(self, maps: List[SystemMap]) -> AuditReport:
        declared_keys = {api.key for m in maps for api in m.apis}
        # build the index before fanning out so workers share one snapshot
        logger.debug("Index holds %d files", len(self.codebase.components))

        performance = self.config.performance
        if performance.parallel and len(maps) > 1:
            with ThreadPoolExecutor(max_workers=performance.max_workers) as pool:
                documents = list(pool.map(lambda m: self.validate_document(m, declared_keys), maps))
        else:
            documents = [self.validate_document(m, declared_keys) for m in maps]
        return AuditReport(documents=documents, codebase=self.validate_codebase(maps))

    def run(self, paths: Optional[Iterable[Path]] = None) -> AuditReport:
        """Load (or discover) documents and audit them.

        Args:
            paths: System map files. When omitted, maps are discovered under
                the project root.

        Returns:
            AuditReport in input order, failed loads included as error results.
        """
        paths = list(paths) if paths is not None else self.loader.discover()
        logger.info("Auditing %d system map(s)", len(paths))
        maps, failures = self.load_maps(paths)
        report = self.audit_maps(maps)
        report.documents = failures + report.documents
        return report

    def audit_feature(self, system_map: SystemMap, feature_name: str) -> AuditReport:
        """Per-document checks restricted to one feature of *system_map*."""
        try:
            subject = system_map.restrict_to_feature(feature_name)
        except SystemMapError as e:
            issue = failure_issue(system_map.path, "Cannot audit feature", e)
            failed = DocumentReport(system_map.path, feature_name, ValidationResult(issues=[issue]))
            return AuditReport(documents=[failed])
        declared = {api.key for api in system_map.apis}
        return AuditReport(documents=[self.validate_document(subject, declared)])

    def feature_status(self, system_map: SystemMap, feature_name: Optional[str] = None) -> FeatureIntegrationStatus:
        return self.evidence.validate_feature_integration(system_map, self.codebase, feature_name)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _guarded(name: str, location: str, run: Callable[[], ValidationResult]) -> ValidationResult:
        """Run one check; any exception becomes a single error issue."""
        try:
            return run()
        except Exception as e:
            logger.exception("%s check failed for %s", name, location)
            return ValidationResult(issues=[failure_issue(location, f"{name.capitalize()} check failed", e)])
