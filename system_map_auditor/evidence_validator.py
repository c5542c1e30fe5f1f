"""Integration evidence discovery and per-feature integration scoring."""

from __future__ import annotations

import fnmatch
import logging
import os
import time
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .config import SKIP_DIRS
from .context import AuditContext
from .flow_validator import FlowValidator
from .models import (
    ApiIntegrationStatus,
    ComponentIntegrationStatus,
    FeatureIntegrationStatus,
    FlowIntegrationStatus,
    IntegrationEvidence,
    ParsedCodebase,
    ValidationIssue,
    ValidationResult,
)
from .system_map import ApiEndpoint, ComponentDef, SystemMap, UserFlow

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60

# evidence type -> glob patterns, ``{name}`` replaced by the feature name
EVIDENCE_PATTERNS: Dict[str, Tuple[str, ...]] = {
    "end-to-end-test": (
        "**/*{name}*.test.ts", "**/*{name}*.test.tsx", "**/*{name}*.test.js", "**/*{name}*.test.jsx",
        "**/*{name}*.spec.ts", "**/*{name}*.spec.tsx", "**/*{name}*.spec.js", "**/*{name}*.spec.jsx",
        "**/e2e/**/*{name}*",
        "**/integration/**/*{name}*",
    ),
    "manual-verification": (
        "docs/verification/{name}.md",
        "docs/testing/{name}-manual.md",
        ".verification/{name}.json",
        "verification-logs/{name}*.log",
    ),
    "automated-check": (
        ".github/workflows/*{name}*",
        "scripts/validate-{name}.*",
        "automation/{name}*",
        "ci/{name}*",
    ),
    "documentation": (
        "docs/{name}.md",
        "docs/features/{name}.md",
        "README.md",
        "CHANGELOG.md",
    ),
}

FLOW_EVIDENCE_FILES = ("docs/flows/{name}.md", "tests/e2e/{name}.test.ts", "verification/{name}.json")

_VERIFIED_MARKERS = ("VERIFIED", "PASSED")
_FAILED_MARKERS = ("FAILED", "BROKEN")


def _glob_match(rel_path: str, pattern: str) -> bool:
    if fnmatch.fnmatchcase(rel_path, pattern):
        return True
    # "**/" also matches zero directories
    return pattern.startswith("**/") and _glob_match(rel_path, pattern[3:])


def _read_failure(rel_path: str, exc: OSError) -> ValidationIssue:
    return ValidationIssue(
        type="integration-evidence-missing",
        severity="error",
        message=f"Failed to read {rel_path}: {exc}",
        location=rel_path,
        suggestion="Verify the file is readable",
    )


class IntegrationEvidenceValidator:
    """Finds tests, verification records and docs that back a feature.

    A feature whose evidence is missing or failing cannot be called
    integrated, however well its components line up with the map.
    """

    def __init__(self, context: AuditContext) -> None:
        self.context = context
        self.resolver = context.resolver
        self.extractor = context.extractor
        self.settings = context.config.evidence
        self._files: Optional[List[str]] = None

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def project_files(self) -> List[str]:
        """Every project file, relative and sorted. Listed once per validator."""
        if self._files is None:
            files = []
            root = self.context.project_root
            for dirpath, dirnames, filenames in os.walk(root):
                dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
                for filename in filenames:
                    files.append(Path(dirpath, filename).relative_to(root).as_posix())
            self._files = sorted(files)
        return self._files

    def find_files(self, pattern: str) -> List[str]:
        pattern = pattern.lower()
        return [rel for rel in self.project_files() if _glob_match(rel.lower(), pattern)]

    def collect_evidence(self, feature_name: str,
                         issues: Optional[List[ValidationIssue]] = None) -> List[IntegrationEvidence]:
        """Evidence files for *feature_name*. Read failures go to *issues* when given."""
        evidence: List[IntegrationEvidence] = []
        seen = set()
        for evidence_type, patterns in EVIDENCE_PATTERNS.items():
            for pattern in patterns:
                for rel_path in self.find_files(pattern.format(name=feature_name)):
                    if (evidence_type, rel_path) in seen:
                        continue
                    seen.add((evidence_type, rel_path))
                    item = self._evidence(feature_name, evidence_type, rel_path, issues)
                    if item is not None:
                        evidence.append(item)
        return evidence

    def _evidence(self, feature_name: str, evidence_type: str, rel_path: str,
                  issues: Optional[List[ValidationIssue]] = None) -> Optional[IntegrationEvidence]:
        path = self.resolver.absolute(rel_path)
        try:
            content = self.context.read_source(rel_path)
            modified = path.stat().st_mtime
        except OSError as e:
            logger.warning("Cannot read evidence file %s: %s", rel_path, e)
            if issues is not None:
                issues.append(_read_failure(rel_path, e))
            return None

        if evidence_type == "documentation":
            if feature_name.lower() not in content.lower():
                return None
            status = "verified"
        elif evidence_type == "manual-verification":
            status = self.verification_status(content)
        else:
            # a present test or CI check counts as verified unless it records a failure
            status = "failed" if any(m in content for m in _FAILED_MARKERS) else "verified"

        return IntegrationEvidence(
            feature_name=feature_name,
            evidence_type=evidence_type,
            evidence_location=rel_path,
            last_verified=modified,
            verification_status=status,
            required_for=[feature_name],
        )

    @staticmethod
    def verification_status(content: str) -> str:
        if any(marker in content for marker in _VERIFIED_MARKERS):
            return "verified"
        if any(marker in content for marker in _FAILED_MARKERS):
            return "failed"
        return "needs-verification"

    # ------------------------------------------------------------------
    # Evidence checks
    # ------------------------------------------------------------------

    def validate_evidence_completeness(self, feature_name: str,
                                       evidence: List[IntegrationEvidence]) -> List[ValidationIssue]:
        issues = []
        if not evidence:
            issues.append(ValidationIssue(
                type="integration-evidence-missing",
                severity="error",
                message=f'No integration evidence found for feature "{feature_name}"',
                location=feature_name,
                suggestion="Add integration tests, manual verification records, or automated checks",
            ))
        kinds = {e.evidence_type for e in evidence}
        if "end-to-end-test" not in kinds and "manual-verification" not in kinds:
            issues.append(ValidationIssue(
                type="integration-evidence-missing",
                severity="warning",
                message=f'Feature "{feature_name}" lacks end-to-end tests or manual verification',
                location=feature_name,
                suggestion="Add end-to-end tests or manual verification procedures",
            ))
        return issues

    def validate_evidence_freshness(self, evidence: List[IntegrationEvidence],
                                    now: Optional[float] = None) -> List[ValidationIssue]:
        """Evidence older than the configured age is reported as info."""
        now = time.time() if now is None else now
        cutoff = now - self.settings.max_age_days * SECONDS_PER_DAY
        return [
            ValidationIssue(
                type="integration-evidence-missing",
                severity="info",
                message=f'Integration evidence for "{ev.feature_name}" is outdated ({ev.evidence_type})',
                location=ev.evidence_location,
                suggestion="Update evidence with recent verification",
                metadata={"maxAgeDays": self.settings.max_age_days},
            )
            for ev in evidence
            if ev.last_verified < cutoff
        ]

    @staticmethod
    def validate_evidence_quality(evidence: List[IntegrationEvidence]) -> List[ValidationIssue]:
        issues = []
        for ev in evidence:
            if ev.verification_status == "failed":
                issues.append(ValidationIssue(
                    type="integration-evidence-missing",
                    severity="error",
                    message=f'Integration evidence failed for "{ev.feature_name}": {ev.evidence_type}',
                    location=ev.evidence_location,
                    suggestion="Fix integration issues or update evidence",
                ))
            elif ev.verification_status == "needs-verification":
                issues.append(ValidationIssue(
                    type="integration-evidence-missing",
                    severity="warning",
                    message=f'Integration evidence needs verification for "{ev.feature_name}"',
                    location=ev.evidence_location,
                    suggestion="Run verification process for this evidence",
                ))
        return issues

    @staticmethod
    def subjects(system_map: SystemMap) -> List[str]:
        """Names evidence is searched for: each feature, or the document itself."""
        return sorted(system_map.features) or [system_map.name]

    def validate_integration_evidence(self, system_map: SystemMap) -> ValidationResult:
        started = time.perf_counter()
        issues: List[ValidationIssue] = []
        subjects = self.subjects(system_map)
        for name in subjects:
            evidence = self.collect_evidence(name, issues)
            issues.extend(self.validate_evidence_completeness(name, evidence))
            issues.extend(self.validate_evidence_freshness(evidence))
            issues.extend(self.validate_evidence_quality(evidence))
        return ValidationResult.build(issues, len(subjects), started)

    def validate_all(self, system_map: SystemMap) -> ValidationResult:
        if not self.settings.enabled:
            return ValidationResult()
        return self.validate_integration_evidence(system_map)

    # ------------------------------------------------------------------
    # Feature integration status
    # ------------------------------------------------------------------

    def validate_feature_integration(
        self,
        system_map: SystemMap,
        codebase: ParsedCodebase,
        feature_name: Optional[str] = None,
    ) -> FeatureIntegrationStatus:
        """Score every component, API and flow of a feature and roll them up.

        Args:
            system_map: The document declaring the feature.
            codebase: The codebase index.
            feature_name: Restrict to one feature of a feature-group document.
                Defaults to the whole document.

        Returns:
            FeatureIntegrationStatus whose ``blockers`` hold every error
            surfaced for the feature.
        """
        subject = system_map.restrict_to_feature(feature_name) if feature_name else system_map
        name = feature_name or system_map.name
        read_failures: List[ValidationIssue] = []
        evidence = self.collect_evidence(name, read_failures)
        sources = self._sources(codebase, read_failures)

        status = FeatureIntegrationStatus(
            feature_name=name,
            components=[self.component_status(c, sources) for c in subject.components.values()],
            apis=[self.api_status(a, codebase, sources) for a in subject.apis],
            flows=[self.flow_status(f, codebase, evidence) for f in subject.all_flows()],
            evidence=evidence,
        )
        blockers: List[ValidationIssue] = []
        for group in (status.components, status.apis, status.flows):
            for item in group:
                blockers.extend(i for i in item.issues if i.is_error)
        blockers.extend(i for i in self.validate_evidence_quality(evidence) if i.is_error)
        blockers.extend(read_failures)
        status.blockers = blockers
        logger.info("Feature %s scored %.2f (%s)", name, status.average_score, status.overall_status)
        return status

    def component_status(self, component: ComponentDef, sources: Dict[str, str]) -> ComponentIntegrationStatus:
        resolved = self.resolver.resolve_source_file(component.path)
        status = ComponentIntegrationStatus(component_name=component.name)
        content = sources.get(resolved)
        if content is None and self.resolver.exists(resolved):
            try:
                content = self.context.read_source(resolved)
            except OSError as e:
                logger.warning("Cannot read %s: %s", resolved, e)
        status.exists = self.resolver.exists(resolved)
        if not status.exists:
            status.issues.append(ValidationIssue(
                type="missing-component",
                severity="error",
                message=f"Component {component.name} does not exist",
                location=component.path,
                suggestion="Create the missing component",
            ))
            return status
        if content is not None:
            mutations = self.extractor.mutations(content)
            queries = "useQuery" in content
            status.has_api_calls = "apiRequest" in content or bool(mutations) or queries
            status.has_error_handling = "onError" in content or "catch" in content
            status.has_cache_invalidation = not mutations or bool(self.extractor.invalidation_keys(content))
            status.has_ui_refresh = not queries or self.extractor.ui_signals(content)["has_loading_state"]
        return status

    def api_status(self, api: ApiEndpoint, codebase: ParsedCodebase,
                   sources: Dict[str, str]) -> ApiIntegrationStatus:
        status = ApiIntegrationStatus(endpoint=api.key)
        if api.handler:
            status.handler_exists = self.resolver.resolve_api_handler(api.handler.split("#", 1)[0]) is not None
        else:
            status.handler_exists = api.key in codebase.apis
        if not status.handler_exists:
            status.issues.append(ValidationIssue(
                type="api-mismatch",
                severity="error",
                message=f"API handler for {api.key} does not exist",
                location=api.handler or api.path,
                suggestion="Create the missing API handler",
            ))

        handler_file = codebase.apis[api.key].handler_file if api.key in codebase.apis else None
        callers = [path for path, text in sources.items() if path != handler_file and api.path in text]
        status.has_caller = bool(callers)
        if api.method != "GET":
            status.triggers_invalidation = any("invalidateQueries" in sources[path] for path in callers)
        return status

    def flow_status(self, flow: UserFlow, codebase: ParsedCodebase,
                    evidence: List[IntegrationEvidence]) -> FlowIntegrationStatus:
        status = FlowIntegrationStatus(flow_name=flow.name)
        status.steps_valid = all(
            (not step.component or codebase.has_component_named(step.component))
            and (not step.api or FlowValidator.api_exists(step.api, codebase))
            for step in flow.steps
        )
        if not status.steps_valid:
            status.issues.append(ValidationIssue(
                type="flow-inconsistency",
                severity="warning",
                message=f'Flow "{flow.name}" references components or APIs that do not exist',
                location=f"flows.{flow.name}",
            ))
        status.has_end_to_end_test = any(
            e.evidence_type == "end-to-end-test" and e.verification_status == "verified" for e in evidence
        )
        status.has_evidence = any(
            self.resolver.exists(template.format(name=flow.name)) for template in FLOW_EVIDENCE_FILES
        )
        return status

    def _sources(self, codebase: ParsedCodebase, issues: List[ValidationIssue]) -> Dict[str, str]:
        sources = {}
        for file_path in codebase.components:
            try:
                sources[file_path] = self.context.read_source(file_path)
            except OSError as e:
                logger.warning("Skipping unreadable file %s: %s", file_path, e)
                issues.append(_read_failure(file_path, e))
        return sources
