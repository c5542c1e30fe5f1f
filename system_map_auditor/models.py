"""Core data models shared by the indexer, validators and orchestrator."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional, Tuple

Severity = Literal["error", "warning", "info"]

SEVERITIES: Tuple[str, ...] = ("error", "warning", "info")

ISSUE_TYPES: Tuple[str, ...] = (
    "missing-component",
    "api-mismatch",
    "cache-invalidation-missing",
    "cache-key-inconsistency",
    "flow-inconsistency",
    "ui-refresh-missing",
    "integration-evidence-missing",
    "broken-feature-status",
    "missing-component-definition",
    "handler-file-mismatch",
    "cross-reference-error",
    "integration-point-error",
)

ComponentType = Literal["component", "hook", "service", "utility"]


# ---------------------------------------------------------------------------
# Findings
# ---------------------------------------------------------------------------

@dataclass
class ValidationIssue:
    """A single finding produced by a validator."""
    type: str
    severity: Severity
    message: str
    location: str
    suggestion: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.type not in ISSUE_TYPES:
            raise ValueError(f"Unknown issue type: {self.type}")
        if self.severity not in SEVERITIES:
            raise ValueError(f"Unknown severity: {self.severity}")

    @property
    def is_error(self) -> bool:
        return self.severity == "error"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": self.type,
            "severity": self.severity,
            "message": self.message,
            "location": self.location,
        }
        if self.suggestion is not None:
            data["suggestion"] = self.suggestion
        if self.metadata:
            data["metadata"] = self.metadata
        return data

    def __str__(self) -> str:
        return f"[{self.severity}] {self.type}: {self.message} ({self.location})"


@dataclass
class ValidationMetrics:
    checks_performed: int = 0
    execution_time: float = 0.0  # milliseconds


@dataclass
class ValidationResult:
    """Issues plus metrics. ``passed`` is always derived from the issues."""
    issues: List[ValidationIssue] = field(default_factory=list)
    metrics: ValidationMetrics = field(default_factory=ValidationMetrics)

    @property
    def passed(self) -> bool:
        return not any(issue.is_error for issue in self.issues)

    @property
    def errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == "error"]

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == "warning"]

    @property
    def infos(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == "info"]

    @classmethod
    def build(
        cls,
        issues: Iterable[ValidationIssue],
        checks_performed: int,
        started: float,
    ) -> "ValidationResult":
        """Create a result, measuring time since *started* (a perf_counter value)."""
        elapsed = (time.perf_counter() - started) * 1000.0
        return cls(
            issues=list(issues),
            metrics=ValidationMetrics(checks_performed=checks_performed, execution_time=elapsed),
        )

    @classmethod
    def merge(cls, results: Iterable["ValidationResult"]) -> "ValidationResult":
        merged = cls()
        for result in results:
            merged.issues.extend(result.issues)
            merged.metrics.checks_performed += result.metrics.checks_performed
            merged.metrics.execution_time += result.metrics.execution_time
        return merged

    def to_dict(self, include_timing: bool = True) -> Dict[str, Any]:
        metrics: Dict[str, Any] = {"checksPerformed": self.metrics.checks_performed}
        if include_timing:
            metrics["executionTime"] = round(self.metrics.execution_time, 3)
        return {
            "passed": self.passed,
            "issues": [issue.to_dict() for issue in self.issues],
            "metrics": metrics,
        }

    def __eq__(self, other: object) -> bool:
        # executionTime is wall-clock noise and never part of equality
        if not isinstance(other, ValidationResult):
            return NotImplemented
        return (
            self.issues == other.issues
            and self.metrics.checks_performed == other.metrics.checks_performed
        )

    __hash__ = None  # type: ignore[assignment]


# ---------------------------------------------------------------------------
# Codebase index
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ImportInfo:
    module: str
    specifiers: Tuple[str, ...] = ()
    is_default: bool = False

    @property
    def is_relative(self) -> bool:
        return self.module.startswith(".")


@dataclass(frozen=True)
class ComponentInfo:
    file_path: str
    exports: Tuple[str, ...] = ()
    imports: Tuple[ImportInfo, ...] = ()
    type: str = "utility"

    @property
    def name(self) -> str:
        return Path(self.file_path).stem

    @property
    def has_default_export(self) -> bool:
        return "default" in self.exports


@dataclass(frozen=True)
class ApiInfo:
    method: str
    endpoint: str
    handler_file: str
    handler_function: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.method} {self.endpoint}"


@dataclass(frozen=True)
class ParsedCodebase:
    """Immutable snapshot of the scanned source tree.

    ``components`` is keyed by project-relative POSIX path, ``apis`` by
    ``"METHOD path"``. Both mappings are read-only views.
    ``skipped`` holds (path, reason) for files that could not be read.
    """
    project_root: Path
    components: Mapping[str, ComponentInfo] = field(default_factory=dict)
    apis: Mapping[str, ApiInfo] = field(default_factory=dict)
    skipped: Tuple[Tuple[str, str], ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "components", MappingProxyType(dict(sorted(self.components.items())))
        )
        object.__setattr__(self, "apis", MappingProxyType(dict(sorted(self.apis.items()))))
        object.__setattr__(self, "skipped", tuple(sorted(self.skipped)))

    def files_exporting(self, name: str) -> List[str]:
        """Files that export *name*, or default-export from a file named *name*."""
        matches = []
        for path, info in self.components.items():
            if name in info.exports or (info.has_default_export and info.name == name):
                matches.append(path)
        return matches

    def importers_of(self, name: str) -> List[str]:
        """Files that import *name* by specifier or by module basename."""
        importers = []
        for path, info in self.components.items():
            for imp in info.imports:
                base = imp.module.rstrip("/").rsplit("/", 1)[-1]
                if name in imp.specifiers or base == name:
                    importers.append(path)
                    break
        return importers

    def has_component_named(self, name: str) -> bool:
        return bool(self.files_exporting(name))


# ---------------------------------------------------------------------------
# Cache analysis
# ---------------------------------------------------------------------------

@dataclass
class CacheInvalidationChain:
    starting_action: str
    api_endpoint: str
    expected_invalidations: List[str] = field(default_factory=list)
    actual_invalidations: List[str] = field(default_factory=list)
    affected_components: List[str] = field(default_factory=list)

    @property
    def missing_invalidations(self) -> List[str]:
        actual = set(self.actual_invalidations)
        return [key for key in self.expected_invalidations if key not in actual]

    @property
    def chain_complete(self) -> bool:
        return not self.missing_invalidations


@dataclass(frozen=True)
class MutationSite:
    """A ``useMutation`` call located in a source file."""
    endpoint: Optional[str]
    line: int  # 0-based line of the mutationFn (or useMutation call)
    start: int  # character offset of the block
    end: int
    block: str


# ---------------------------------------------------------------------------
# Dependency analysis
# ---------------------------------------------------------------------------

SuggestionType = Literal["break-circular", "lazy-load", "reduce-dependencies", "code-split"]


@dataclass
class OptimizationSuggestion:
    type: SuggestionType
    target: str
    description: str
    impact: str  # low | medium | high
    effort: str
    files: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "target": self.target,
            "description": self.description,
            "impact": self.impact,
            "effort": self.effort,
            "files": list(self.files),
        }


# ---------------------------------------------------------------------------
# Integration evidence
# ---------------------------------------------------------------------------

EvidenceType = Literal["end-to-end-test", "manual-verification", "automated-check", "documentation"]
VerificationStatus = Literal["verified", "failed", "needs-verification", "outdated"]
OverallStatus = Literal["fully-integrated", "partially-integrated", "broken", "unverified"]


@dataclass
class IntegrationEvidence:
    feature_name: str
    evidence_type: str
    evidence_location: str
    last_verified: float  # POSIX timestamp
    verification_status: str
    required_for: List[str] = field(default_factory=list)


@dataclass
class ComponentIntegrationStatus:
    component_name: str
    exists: bool = False
    has_api_calls: bool = False
    has_error_handling: bool = False
    has_cache_invalidation: bool = False
    has_ui_refresh: bool = False
    issues: List[ValidationIssue] = field(default_factory=list)

    @property
    def score(self) -> float:
        score = 0.4 if self.exists else 0.0
        if self.has_api_calls and self.has_error_handling:
            score += 0.2
        if self.has_cache_invalidation:
            score += 0.2
        if self.has_ui_refresh:
            score += 0.2
        return round(score, 4)


@dataclass
class ApiIntegrationStatus:
    endpoint: str
    handler_exists: bool = False
    has_caller: bool = False
    triggers_invalidation: bool = False
    issues: List[ValidationIssue] = field(default_factory=list)

    @property
    def score(self) -> float:
        score = 0.5 if self.handler_exists else 0.0
        if self.has_caller:
            score += 0.3
        if self.triggers_invalidation:
            score += 0.2
        return round(score, 4)


@dataclass
class FlowIntegrationStatus:
    flow_name: str
    steps_valid: bool = False
    has_end_to_end_test: bool = False
    has_evidence: bool = False
    issues: List[ValidationIssue] = field(default_factory=list)

    @property
    def score(self) -> float:
        score = 0.4 if self.steps_valid else 0.0
        if self.has_end_to_end_test:
            score += 0.4
        if self.has_evidence:
            score += 0.2
        return round(score, 4)


@dataclass
class FeatureIntegrationStatus:
    feature_name: str
    components: List[ComponentIntegrationStatus] = field(default_factory=list)
    apis: List[ApiIntegrationStatus] = field(default_factory=list)
    flows: List[FlowIntegrationStatus] = field(default_factory=list)
    evidence: List[IntegrationEvidence] = field(default_factory=list)
    blockers: List[ValidationIssue] = field(default_factory=list)

    @property
    def average_score(self) -> float:
        """Mean of the per-category averages, skipping empty categories."""
        category_means = []
        for group in (self.components, self.apis, self.flows):
            if group:
                category_means.append(sum(s.score for s in group) / len(group))
        if not category_means:
            return 0.0
        return sum(category_means) / len(category_means)

    @property
    def overall_status(self) -> str:
        return overall_status_for(self.average_score, self.evidence)


def overall_status_for(average_score: float, evidence: Iterable[IntegrationEvidence]) -> str:
    """Roll an average sub-score and evidence list into an overall status."""
    if not any(e.verification_status == "verified" for e in evidence):
        return "unverified"
    if average_score >= 0.9:
        return "fully-integrated"
    if average_score >= 0.7:
        return "partially-integrated"
    return "broken"
