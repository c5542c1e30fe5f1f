"""User flow checks: step references, sequence sanity, sharing and integration points."""

from __future__ import annotations

import logging
import os
import re
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .context import AuditContext
from .models import ParsedCodebase, ValidationIssue, ValidationResult
from .system_map import HTTP_METHODS, FlowStep, SystemMap, UserFlow

logger = logging.getLogger(__name__)

_PROGRESS_KEYWORDS = ("complete", "navigate", "submit")
_ERROR_KEYWORDS = ("error", "handle")
_API_CALL = re.compile(r"\b(GET|POST|PUT|PATCH|DELETE)\s+(/[\w\-/:.{}]*)")

# Feature counts above these become a warning and an error respectively
APPROPRIATE_SHARING = 2
CONCERNING_SHARING = 4


@dataclass
class IntegrationPoint:
    """An environment variable or external API the code depends on."""
    name: str
    type: str  # "environment-variable" | "external-api"
    used_in: List[str] = field(default_factory=list)
    verified: bool = False


@dataclass
class SequenceAnalysis:
    circular: bool = False
    dead_ends: List[str] = field(default_factory=list)
    missing_error_handling: List[str] = field(default_factory=list)


def _split_api(value: str) -> Tuple[Optional[str], str]:
    parts = value.strip().split(None, 1)
    if len(parts) == 2 and parts[0].upper() in HTTP_METHODS:
        return parts[0].upper(), parts[1].strip()
    return None, value.strip()


class FlowValidator:
    """Validates declared user flows against the codebase index.

    Component capabilities are extracted lazily from the component's source
    and cached for the lifetime of the validator.
    """

    def __init__(self, context: AuditContext) -> None:
        self.context = context
        self.resolver = context.resolver
        self.extractor = context.extractor
        self._capabilities: Dict[str, Optional[List[str]]] = {}

    # ------------------------------------------------------------------
    # Single flow
    # ------------------------------------------------------------------

    def validate_flow(self, flow: UserFlow, codebase: ParsedCodebase,
                      system_map: Optional[SystemMap] = None) -> ValidationResult:
        started = time.perf_counter()
        settings = self.context.config.flows
        location = self._location(flow, system_map)
        issues: List[ValidationIssue] = []
        checks = 0

        if settings.validate_steps:
            for index, step in enumerate(flow.steps):
                checks += 1
                issues.extend(self.validate_step(step, f"{location}.steps[{index}]", codebase, system_map))
            checks += 1
            issues.extend(self.validate_component_sequence(flow, location))
        if settings.validate_api_calls:
            checks += 1
            issues.extend(self.validate_api_calls(flow, location, codebase))
        return ValidationResult.build(issues, checks, started)

    def validate_step(self, step: FlowStep, location: str, codebase: ParsedCodebase,
                      system_map: Optional[SystemMap] = None) -> List[ValidationIssue]:
        issues: List[ValidationIssue] = []
        component_file: Optional[str] = None

        if step.component:
            component_file = self.locate_component(step.component, codebase, system_map)
            if component_file is None:
                issues.append(ValidationIssue(
                    type="missing-component",
                    severity="error",
                    message=f"Flow step references non-existent component: {step.component}",
                    location=location,
                    suggestion=f"Create component {step.component} or update flow to use existing component",
                ))

        if step.api and not self.api_exists(step.api, codebase):
            issues.append(ValidationIssue(
                type="api-mismatch",
                severity="error",
                message=f"Flow step references non-existent API: {step.api}",
                location=location,
                suggestion=f"Implement API {step.api} or update flow to use existing API",
            ))

        if (
            component_file is not None
            and step.action
            and self.context.config.flows.check_component_capabilities
            and not self.supports_action(component_file, step.action)
        ):
            issues.append(ValidationIssue(
                type="flow-inconsistency",
                severity="warning",
                message=f'Component "{step.component}" may not support action "{step.action}"',
                location=location,
                suggestion="Verify component capabilities match flow requirements",
                metadata={"capabilities": self.capabilities_of(component_file) or []},
            ))
        return issues

    # ------------------------------------------------------------------
    # Sequence analysis
    # ------------------------------------------------------------------

    @staticmethod
    def analyze_sequence(flow: UserFlow) -> SequenceAnalysis:
        seen = set()
        circular = False
        for step in flow.steps:
            if not step.component:
                continue
            if step.component in seen:
                circular = True
                break
            seen.add(step.component)

        dead_ends = []
        missing_error_handling = []
        for index, step in enumerate(flow.steps):
            description = step.description.lower()
            label = step.action or f"step {index + 1}"
            if not any(keyword in description for keyword in _PROGRESS_KEYWORDS):
                dead_ends.append(label)
            if step.api and not any(keyword in description for keyword in _ERROR_KEYWORDS):
                missing_error_handling.append(label)
        return SequenceAnalysis(circular, dead_ends, missing_error_handling)

    def validate_component_sequence(self, flow: UserFlow, location: str) -> List[ValidationIssue]:
        analysis = self.analyze_sequence(flow)
        issues = []
        if analysis.circular:
            issues.append(ValidationIssue(
                type="flow-inconsistency",
                severity="warning",
                message=f'Flow "{flow.name}" has circular navigation patterns',
                location=location,
                suggestion="Review flow logic to ensure proper user experience progression",
            ))
        if analysis.dead_ends:
            issues.append(ValidationIssue(
                type="flow-inconsistency",
                severity="error",
                message=f'Flow "{flow.name}" contains dead-end steps',
                location=location,
                suggestion="Add navigation or completion actions to all flow steps",
                metadata={"steps": analysis.dead_ends},
            ))
        if analysis.missing_error_handling:
            steps = analysis.missing_error_handling
            issues.append(ValidationIssue(
                type="flow-inconsistency",
                severity="warning",
                message=f'Flow "{flow.name}" lacks error handling for steps: {", ".join(steps)}',
                location=location,
                suggestion="Add error handling paths for critical flow steps",
            ))
        return issues

    # ------------------------------------------------------------------
    # API calls
    # ------------------------------------------------------------------

    def validate_api_calls(self, flow: UserFlow, location: str, codebase: ParsedCodebase) -> List[ValidationIssue]:
        """``"METHOD /path"`` mentions in step descriptions must match an implemented route."""
        issues = []
        for step in flow.steps:
            for method, path in _API_CALL.findall(step.description):
                key = f"{method} {path}"
                if key in codebase.apis:
                    continue
                implemented = sorted(k for k, info in codebase.apis.items() if info.endpoint == path)
                if implemented:
                    suggestion = f"Update flow API call to match implementation: {implemented[0]}"
                else:
                    suggestion = f"Implement {key} or correct the flow description"
                issues.append(ValidationIssue(
                    type="flow-inconsistency",
                    severity="warning",
                    message=f'Flow "{flow.name}" API call inconsistent with implementation: {key}',
                    location=location,
                    suggestion=suggestion,
                ))
        return issues

    def validate_all(self, system_map: SystemMap, codebase: ParsedCodebase) -> ValidationResult:
        return ValidationResult.merge(
            self.validate_flow(flow, codebase, system_map) for flow in system_map.all_flows()
        )

    # ------------------------------------------------------------------
    # Cross-document checks
    # ------------------------------------------------------------------

    @staticmethod
    def sharing_pattern(feature_count: int) -> str:
        if feature_count <= APPROPRIATE_SHARING:
            return "appropriate"
        if feature_count <= CONCERNING_SHARING:
            return "concerning"
        return "problematic"

    def validate_cross_feature_references(self, maps: Iterable[SystemMap]) -> ValidationResult:
        """Flag components shared by many features across every audited document."""
        started = time.perf_counter()
        usage: Dict[str, List[str]] = {}
        for system_map in maps:
            for feature_name, components in system_map.feature_component_usage().items():
                for name in components:
                    features = usage.setdefault(name, [])
                    if feature_name not in features:
                        features.append(feature_name)

        issues = []
        for name in sorted(usage):
            features = sorted(usage[name])
            pattern = self.sharing_pattern(len(features))
            if pattern == "appropriate":
                continue
            issues.append(ValidationIssue(
                type="cross-reference-error",
                severity="error" if pattern == "problematic" else "warning",
                message=f'Component "{name}" has {pattern} shared usage across {len(features)} features',
                location=f"shared.components.{name}",
                suggestion="Consider refactoring to reduce coupling or create feature-specific variants",
                metadata={"features": features, "usageCount": len(features), "pattern": pattern},
            ))
        return ValidationResult.build(issues, len(usage), started)

    def discover_integration_points(self, codebase: ParsedCodebase,
                                    issues: Optional[List[ValidationIssue]] = None) -> Dict[str, IntegrationPoint]:
        """Env vars and external origins used by indexed files.

        Read failures are appended to *issues* when given.
        """
        points: Dict[str, IntegrationPoint] = {}
        for file_path in codebase.components:
            try:
                source = self.context.read_source(file_path)
            except OSError as e:
                logger.warning("Cannot scan %s for integration points: %s", file_path, e)
                if issues is not None:
                    issues.append(ValidationIssue(
                        type="integration-point-error",
                        severity="error",
                        message=f"Failed to scan {file_path} for integration points: {e}",
                        location=file_path,
                        suggestion="Verify the file is readable",
                    ))
                continue
            for name in self.extractor.env_vars(source):
                points.setdefault(name, IntegrationPoint(name, "environment-variable")).used_in.append(file_path)
            for origin in self.extractor.external_apis(source):
                points.setdefault(origin, IntegrationPoint(origin, "external-api")).used_in.append(file_path)
        return dict(sorted(points.items()))

    def validate_integration_points(self, codebase: ParsedCodebase,
                                    environ: Optional[Mapping[str, str]] = None) -> ValidationResult:
        """Environment variables must be set. External APIs are assumed reachable."""
        started = time.perf_counter()
        environ = os.environ if environ is None else environ
        issues: List[ValidationIssue] = []
        points = self.discover_integration_points(codebase, issues)
        for name, point in points.items():
            if point.type == "environment-variable":
                point.verified = name in environ
            else:
                point.verified = True
            if point.verified:
                continue
            issues.append(ValidationIssue(
                type="integration-point-error",
                severity="error",
                message=f'Integration point "{name}" could not be verified',
                location=f"integrationPoints.{name}",
                suggestion=f"Set environment variable {name}",
                metadata={"type": point.type, "usedIn": point.used_in},
            ))
        return ValidationResult.build(issues, len(points), started)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def locate_component(self, name: str, codebase: ParsedCodebase,
                         system_map: Optional[SystemMap] = None) -> Optional[str]:
        """Indexed file for a component named in a flow, or None."""
        if system_map is not None and name in system_map.components:
            resolved = self.resolver.resolve_source_file(system_map.components[name].path)
            if resolved in codebase.components:
                return resolved
        candidates = codebase.files_exporting(name)
        return candidates[0] if candidates else None

    @staticmethod
    def api_exists(api: str, codebase: ParsedCodebase) -> bool:
        method, path = _split_api(api)
        if method is not None:
            return f"{method} {path}" in codebase.apis
        return any(info.endpoint == path for info in codebase.apis.values())

    def capabilities_of(self, file_path: str) -> Optional[List[str]]:
        if file_path not in self._capabilities:
            try:
                source = self.context.read_source(file_path)
            except OSError as e:
                logger.warning("Cannot read %s for capabilities: %s", file_path, e)
                self._capabilities[file_path] = None
            else:
                self._capabilities[file_path] = self.extractor.capabilities(source)
        return self._capabilities[file_path]

    def supports_action(self, file_path: str, action: str) -> bool:
        capabilities = self.capabilities_of(file_path)
        if capabilities is None:
            return False
        action = action.lower()
        for capability in capabilities:
            lowered = capability.lower()
            word = lowered[2:] if lowered.startswith("on") and len(lowered) > 2 else lowered
            if lowered in action or word in action:
                return True
        return False

    @staticmethod
    def _location(flow: UserFlow, system_map: Optional[SystemMap]) -> str:
        owner = flow.feature or (system_map.name if system_map is not None else "flows")
        return f"{owner}.flows.{flow.name}"
