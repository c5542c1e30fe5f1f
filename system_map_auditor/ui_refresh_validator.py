"""Checks that components reading server state also render and refresh it."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import List, Set

from .context import AuditContext
from .models import ParsedCodebase, ValidationIssue, ValidationResult

logger = logging.getLogger(__name__)

_QUERY_HINTS = ("useQuery", "queryKey")
_CALLBACK_CONTEXT = re.compile(r"\bonSuccess\b|\bonSettled\b|\.then\b")
TRIGGER_CONTEXT_LINES = 5


@dataclass
class RefreshTrigger:
    trigger: str
    line: int
    validated: bool


@dataclass
class UiRefreshDependency:
    component: str
    queries: List[str] = field(default_factory=list)
    has_loading_state: bool = False
    has_error_state: bool = False
    refresh_triggers: List[RefreshTrigger] = field(default_factory=list)

    @property
    def refresh_completeness(self) -> float:
        """0.4 for holding queries, +0.25 loading, +0.25 error, +0.1 any trigger."""
        if not self.queries:
            return 1.0
        score = 0.4
        if self.has_loading_state:
            score += 0.25
        if self.has_error_state:
            score += 0.25
        if self.refresh_triggers:
            score += 0.1
        return min(round(score, 4), 1.0)


class UiRefreshValidator:
    def __init__(self, context: AuditContext) -> None:
        self.context = context
        self.extractor = context.extractor
        self.threshold = context.config.ui_refresh.threshold

    def analyze(self, file_path: str, source: str) -> UiRefreshDependency:
        signals = self.extractor.ui_signals(source)
        queries = self.extractor.queries(source) or [k for k, _ in self.extractor.query_keys(source)]
        lines = source.split("\n")
        triggers = [
            RefreshTrigger(name, line, self._trigger_in_callback(lines, line))
            for name, line in self.extractor.refresh_triggers(source)
        ]
        return UiRefreshDependency(
            component=file_path,
            queries=queries,
            has_loading_state=signals["has_loading_state"],
            has_error_state=signals["has_error_state"],
            refresh_triggers=triggers,
        )

    @staticmethod
    def _trigger_in_callback(lines: List[str], line: int) -> bool:
        start = max(0, line - TRIGGER_CONTEXT_LINES)
        window = lines[start:line + TRIGGER_CONTEXT_LINES]
        return any(_CALLBACK_CONTEXT.search(text) for text in window)

    def dependency_issues(self, dependency: UiRefreshDependency) -> List[ValidationIssue]:
        issues = []
        name = dependency.component
        if not dependency.has_loading_state:
            issues.append(ValidationIssue(
                type="ui-refresh-missing",
                severity="warning",
                message=f"Component {name} uses queries but lacks loading states",
                location=name,
                suggestion="Add loading states using query.isLoading or similar patterns",
            ))
        if not dependency.has_error_state:
            issues.append(ValidationIssue(
                type="ui-refresh-missing",
                severity="warning",
                message=f"Component {name} uses queries but lacks error states",
                location=name,
                suggestion="Add error handling using query.isError or similar patterns",
            ))
        score = dependency.refresh_completeness
        if score < self.threshold:
            issues.append(ValidationIssue(
                type="ui-refresh-missing",
                severity="warning",
                message=f"Component {name} has incomplete UI refresh patterns ({round(score * 100)}%)",
                location=name,
                suggestion="Ensure all data dependencies trigger proper UI updates",
                metadata={"refreshCompleteness": score},
            ))
        for trigger in dependency.refresh_triggers:
            if not trigger.validated:
                issues.append(ValidationIssue(
                    type="ui-refresh-missing",
                    severity="info",
                    message=f'Unvalidated refresh trigger "{trigger.trigger}" in {name}',
                    location=f"{name}:{trigger.line + 1}",
                    suggestion="Verify this refresh trigger works correctly",
                ))
        return issues

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def validate_ui_refresh_chains(self, codebase: ParsedCodebase) -> ValidationResult:
        started = time.perf_counter()
        issues: List[ValidationIssue] = []
        checks = 0
        for file_path in codebase.components:
            source = self._read(file_path, issues, "analyze UI refresh patterns in")
            if source is None or not any(hint in source for hint in _QUERY_HINTS):
                continue
            checks += 1
            dependency = self.analyze(file_path, source)
            if dependency.queries:
                issues.extend(self.dependency_issues(dependency))
        return ValidationResult.build(issues, checks, started)

    def validate_component_data_sync(self, codebase: ParsedCodebase) -> ValidationResult:
        """Query keys nobody invalidates, in components that never refetch."""
        started = time.perf_counter()
        issues: List[ValidationIssue] = []
        sources = {}
        invalidated: Set[str] = set()
        for file_path in codebase.components:
            source = self._read(file_path, issues, "analyze data synchronization in")
            if source is None:
                continue
            invalidated.update(key for key, _ in self.extractor.invalidation_keys(source))
            if "queryKey" in source or "useQuery" in source:
                sources[file_path] = source

        checks = 0
        for file_path, source in sources.items():
            refetches = any(name == "refetch" for name, _ in self.extractor.refresh_triggers(source))
            for key in dict.fromkeys(k for k, _ in self.extractor.query_keys(source)):
                checks += 1
                if key in invalidated or refetches:
                    continue
                issues.append(ValidationIssue(
                    type="ui-refresh-missing",
                    severity="warning",
                    message=f'Data dependency "{key}" in {file_path} may not be properly synchronized',
                    location=file_path,
                    suggestion="Ensure this dependency triggers UI updates when data changes",
                ))
        return ValidationResult.build(issues, checks, started)

    def validate_ui_consistency(self, codebase: ParsedCodebase) -> ValidationResult:
        """Each mutation needs onSuccess plus an invalidation or optimistic update."""
        started = time.perf_counter()
        issues: List[ValidationIssue] = []
        checks = 0
        for file_path in codebase.components:
            source = self._read(file_path, issues, "validate UI consistency in")
            if source is None or "useMutation" not in source and "mutationFn" not in source:
                continue
            for site in self.extractor.mutations(source):
                if not site.endpoint:
                    continue
                checks += 1
                block = site.block
                handled = "onSuccess" in block and ("invalidateQueries" in block or "setQueryData" in block)
                if not handled:
                    issues.append(ValidationIssue(
                        type="ui-refresh-missing",
                        severity="warning",
                        message=f'Mutation "{site.endpoint}" in {file_path} may not properly update UI consistency',
                        location=f"{file_path}:{site.line + 1}",
                        suggestion="Add cache invalidation or optimistic updates for this mutation",
                    ))
        return ValidationResult.build(issues, checks, started)

    def validate_all(self, codebase: ParsedCodebase) -> ValidationResult:
        if not self.context.config.ui_refresh.enabled:
            return ValidationResult()
        return ValidationResult.merge([
            self.validate_ui_refresh_chains(codebase),
            self.validate_component_data_sync(codebase),
            self.validate_ui_consistency(codebase),
        ])

    def _read(self, file_path: str, issues: List[ValidationIssue], action: str):
        try:
            return self.context.read_source(file_path)
        except OSError as e:
            issues.append(ValidationIssue(
                type="ui-refresh-missing",
                severity="error",
                message=f"Failed to {action} {file_path}: {e}",
                location=file_path,
                suggestion="Verify file accessibility and syntax",
            ))
            return None
