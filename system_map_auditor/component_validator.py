"""Checks declared components against the codebase index."""

from __future__ import annotations

import logging
import time
from typing import Iterable, List, Optional

from .context import AuditContext
from .models import ComponentInfo, ParsedCodebase, ValidationIssue, ValidationResult
from .system_map import ComponentDef

logger = logging.getLogger(__name__)


class ComponentValidator:
    """Existence, export, dependency and usage checks for declared components."""

    def __init__(self, context: AuditContext) -> None:
        self.context = context
        self.resolver = context.resolver

    def validate_exists(self, component: ComponentDef, codebase: ParsedCodebase) -> ValidationResult:
        """Resolve the declared path and confirm the component is exported there.

        When the declared file is missing, candidate locations are searched by
        name: none is an error, one is a warning carrying the corrected path,
        several is an ambiguity warning listing them all.
        """
        started = time.perf_counter()
        issues: List[ValidationIssue] = []
        resolved = self.resolver.resolve_source_file(component.path)

        if self.resolver.exists(resolved):
            info = codebase.components.get(resolved)
            if info is None:
                issues.append(ValidationIssue(
                    type="missing-component",
                    severity="warning",
                    message=f"Component file exists but was not scanned: {component.name}",
                    location=resolved,
                    suggestion="Check the scanning include patterns and file extensions",
                ))
            elif component.name not in info.exports and not info.has_default_export:
                issues.append(ValidationIssue(
                    type="missing-component",
                    severity="error",
                    message=f"Component {component.name} not found in exports of {resolved}",
                    location=resolved,
                    suggestion=f'Export "{component.name}" from the file or add a default export',
                ))
            return ValidationResult.build(issues, 1, started)

        candidates = self.resolver.find_component_locations(component.name, codebase)
        if not candidates:
            issues.append(ValidationIssue(
                type="missing-component",
                severity="error",
                message=f"Component {component.name} not found at {component.path}",
                location=component.path,
                suggestion="Create the component file or update the path in the system map",
            ))
        elif len(candidates) == 1:
            issues.append(ValidationIssue(
                type="missing-component",
                severity="warning",
                message=(
                    f"Component {component.name} not found at specified path, "
                    f"but found at: {candidates[0]}"
                ),
                location=component.path,
                suggestion=f"Update system map path to: {candidates[0]}",
                metadata={"candidates": candidates},
            ))
        else:
            issues.append(ValidationIssue(
                type="missing-component",
                severity="warning",
                message=(
                    f"Component {component.name} not found at specified path. "
                    f"Multiple matches found: {', '.join(candidates)}"
                ),
                location=component.path,
                suggestion="Specify the correct path in the system map or ensure unique component naming",
                metadata={"candidates": candidates},
            ))
        return ValidationResult.build(issues, 1, started)

    def validate_dependencies(self, component: ComponentDef, codebase: ParsedCodebase) -> ValidationResult:
        started = time.perf_counter()
        info = self._locate(component, codebase)
        if info is None:
            # existence check already reports the missing file
            logger.debug("Skipping dependency check for unlocated component %s", component.name)
            return ValidationResult.build([], 0, started)

        issues: List[ValidationIssue] = []
        checks = 0
        relative_imports = [imp for imp in info.imports if imp.is_relative]

        for dependency in component.dependencies:
            checks += 1
            imported = any(
                dependency in imp.specifiers or imp.module.rstrip("/").rsplit("/", 1)[-1] == dependency
                for imp in relative_imports
            )
            if imported:
                continue
            if not codebase.has_component_named(dependency):
                issues.append(ValidationIssue(
                    type="missing-component",
                    severity="error",
                    message=f"Dependency {dependency} declared in system map but not found in codebase",
                    location=f"{info.file_path}:dependencies",
                    suggestion=f"Create component {dependency} or remove it from dependencies",
                ))
            else:
                issues.append(ValidationIssue(
                    type="missing-component",
                    severity="warning",
                    message=f"Dependency {dependency} exists but is not imported in {component.name}",
                    location=info.file_path,
                    suggestion=f"Add an import for {dependency} or remove it from system map dependencies",
                ))

        declared = set(component.dependencies)
        undeclared = []
        for imp in relative_imports:
            for specifier in imp.specifiers:
                if specifier not in declared and specifier not in undeclared:
                    undeclared.append(specifier)
        for specifier in undeclared:
            checks += 1
            issues.append(ValidationIssue(
                type="missing-component",
                severity="info",
                message=(
                    f"Component {component.name} imports {specifier} "
                    f"but it's not declared in system map dependencies"
                ),
                location=info.file_path,
                suggestion=f"Add {specifier} to system map dependencies or remove the import if unused",
            ))
        return ValidationResult.build(issues, checks, started)

    def validate_usage_patterns(
        self,
        component: ComponentDef,
        codebase: ParsedCodebase,
        check_unused: bool = True,
        check_types: bool = True,
    ) -> ValidationResult:
        started = time.perf_counter()
        issues: List[ValidationIssue] = []
        checks = 0
        info = self._locate(component, codebase)

        if check_unused:
            checks += 1
            importers = [p for p in codebase.importers_of(component.name) if info is None or p != info.file_path]
            if not importers:
                issues.append(ValidationIssue(
                    type="missing-component",
                    severity="warning",
                    message=f"Component {component.name} is not used anywhere in the codebase",
                    location=component.path,
                    suggestion="Remove the unused component or wire it into the application",
                ))

        if check_types and info is not None and component.type:
            checks += 1
            if info.type != component.type:
                issues.append(ValidationIssue(
                    type="missing-component",
                    severity="warning",
                    message=(
                        f'Component {component.name} type mismatch: system map says "{component.type}", '
                        f'codebase indicates "{info.type}"'
                    ),
                    location=info.file_path,
                    suggestion=f'Update system map type to "{info.type}" or verify the implementation',
                ))
        return ValidationResult.build(issues, checks, started)

    def validate_all(self, components: Iterable[ComponentDef], codebase: ParsedCodebase) -> ValidationResult:
        checks = self.context.config.components
        results = []
        for component in components:
            if checks.check_existence:
                results.append(self.validate_exists(component, codebase))
            if checks.validate_dependencies:
                results.append(self.validate_dependencies(component, codebase))
            if checks.check_unused_components or checks.check_types:
                results.append(self.validate_usage_patterns(
                    component,
                    codebase,
                    check_unused=checks.check_unused_components,
                    check_types=checks.check_types,
                ))
        return ValidationResult.merge(results)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _locate(self, component: ComponentDef, codebase: ParsedCodebase) -> Optional[ComponentInfo]:
        """The indexed file for *component*: declared path, else a unique candidate."""
        resolved = self.resolver.resolve_source_file(component.path)
        info = codebase.components.get(resolved)
        if info is not None:
            return info
        if self.resolver.exists(resolved):
            return None
        candidates = self.resolver.find_component_locations(component.name, codebase)
        if len(candidates) == 1:
            return codebase.components.get(candidates[0])
        return None
