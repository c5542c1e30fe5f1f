"""Checks declared API endpoints against the routes found in the codebase."""

from __future__ import annotations

import logging
import re
import time
from typing import Iterable, List, Optional, Set

from .context import AuditContext
from .models import ParsedCodebase, ValidationIssue, ValidationResult
from .system_map import ApiEndpoint

logger = logging.getLogger(__name__)

MUTATING_METHODS = ("POST", "PUT", "PATCH", "DELETE")

DATABASE_PATTERNS = [
    re.compile(r"\b(?:db|database|storage)\."),
    re.compile(r"\b(?:insert|update|delete|select)\b", re.IGNORECASE),
    re.compile(r"\bfrom\s*\(\s*\w+\s*\)"),
    re.compile(r"\.(?:save|create|update|delete|find|query|insert|upsert)\w*\("),
    re.compile(r"storage\.(?:get|set|add|remove)"),
]


class ApiValidator:
    """Endpoint existence, handler files, schemas, persistence and orphans."""

    def __init__(self, context: AuditContext) -> None:
        self.context = context
        self.resolver = context.resolver
        self.scorer = context.scorer

    def validate_endpoint_exists(self, endpoint: ApiEndpoint, codebase: ParsedCodebase) -> ValidationResult:
        started = time.perf_counter()
        issues: List[ValidationIssue] = []
        key = endpoint.key
        location = endpoint.handler or key

        if key not in codebase.apis:
            similar = self.find_similar_endpoints(endpoint, codebase)
            if similar:
                issues.append(ValidationIssue(
                    type="api-mismatch",
                    severity="warning",
                    message=f"API endpoint {key} not found, but similar endpoints exist: {', '.join(similar)}",
                    location=location,
                    suggestion=f"Did you mean {similar[0]}? Check the endpoint path or method in the system map",
                    metadata={"similarEndpoints": similar},
                ))
            else:
                issues.append(ValidationIssue(
                    type="api-mismatch",
                    severity="error",
                    message=f"API endpoint {key} not found in codebase",
                    location=location,
                    suggestion="Implement the API endpoint or remove it from the system map",
                ))
        return ValidationResult.build(issues, 1, started)

    def find_similar_endpoints(self, endpoint: ApiEndpoint, codebase: ParsedCodebase, limit: int = 3) -> List[str]:
        """Same path with another method, or same method with a similar path."""
        scored = []
        for key, info in codebase.apis.items():
            if key == endpoint.key:
                continue
            if info.endpoint == endpoint.path:
                scored.append((0, key))
            elif info.method == endpoint.method and self.scorer.paths_similar(endpoint.path, info.endpoint):
                scored.append((self.scorer.path_distance(endpoint.path, info.endpoint), key))
        scored.sort()
        return [key for _, key in scored[:limit]]

    def validate_handler_file(self, endpoint: ApiEndpoint, codebase: ParsedCodebase) -> ValidationResult:
        started = time.perf_counter()
        issues: List[ValidationIssue] = []
        if not endpoint.handler:
            return ValidationResult.build(issues, 0, started)

        handler = endpoint.handler.split("#", 1)[0]
        resolved = self.resolver.resolve_api_handler(handler)
        if resolved is None:
            candidates = self.resolver.find_handler_locations(handler)
            if not candidates:
                issues.append(ValidationIssue(
                    type="api-mismatch",
                    severity="error",
                    message=f"API handler file not found: {endpoint.handler}",
                    location=endpoint.handler,
                    suggestion="Create the handler file or update the path in the system map",
                ))
            else:
                issues.append(ValidationIssue(
                    type="api-mismatch",
                    severity="warning",
                    message=f"Handler file not found at specified path, but found at: {candidates[0]}",
                    location=endpoint.handler,
                    suggestion=f"Update system map handler path to: {candidates[0]}",
                    metadata={"candidates": candidates},
                ))
            return ValidationResult.build(issues, 1, started)

        info = codebase.apis.get(endpoint.key)
        if info is not None and info.handler_file != resolved:
            issues.append(ValidationIssue(
                type="api-mismatch",
                severity="warning",
                message=(
                    f"Endpoint {endpoint.key} is implemented in {info.handler_file}, "
                    f"not in specified handler {endpoint.handler}"
                ),
                location=endpoint.handler,
                suggestion=f"Update system map handler to point to {info.handler_file}",
            ))
        return ValidationResult.build(issues, 1, started)

    def validate_request_response(self, endpoint: ApiEndpoint) -> ValidationResult:
        started = time.perf_counter()
        issues: List[ValidationIssue] = []
        checks = 0
        for label, schema in (("request", endpoint.request_schema), ("response", endpoint.response_schema)):
            if schema is None:
                continue
            checks += 1
            if not isinstance(schema, dict):
                issues.append(ValidationIssue(
                    type="api-mismatch",
                    severity="warning",
                    message=f"Invalid {label} schema format for {endpoint.key}",
                    location=endpoint.handler or endpoint.key,
                    suggestion=f"Declare the {label} schema as a JSON object",
                ))
        return ValidationResult.build(issues, checks, started)

    def validate_database_access(self, endpoint: ApiEndpoint, codebase: ParsedCodebase) -> ValidationResult:
        """Mutating endpoints whose handler never touches persistence get an info note."""
        started = time.perf_counter()
        issues: List[ValidationIssue] = []
        if endpoint.method not in MUTATING_METHODS:
            return ValidationResult.build(issues, 0, started)
        info = codebase.apis.get(endpoint.key)
        if info is None:
            return ValidationResult.build(issues, 0, started)

        try:
            content = self.context.read_source(info.handler_file)
        except OSError as e:
            issues.append(ValidationIssue(
                type="api-mismatch",
                severity="error",
                message=f"Cannot read handler file {info.handler_file}: {e}",
                location=info.handler_file,
            ))
            return ValidationResult.build(issues, 1, started)

        if not any(pattern.search(content) for pattern in DATABASE_PATTERNS):
            issues.append(ValidationIssue(
                type="api-mismatch",
                severity="info",
                message=f"{endpoint.method} endpoint {endpoint.path} may not access the database",
                location=info.handler_file,
                suggestion="Verify whether this endpoint needs to persist anything",
            ))
        return ValidationResult.build(issues, 1, started)

    def find_orphaned_endpoints(
        self,
        declared: Iterable[ApiEndpoint],
        codebase: ParsedCodebase,
        declared_keys: Optional[Set[str]] = None,
    ) -> ValidationResult:
        """Implemented endpoints no system map documents. Always info."""
        started = time.perf_counter()
        known = set(declared_keys or ()) | {endpoint.key for endpoint in declared}
        issues = [
            ValidationIssue(
                type="api-mismatch",
                severity="info",
                message=f"Endpoint {key} is implemented but not documented in any system map",
                location=info.handler_file,
                suggestion="Document the endpoint in the relevant system map",
            )
            for key, info in codebase.apis.items()
            if key not in known
        ]
        return ValidationResult.build(issues, len(codebase.apis), started)

    def validate_all(
        self,
        endpoints: Iterable[ApiEndpoint],
        codebase: ParsedCodebase,
        declared_keys: Optional[Set[str]] = None,
        include_orphans: bool = True,
    ) -> ValidationResult:
        """Run the enabled API checks.

        Args:
            endpoints: Endpoints declared by the document under audit.
            codebase: The codebase index.
            declared_keys: Endpoints declared by *any* audited document, so
                orphan detection does not report endpoints documented elsewhere.
            include_orphans: Orphan detection is codebase-wide; callers auditing
                several documents run it once themselves.
        """
        checks = self.context.config.apis
        endpoints = list(endpoints)
        results = []
        for endpoint in endpoints:
            results.append(self.validate_endpoint_exists(endpoint, codebase))
            if checks.check_handler_files:
                results.append(self.validate_handler_file(endpoint, codebase))
            if checks.validate_schemas:
                results.append(self.validate_request_response(endpoint))
            if checks.check_database_access:
                results.append(self.validate_database_access(endpoint, codebase))
        if include_orphans and checks.check_orphaned_endpoints:
            results.append(self.find_orphaned_endpoints(endpoints, codebase, declared_keys))
        return ValidationResult.merge(results)
