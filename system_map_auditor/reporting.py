"""Serialization and console rendering of audit results."""

from __future__ import annotations

import json
from typing import Any, Dict, List

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .models import FeatureIntegrationStatus, ValidationIssue, ValidationResult
from .orchestrator import AuditReport

SEVERITY_STYLES = {"error": "red", "warning": "yellow", "info": "cyan"}
SEVERITY_ICONS = {"error": "✗", "warning": "⚠", "info": "ℹ"}


# ---------------------------------------------------------------------------
# Plain data
# ---------------------------------------------------------------------------

def report_to_dict(report: AuditReport, include_timing: bool = True) -> Dict[str, Any]:
    """Deterministic dictionary form of an audit report.

    With ``include_timing=False`` two runs over identical inputs serialize
    to identical output.
    """
    return {
        "passed": report.passed,
        "summary": report.counts(),
        "documents": [
            {"path": doc.path, "name": doc.name, **doc.result.to_dict(include_timing)}
            for doc in report.documents
        ],
        "codebase": report.codebase.to_dict(include_timing),
    }


def report_to_json(report: AuditReport, include_timing: bool = True, indent: int = 2) -> str:
    return json.dumps(report_to_dict(report, include_timing), indent=indent, ensure_ascii=False)


def result_to_json(result: ValidationResult, include_timing: bool = True, indent: int = 2) -> str:
    return json.dumps(result.to_dict(include_timing), indent=indent, ensure_ascii=False)


def feature_status_to_dict(status: FeatureIntegrationStatus) -> Dict[str, Any]:
    return {
        "featureName": status.feature_name,
        "overallStatus": status.overall_status,
        "averageScore": round(status.average_score, 4),
        "components": [
            {"name": c.component_name, "exists": c.exists, "score": c.score} for c in status.components
        ],
        "apis": [
            {"endpoint": a.endpoint, "handlerExists": a.handler_exists, "score": a.score} for a in status.apis
        ],
        "flows": [
            {"name": f.flow_name, "stepsValid": f.steps_valid, "score": f.score} for f in status.flows
        ],
        "evidence": [
            {
                "type": e.evidence_type,
                "location": e.evidence_location,
                "status": e.verification_status,
            }
            for e in status.evidence
        ],
        "blockers": [issue.to_dict() for issue in status.blockers],
    }


# ---------------------------------------------------------------------------
# Console
# ---------------------------------------------------------------------------

def _issue_table(title: str, issues: List[ValidationIssue]) -> Table:
    table = Table(title=title, show_header=True, show_lines=False, title_justify="left")
    table.add_column("Severity", width=9)
    table.add_column("Type", style="magenta")
    table.add_column("Message", min_width=30)
    table.add_column("Location", style="dim")
    for issue in issues:
        style = SEVERITY_STYLES[issue.severity]
        message = escape(issue.message)
        if issue.suggestion:
            message += f"\n[dim]→ {escape(issue.suggestion)}[/dim]"
        table.add_row(
            f"[{style}]{SEVERITY_ICONS[issue.severity]} {issue.severity}[/{style}]",
            issue.type,
            message,
            escape(issue.location),
        )
    return table


def render_result(console: Console, title: str, result: ValidationResult) -> None:
    if result.issues:
        console.print(_issue_table(escape(title), result.issues))
    else:
        console.print(f"[green]✓[/green] {escape(title)}: no issues")


def render_report(console: Console, report: AuditReport) -> None:
    for doc in report.documents:
        render_result(console, f"{doc.name} ({doc.path})", doc.result)
    render_result(console, "Codebase", report.codebase)

    counts = report.counts()
    colour = "green" if report.passed else "red"
    verdict = "PASSED" if report.passed else "FAILED"
    console.print(
        Panel.fit(
            f"[bold {colour}]{verdict}[/bold {colour}]  "
            f"{counts['error']} errors, {counts['warning']} warnings, {counts['info']} info",
            title="[bold]Audit Result[/bold]",
            border_style=colour,
        )
    )


def render_feature_status(console: Console, status: FeatureIntegrationStatus) -> None:
    table = Table(title=f"Integration of '{escape(status.feature_name)}'", show_header=True)
    table.add_column("Kind", style="cyan", width=10)
    table.add_column("Name")
    table.add_column("Score", justify="right")
    for c in status.components:
        table.add_row("component", escape(c.component_name), f"{c.score:.2f}")
    for a in status.apis:
        table.add_row("api", escape(a.endpoint), f"{a.score:.2f}")
    for f in status.flows:
        table.add_row("flow", escape(f.flow_name), f"{f.score:.2f}")
    console.print(table)
    console.print(
        f"Overall: [bold]{status.overall_status}[/bold] "
        f"(average {status.average_score:.2f}, {len(status.evidence)} evidence item(s))"
    )
    if status.blockers:
        console.print(_issue_table("Blockers", status.blockers))
