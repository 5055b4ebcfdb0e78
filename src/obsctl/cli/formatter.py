import json
import typer
from typing import Any, List, Optional
from pydantic import BaseModel
from rich.console import Console
from rich.table import Table

from obsctl.health.probes import ProbeOutcome
from obsctl.health.reporter import HealthReport
from obsctl.lifecycle.sequencer import SequenceReport
from obsctl.lifecycle.states import ServiceState
from obsctl.utils.diagnostics import SEVERITY_FAIL, SEVERITY_WARN, Finding

# Create a stderr console for logging
error_console = Console(stderr=True)

_SEVERITY_COLORS = {
    SEVERITY_FAIL: "red",
    SEVERITY_WARN: "yellow",
}

_OUTCOME_COLORS = {
    ProbeOutcome.PASS: "green",
    ProbeOutcome.FAIL: "red",
    ProbeOutcome.WARN: "yellow",
}


class OutputFormatter:
    """
    Handles operator output.
    System messages and tables go to stderr; reports requested as data go to stdout.
    """

    @staticmethod
    def log(message: str, severity: str = "info") -> None:
        """
        Print system messages to stderr with color coding.
        """
        style = "white"
        prefix = "[obsctl]"

        if severity == "warning":
            style = "yellow"
        elif severity == "error":
            style = "red"
        elif severity == "critical":
            style = "bold red"
        elif severity == "success":
            style = "green"

        error_console.print(f"[{style}]{prefix} {message}[/{style}]", highlight=False)

    @staticmethod
    def print_findings(findings: List[Finding], title: str = "Findings", include_info: bool = True) -> None:
        """Print findings as a table, failures first."""
        rows = [f for f in findings if include_info or f.severity in _SEVERITY_COLORS]
        if not rows:
            return

        order = {SEVERITY_FAIL: 0, SEVERITY_WARN: 1}
        rows = sorted(rows, key=lambda f: order.get(f.severity, 2))

        table = Table(title=title, header_style="bold")
        table.add_column("Severity", style="bold")
        table.add_column("Code")
        table.add_column("Message")
        table.add_column("Subject")

        for finding in rows:
            color = _SEVERITY_COLORS.get(finding.severity, "cyan")
            subject = finding.subject
            if finding.line_number:
                subject += f":{finding.line_number}"
            message = finding.message
            if finding.suggestion:
                message += f"\n{finding.suggestion}"
            table.add_row(
                f"[{color}]{finding.severity.upper()}[/{color}]",
                finding.code,
                message,
                subject,
            )

        error_console.print(table)
        error_console.print() # spacing

    @staticmethod
    def print_sequence(report: SequenceReport, title: str) -> None:
        if not report.outcomes:
            return

        table = Table(title=title, header_style="bold")
        table.add_column("Service")
        table.add_column("Unit")
        table.add_column("Before")
        table.add_column("After", style="bold")
        table.add_column("Detail")

        for outcome in report.outcomes:
            color = "red" if outcome.state == ServiceState.FAILED else "green"
            detail = "\n".join(filter(None, [outcome.error, *outcome.notes]))
            table.add_row(
                outcome.name,
                outcome.unit,
                outcome.initial_state.value,
                f"[{color}]{outcome.state.value}[/{color}]",
                detail,
            )

        error_console.print(table)
        error_console.print()

    @staticmethod
    def print_health(report: HealthReport, console: Optional[Console] = None) -> None:
        """Print the health report. Defaults to stdout: the report is the command's output."""
        console = console or Console()

        table = Table(title="Observability Stack Health", header_style="bold")
        table.add_column("Result", style="bold")
        table.add_column("Kind")
        table.add_column("Target")
        table.add_column("Detail")

        for result in report.results:
            color = _OUTCOME_COLORS[result.outcome]
            table.add_row(
                f"[{color}]{result.outcome.value.upper()}[/{color}]",
                result.kind.value,
                result.target,
                result.detail,
            )

        console.print(table)
        summary = report.summary
        color = "green" if summary.healthy else "red"
        console.print(
            f"Passed: {summary.passed}  Failed: {summary.failed}  Warnings: {summary.warned}  "
            f"[{color}]Verdict: {summary.verdict.upper()}[/{color}]",
            highlight=False,
        )

    @staticmethod
    def print_data(data: Any) -> None:
        """
        Print a result as JSON to stdout.
        Handles Pydantic models and complex types.
        """
        def json_serializer(obj):
            if isinstance(obj, BaseModel):
                return obj.model_dump(mode='json')
            if hasattr(obj, "isoformat"):
                return obj.isoformat()
            return str(obj)

        try:
            output = json.dumps(data, indent=2, default=json_serializer)
            typer.echo(output)
        except TypeError as e:
            OutputFormatter.log(f"JSON Serialization failed: {e}", severity="error")
            typer.echo(str(data))
