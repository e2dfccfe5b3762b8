"""Run reports and how they are rendered.

A ``RunReport`` is the single result of one ``preview`` or ``deploy``
invocation. It renders either as the structured JSON document printed to
stdout under ``--json``, or as a Rich panel for humans followed by the
terminal QR code of a preview, written through the logger's console
(stderr).
"""

from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, TextIO

from rich.markup import escape

from .errors import SUCCESS, ClassifiedFailure
from .utils import Logger


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class RunReport:
    """Outcome of one orchestrator run."""

    operation: str
    success: bool = False
    timestamp: str = field(default_factory=_now)
    qrcode_image_path: str | None = None
    # Terminal rendering of the preview QR code; human output only.
    qrcode_terminal: str = field(default="", repr=False)
    version: str | None = None
    description: str | None = None
    framework: str | None = None
    platform: str | None = None
    project_path: str | None = None
    output_path: str | None = None
    output_source: str | None = None
    dry_run: bool = False
    failure: ClassifiedFailure | None = None

    @property
    def exit_code(self) -> int:
        if self.success or self.failure is None:
            return SUCCESS
        return self.failure.exit_code

    def data(self) -> dict[str, Any]:
        if self.operation == "preview":
            data: dict[str, Any] = {"qrcodeImagePath": self.qrcode_image_path}
        else:
            data = {"version": self.version}
        data["outputSource"] = self.output_source
        if self.dry_run:
            data["dryRun"] = True
        return {k: v for k, v in data.items() if v is not None}

    def metadata(self) -> dict[str, Any]:
        metadata = {
            "framework": self.framework,
            "platform": self.platform,
            "version": self.version,
            "description": self.description,
            "projectPath": self.project_path,
            "outputPath": self.output_path,
        }
        return {k: v for k, v in metadata.items() if v is not None}

    def to_structured_output(self) -> dict[str, Any]:
        """Build the JSON document emitted by ``--json``."""
        output: dict[str, Any] = {
            "success": self.success,
            "timestamp": self.timestamp,
            "operation": self.operation,
        }
        if self.success:
            output["data"] = self.data()
        elif self.failure is not None:
            output["error"] = self.failure.to_dict()
        output["metadata"] = self.metadata()
        return output


def print_json(report: RunReport, stream: TextIO | None = None) -> None:
    """Write the structured output to stdout (logs go to stderr)."""
    stream = stream or sys.stdout
    stream.write(json.dumps(report.to_structured_output(), indent=2, ensure_ascii=False))
    stream.write("\n")
    stream.flush()


def print_human(report: RunReport, logger: Logger, verbose: bool = False) -> None:
    """Render *report* as a Rich panel, plus failure details when verbose."""
    title = "Preview" if report.operation == "preview" else "Deploy"
    if report.dry_run:
        title += " (dry run)"

    lines: list[str] = []
    if report.success:
        lines.append(f"[bold green]{title.upper()} SUCCEEDED[/bold green]")
    else:
        lines.append(f"[bold red]{title.upper()} FAILED[/bold red]")
    lines.append("")

    rows = {
        "Framework": report.framework,
        "Platform": report.platform,
        "Version": report.version,
        "Description": report.description,
        "Project": report.project_path,
        "Output": report.output_path,
        "QR code": report.qrcode_image_path,
    }
    lines.extend(f"{label:<12}: {escape(str(value))}" for label, value in rows.items() if value)

    failure = report.failure
    if failure is not None:
        lines.extend([
            "",
            f"Error       : {escape(failure.message)}",
            f"Kind        : {failure.kind.value} (exit {failure.exit_code})",
            f"Suggestion  : {escape(failure.suggestion)}",
        ])

    logger.panel("\n".join(lines), title=f"[bold]{title}[/bold]", style="green" if report.success else "red")

    if failure is not None and verbose and failure.details:
        logger.summary_table(
            {k: json.dumps(v, ensure_ascii=False) if not isinstance(v, str) else v
             for k, v in failure.details.items()},
            title="Error details",
        )

    if report.success and report.qrcode_terminal:
        logger.verbatim(report.qrcode_terminal)
