"""Downloadable task reports built from the action log."""

from __future__ import annotations

import csv
import io
import json
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Literal

from agent_runner.storage.models import RunRecord, TaskAction

ReportFormat = Literal["json", "csv", "markdown"]

MIME_TYPES: dict[str, str] = {
    "json": "application/json",
    "csv": "text/csv",
    "markdown": "text/markdown",
}
EXTENSIONS: dict[str, str] = {"json": "json", "csv": "csv", "markdown": "md"}


class ReportFormatError(ValueError):
    pass


@dataclass(frozen=True)
class GeneratedReport:
    content: str
    mime_type: str
    filename: str


def generate_task_report(
    task_id: str,
    actions: list[TaskAction],
    report_format: str,
    *,
    run: RunRecord | None = None,
    generated_at: datetime | None = None,
) -> GeneratedReport:
    normalized = report_format.lower().strip()
    if normalized not in MIME_TYPES:
        raise ReportFormatError(f"Unsupported report format: {report_format}")

    generated_at = generated_at or datetime.now(UTC)
    history = sorted(actions, key=lambda item: item.sequence)
    if normalized == "json":
        content = _as_json(task_id, history, run, generated_at)
    elif normalized == "csv":
        content = _as_csv(task_id, history, run)
    else:
        content = _as_markdown(task_id, history, run, generated_at)

    return GeneratedReport(
        content=content,
        mime_type=MIME_TYPES[normalized],
        filename=f"task-report-{task_id[:8]}.{EXTENSIONS[normalized]}",
    )


def _task_info(task_id: str, run: RunRecord | None) -> dict[str, Any]:
    if run is None:
        return {"task_id": task_id, "status": "unknown"}
    return {
        "task_id": task_id,
        "run_id": run.run_id,
        "status": run.status,
        "reason": run.reason,
        "started_at": run.started_at.isoformat(),
        "finished_at": run.finished_at.isoformat() if run.finished_at else None,
    }


def _metrics(history: list[TaskAction], run: RunRecord | None) -> dict[str, int]:
    return {
        "total_steps": len(run.plan.steps) if run else len({item.step_index for item in history}),
        "total_actions": sum(1 for item in history if item.status == "pending"),
        "failed_actions": sum(1 for item in history if item.status == "failure"),
    }


def _as_json(
    task_id: str, history: list[TaskAction], run: RunRecord | None, generated_at: datetime
) -> str:
    report = {
        "report_type": "task_report",
        "generated_at": generated_at.isoformat(),
        "task": _task_info(task_id, run),
        "action_history": [
            item.model_dump(
                mode="json",
                include={"sequence", "step_index", "action", "status", "thought", "timestamp"},
            )
            for item in history
        ],
        "metrics": _metrics(history, run),
    }
    return json.dumps(report, indent=2)


def _as_csv(task_id: str, history: list[TaskAction], run: RunRecord | None) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(["Section", "Field", "Value"])
    for field, value in _task_info(task_id, run).items():
        writer.writerow(["Task", field, "" if value is None else value])
    for item in history:
        writer.writerow(["ActionHistory", f"Step {item.step_index}", f"{item.action} ({item.status})"])
    for field, value in _metrics(history, run).items():
        writer.writerow(["Metrics", field, value])
    return buffer.getvalue().rstrip("\n")


def _as_markdown(
    task_id: str, history: list[TaskAction], run: RunRecord | None, generated_at: datetime
) -> str:
    info = _task_info(task_id, run)
    lines = ["# Task Report", "", f"**Generated:** {generated_at.isoformat()}", ""]
    lines.extend(["## Task Information", ""])
    lines.append(f"- **ID:** `{task_id}`")
    lines.append(f"- **Status:** {info['status']}")
    if info.get("reason"):
        lines.append(f"- **Reason:** {info['reason']}")
    if info.get("started_at"):
        lines.append(f"- **Started:** {info['started_at']}")
    if info.get("finished_at"):
        lines.append(f"- **Finished:** {info['finished_at']}")
    lines.append("")

    if history:
        lines.extend(["## Action History", "", "| Step | Action | Status |", "|------|--------|--------|"])
        for item in history:
            action = _truncate(item.action, 50).replace("|", "\\|")
            lines.append(f"| {item.step_index} | {action} | {item.status} |")
        lines.append("")

    lines.extend(["## Metrics", ""])
    for field, value in _metrics(history, run).items():
        lines.append(f"- **{field.replace('_', ' ').title()}:** {value}")
    lines.append("")
    return "\n".join(lines)


def _truncate(value: str, max_length: int) -> str:
    if len(value) <= max_length:
        return value
    return value[: max_length - 3] + "..."
