from agent_runner.reports.report import (
    GeneratedReport,
    ReportFormatError,
    generate_task_report,
)

__all__ = ["GeneratedReport", "ReportFormatError", "generate_task_report"]
