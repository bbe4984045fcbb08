"""Run lifecycle: leases, worker threads, and caller handles."""

from agent_runner.runs.controller import RunHandle, TaskRunController

__all__ = ["RunHandle", "TaskRunController"]
