"""Exceptions raised at collaborator boundaries.

Adapters raise these; the gateways in front of them convert them into result
variants so the run loop never branches on exception type.
"""

from __future__ import annotations

from agent_runner.schemas import ExecutionError, FailureCategory


class CollaboratorUnavailable(RuntimeError):
    """The executor or judge could not be reached at all."""


class StepExecutionFailed(RuntimeError):
    """The executor reached the page but the action itself failed."""

    def __init__(self, category: FailureCategory, message: str) -> None:
        super().__init__(message)
        self.category = category
        self.message = message

    def to_error(self) -> ExecutionError:
        return ExecutionError(category=self.category, message=self.message)


class AlreadyRunning(RuntimeError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} already has an active run")
        self.task_id = task_id
