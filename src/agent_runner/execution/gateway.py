"""Timeout-bounded gateway in front of the step executor."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError
from typing import Protocol

from pydantic import ValidationError

from agent_runner.errors import CollaboratorUnavailable, StepExecutionFailed
from agent_runner.schemas import ActualState, ExecutionError, FailureCategory

logger = logging.getLogger(__name__)


class StepExecutor(Protocol):
    """Performs one action against the live page and reports what it sees afterwards.

    Raises ``StepExecutionFailed`` when the action itself fails and
    ``CollaboratorUnavailable`` when the executor cannot be reached.
    """

    def execute(self, action: str) -> ActualState: ...


class ExecutorGateway:
    def __init__(self, executor: StepExecutor, *, timeout_s: float = 30.0) -> None:
        self.executor = executor
        self.timeout_s = timeout_s

    def execute(self, action: str) -> ActualState | ExecutionError:
        started_at = time.perf_counter()
        pool = ThreadPoolExecutor(max_workers=1)
        future = pool.submit(self.executor.execute, action)
        try:
            raw_state = future.result(timeout=self.timeout_s)
        except TimeoutError:
            return self._error(
                "timeout",
                f"Executor timed out after {self.timeout_s:.2f}s",
                started_at,
            )
        except StepExecutionFailed as exc:
            return self._error(exc.category, exc.message, started_at)
        except (CollaboratorUnavailable, ConnectionError) as exc:
            return self._error("unavailable", str(exc) or "Step executor unreachable", started_at)
        except Exception as exc:  # noqa: BLE001
            return self._error("tool_error", f"Executor error: {exc}", started_at)
        finally:
            pool.shutdown(wait=False)

        try:
            state = ActualState.model_validate(raw_state)
        except ValidationError as exc:
            return self._error("tool_error", f"Executor returned invalid state: {exc}", started_at)

        logger.debug(
            "step_executor event=ok action=%r duration_ms=%.2f",
            action,
            _duration_ms(started_at),
        )
        return state

    def _error(
        self, category: FailureCategory, message: str, started_at: float
    ) -> ExecutionError:
        logger.warning(
            "step_executor event=error category=%s duration_ms=%.2f message=%s",
            category,
            _duration_ms(started_at),
            message,
        )
        return ExecutionError(category=category, message=message)


def _duration_ms(started_at: float) -> float:
    return round((time.perf_counter() - started_at) * 1000.0, 2)
