import time

import pytest

from agent_runner.errors import CollaboratorUnavailable, StepExecutionFailed
from agent_runner.execution.gateway import ExecutorGateway
from agent_runner.execution.http import HttpStepExecutor
from agent_runner.schemas import ActualState, ExecutionError
from fakes import ScriptedStepExecutor


def test_gateway_returns_observed_state() -> None:
    page = ActualState(dom_snapshot="<p>done</p>", url="https://app.test/done")
    gateway = ExecutorGateway(ScriptedStepExecutor(default=page))

    assert gateway.execute("click(#go)") == page


def test_gateway_maps_timeout_to_timeout_category() -> None:
    class SlowExecutor:
        def execute(self, action: str) -> ActualState:
            time.sleep(0.3)
            return ActualState()

    outcome = ExecutorGateway(SlowExecutor(), timeout_s=0.01).execute("click(#go)")

    assert isinstance(outcome, ExecutionError)
    assert outcome.category == "timeout"
    assert "timed out" in outcome.message


@pytest.mark.parametrize(
    ("raised", "category"),
    [
        (StepExecutionFailed("selector_not_found", "no element #go"), "selector_not_found"),
        (CollaboratorUnavailable("worker down"), "unavailable"),
        (ConnectionError("reset by peer"), "unavailable"),
        (ValueError("boom"), "tool_error"),
    ],
)
def test_gateway_turns_executor_exceptions_into_errors(raised: Exception, category: str) -> None:
    outcome = ExecutorGateway(ScriptedStepExecutor(default=raised)).execute("click(#go)")

    assert isinstance(outcome, ExecutionError)
    assert outcome.category == category


def test_http_executor_requires_url() -> None:
    with pytest.raises(RuntimeError, match="AGENT_RUNNER_EXECUTOR_URL"):
        HttpStepExecutor("")
