"""Step executor adapter for a remote browser worker speaking JSON over HTTP."""

from __future__ import annotations

import json
from typing import Any
from urllib import error, request

from agent_runner.errors import CollaboratorUnavailable, StepExecutionFailed
from agent_runner.schemas import ActualState

KNOWN_CATEGORIES = frozenset(
    {
        "selector_not_found",
        "tool_error",
        "navigation_failure",
        "ambiguous_state",
        "plan_invalid",
        "timeout",
        "transient",
    }
)


class HttpStepExecutor:
    """POST ``{"action": ...}`` to ``<base_url>/execute``.

    A 2xx response body is the observed page state. A 4xx/422 response with
    ``{"error": {"category", "message"}}`` is an action failure; 5xx and
    connection errors mean the worker is unavailable.
    """

    def __init__(self, base_url: str, *, timeout_s: float = 30.0) -> None:
        if not base_url:
            raise RuntimeError(
                "Missing executor URL. Set AGENT_RUNNER_EXECUTOR_URL before starting the app."
            )
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s

    def execute(self, action: str) -> ActualState:
        req = request.Request(
            url=f"{self.base_url}/execute",
            data=json.dumps({"action": action}).encode("utf-8"),
            method="POST",
            headers={"Content-Type": "application/json"},
        )
        try:
            with request.urlopen(req, timeout=self.timeout_s) as response:
                raw = response.read().decode("utf-8")
        except error.HTTPError as exc:
            body = exc.read().decode("utf-8", errors="replace")
            if exc.code >= 500:
                raise CollaboratorUnavailable(
                    f"Executor failed with status {exc.code}: {body[:400]}"
                ) from exc
            raise _action_failure(body, status=exc.code) from exc
        except error.URLError as exc:
            if isinstance(exc.reason, TimeoutError):
                raise StepExecutionFailed(
                    "timeout", f"Executor request timed out after {self.timeout_s:.2f}s"
                ) from exc
            raise CollaboratorUnavailable(f"Executor unreachable: {exc.reason}") from exc

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StepExecutionFailed("tool_error", "Executor returned non-JSON response") from exc
        return ActualState.model_validate(_state_payload(payload))


def _state_payload(payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise StepExecutionFailed("tool_error", "Executor response must be a JSON object")
    state = payload.get("state", payload)
    if not isinstance(state, dict):
        raise StepExecutionFailed("tool_error", "Executor state must be a JSON object")
    return {
        "dom_snapshot": str(state.get("dom_snapshot") or state.get("dom") or ""),
        "url": str(state.get("url") or ""),
        "extracted_text": state.get("extracted_text"),
        "element_states": state.get("element_states"),
    }


def _action_failure(body: str, *, status: int) -> StepExecutionFailed:
    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        payload = {}
    details = payload.get("error") if isinstance(payload, dict) else None
    if not isinstance(details, dict):
        return StepExecutionFailed("tool_error", f"Executor rejected action ({status}): {body[:400]}")

    category = str(details.get("category", "tool_error"))
    if category not in KNOWN_CATEGORIES:
        category = "tool_error"
    return StepExecutionFailed(category, str(details.get("message", "")) or f"status {status}")
