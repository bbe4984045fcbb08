"""OpenAI-backed step rewriter."""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from agent_runner.llm import chat_json
from agent_runner.schemas import Step, TaskPlan

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You repair failed browser automation steps. Actions are written as "
    "toolName(arg, ...), for example click(#submit) or setValue(#email, user@example.com). "
    "Return JSON only."
)


class OpenAIStepRewriter:
    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: str,
        timeout_s: float,
        max_retries: int,
        backoff_s: float,
    ) -> None:
        if not api_key:
            raise RuntimeError("OPENAI_API_KEY is missing")
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.backoff_s = backoff_s

    def alternative_selector(self, step: Step, attempt_number: int, reason: str) -> Step | None:
        return self._rewrite_step(
            step,
            instruction=(
                "The element could not be located. Keep the same tool and target the same "
                "element with a different selector."
            ),
            attempt_number=attempt_number,
            reason=reason,
        )

    def alternative_tool(self, step: Step, attempt_number: int, reason: str) -> Step | None:
        return self._rewrite_step(
            step,
            instruction=(
                "The action did not have the intended effect. Achieve the same goal with a "
                "different tool, e.g. keyboard input instead of a click."
            ),
            attempt_number=attempt_number,
            reason=reason,
        )

    def replan_tail(self, plan: TaskPlan, step_index: int, reason: str) -> list[Step] | None:
        remaining = [
            step.model_dump(mode="json", include={"description", "action", "expected_outcome"})
            for step in plan.steps[step_index:]
        ]
        completed = [step.description for step in plan.steps[:step_index]]
        try:
            payload = self._chat(
                "The remaining plan no longer fits the page. Replace the remaining steps.\n"
                f"Completed steps: {json.dumps(completed)}\n"
                f"Remaining steps: {json.dumps(remaining)}\n"
                f"Failure: {reason}\n"
                'Output schema: {"steps": [{"description": "...", "action": "...", '
                '"expected_outcome": {"description": "..."}}]}'
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("step_rewriter event=replan_failed error=%s", exc)
            return None

        raw_steps = payload.get("steps")
        if not isinstance(raw_steps, list):
            return None
        tail: list[Step] = []
        for offset, item in enumerate(raw_steps):
            if not isinstance(item, dict):
                return None
            try:
                tail.append(
                    Step.model_validate(
                        {
                            "index": step_index + offset,
                            "description": str(item.get("description", "")),
                            "action": str(item.get("action", "")),
                            "expected_outcome": item.get("expected_outcome") or {},
                        }
                    )
                )
            except ValidationError as exc:
                logger.warning("step_rewriter event=invalid_tail_step error=%s", exc)
                return None
        return tail

    def _rewrite_step(
        self, step: Step, *, instruction: str, attempt_number: int, reason: str
    ) -> Step | None:
        try:
            payload = self._chat(
                f"{instruction}\n"
                f"Step description: {step.description}\n"
                f"Failed action: {step.action}\n"
                f"Attempt: {attempt_number}\n"
                f"Failure: {reason}\n"
                'Output schema: {"action": "...", "description": "..."}'
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("step_rewriter event=rewrite_failed error=%s", exc)
            return None

        action = str(payload.get("action", "")).strip()
        if not action or action == step.action:
            return None
        description = str(payload.get("description", "")).strip() or step.description
        return step.model_copy(update={"action": action, "description": description})

    def _chat(self, user_prompt: str) -> dict[str, Any]:
        return chat_json(
            api_key=self.api_key,
            model=self.model,
            base_url=self.base_url,
            timeout_s=self.timeout_s,
            max_retries=self.max_retries,
            backoff_s=self.backoff_s,
            system_prompt=SYSTEM_PROMPT,
            user_prompt=user_prompt,
        )
