"""Step rewriter contract and mode resolution."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from agent_runner.config.settings import Settings
from agent_runner.correction.deterministic import DeterministicStepRewriter
from agent_runner.correction.llm import OpenAIStepRewriter
from agent_runner.schemas import Step, TaskPlan


class StepRewriter(Protocol):
    """Produces replacement steps; ``None`` means no alternative is known."""

    def alternative_selector(self, step: Step, attempt_number: int, reason: str) -> Step | None: ...

    def alternative_tool(self, step: Step, attempt_number: int, reason: str) -> Step | None: ...

    def replan_tail(self, plan: TaskPlan, step_index: int, reason: str) -> list[Step] | None: ...


@dataclass(frozen=True)
class RewriterResolution:
    rewriter: StepRewriter
    requested_mode: str
    effective_mode: str
    fallback_reason: str | None = None


def resolve_step_rewriter(settings: Settings) -> RewriterResolution:
    normalized_mode = settings.correction_mode.lower().strip()
    if normalized_mode != "llm":
        return RewriterResolution(
            rewriter=DeterministicStepRewriter(),
            requested_mode=normalized_mode,
            effective_mode="deterministic",
        )

    if settings.llm_provider.lower().strip() != "openai":
        return RewriterResolution(
            rewriter=DeterministicStepRewriter(),
            requested_mode=normalized_mode,
            effective_mode="deterministic",
            fallback_reason=f"unsupported_provider:{settings.llm_provider}",
        )

    try:
        rewriter = OpenAIStepRewriter(
            api_key=settings.resolved_openai_api_key(),
            model=settings.llm_model,
            base_url=settings.llm_base_url,
            timeout_s=settings.llm_timeout_s,
            max_retries=settings.llm_max_retries,
            backoff_s=settings.llm_backoff_s,
        )
    except Exception as exc:  # noqa: BLE001
        return RewriterResolution(
            rewriter=DeterministicStepRewriter(),
            requested_mode=normalized_mode,
            effective_mode="deterministic",
            fallback_reason=str(exc),
        )

    return RewriterResolution(rewriter=rewriter, requested_mode=normalized_mode, effective_mode="llm")
