"""Self-correction engine, strategy table, and step rewriters."""

from agent_runner.correction.deterministic import DeterministicStepRewriter
from agent_runner.correction.engine import SelfCorrectionEngine
from agent_runner.correction.llm import OpenAIStepRewriter
from agent_runner.correction.rewriter import (
    RewriterResolution,
    StepRewriter,
    resolve_step_rewriter,
)
from agent_runner.correction.strategies import categorize_failure, select_strategy

__all__ = [
    "DeterministicStepRewriter",
    "OpenAIStepRewriter",
    "RewriterResolution",
    "SelfCorrectionEngine",
    "StepRewriter",
    "categorize_failure",
    "resolve_step_rewriter",
    "select_strategy",
]
