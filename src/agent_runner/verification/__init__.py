"""Verification engine and its semantic judge adapters."""

from agent_runner.verification.engine import (
    NO_MATCH_CONFIDENCE,
    SEMANTIC_MATCH_CONFIDENCE,
    STRUCTURAL_MATCH_CONFIDENCE,
    VerificationEngine,
)
from agent_runner.verification.semantic import (
    JudgeResolution,
    KeywordSemanticJudge,
    OpenAISemanticJudge,
    SemanticJudge,
    SemanticJudgeGateway,
    resolve_semantic_judge,
)

__all__ = [
    "JudgeResolution",
    "KeywordSemanticJudge",
    "NO_MATCH_CONFIDENCE",
    "OpenAISemanticJudge",
    "SEMANTIC_MATCH_CONFIDENCE",
    "STRUCTURAL_MATCH_CONFIDENCE",
    "SemanticJudge",
    "SemanticJudgeGateway",
    "VerificationEngine",
    "resolve_semantic_judge",
]
