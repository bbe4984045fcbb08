"""Semantic judge adapters, mode resolution, and the timeout gateway in front of them."""

from __future__ import annotations

import logging
import re
from concurrent.futures import ThreadPoolExecutor, TimeoutError
from dataclasses import dataclass
from typing import Protocol

from agent_runner.config.settings import Settings
from agent_runner.errors import CollaboratorUnavailable
from agent_runner.llm import chat_json
from agent_runner.schemas import ActualState, CollaboratorFailure, JudgeVerdict

logger = logging.getLogger(__name__)

STOP_WORDS = frozenset(
    {
        "the", "and", "for", "with", "that", "this", "should", "page", "into",
        "from", "will", "been", "have", "has", "are", "was", "user", "then",
    }
)
_TAG_PATTERN = re.compile(r"<[^>]+>")
_WORD_PATTERN = re.compile(r"[a-z0-9]{3,}")


class SemanticJudge(Protocol):
    def judge(self, expected_description: str, actual: ActualState) -> JudgeVerdict: ...


def observation_text(actual: ActualState, max_chars: int = 4000) -> str:
    text = actual.extracted_text or _TAG_PATTERN.sub(" ", actual.dom_snapshot)
    text = re.sub(r"\s+", " ", text).strip()
    return text[:max_chars]


class KeywordSemanticJudge:
    """Deterministic judge: the observation must mention enough of the expected terms."""

    def __init__(self, *, min_overlap: float = 0.5) -> None:
        self.min_overlap = min_overlap

    def judge(self, expected_description: str, actual: ActualState) -> JudgeVerdict:
        terms = [
            word
            for word in dict.fromkeys(_WORD_PATTERN.findall(expected_description.lower()))
            if word not in STOP_WORDS
        ]
        if not terms:
            return JudgeVerdict(match=False, explanation="No expected outcome to compare against")

        haystack = f"{observation_text(actual)} {actual.url}".lower()
        found = [term for term in terms if term in haystack]
        missing = [term for term in terms if term not in haystack]
        overlap = len(found) / len(terms)
        if overlap >= self.min_overlap:
            return JudgeVerdict(
                match=True,
                explanation=f"Observation mentions {len(found)}/{len(terms)} expected terms",
            )
        return JudgeVerdict(
            match=False,
            explanation=(
                f"Observation mentions only {len(found)}/{len(terms)} expected terms; "
                f"missing: {', '.join(missing[:5])}"
            ),
        )


class OpenAISemanticJudge:
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

    def judge(self, expected_description: str, actual: ActualState) -> JudgeVerdict:
        payload = chat_json(
            api_key=self.api_key,
            model=self.model,
            base_url=self.base_url,
            timeout_s=self.timeout_s,
            max_retries=self.max_retries,
            backoff_s=self.backoff_s,
            system_prompt=(
                "You verify whether a browser action achieved its expected outcome. "
                "Return JSON only with keys 'match' (boolean) and 'explanation' (string). "
                "If the page shows an error, a missing element, or an unrelated page, "
                "say so explicitly in the explanation."
            ),
            user_prompt=(
                f"Expected outcome:\n{expected_description}\n\n"
                f"Current URL: {actual.url}\n\n"
                f"Page text:\n{observation_text(actual, max_chars=2000)}\n\n"
                'Output schema: {"match": true, "explanation": "..."}'
            ),
        )
        return JudgeVerdict.model_validate(
            {
                "match": bool(payload.get("match", False)),
                "explanation": str(payload.get("explanation", "")),
            }
        )


class SemanticJudgeGateway:
    """Bound judge calls by a timeout and turn failures into result variants."""

    def __init__(self, judge: SemanticJudge, *, timeout_s: float = 30.0) -> None:
        self.judge_impl = judge
        self.timeout_s = timeout_s

    def judge(
        self, expected_description: str, actual: ActualState
    ) -> JudgeVerdict | CollaboratorFailure:
        pool = ThreadPoolExecutor(max_workers=1)
        future = pool.submit(self.judge_impl.judge, expected_description, actual)
        try:
            return future.result(timeout=self.timeout_s)
        except TimeoutError:
            logger.warning("semantic_judge event=timeout timeout_s=%.2f", self.timeout_s)
            return JudgeVerdict(
                match=False,
                explanation=f"Semantic judge timed out after {self.timeout_s:.2f}s",
                timed_out=True,
            )
        except (CollaboratorUnavailable, ConnectionError) as exc:
            logger.warning("semantic_judge event=unavailable error=%s", exc)
            return CollaboratorFailure(collaborator="semantic_judge", message=str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.warning("semantic_judge event=error error=%s", exc)
            return JudgeVerdict(match=False, explanation=f"Semantic judge error: {exc}")
        finally:
            pool.shutdown(wait=False)


@dataclass(frozen=True)
class JudgeResolution:
    judge: SemanticJudge
    requested_mode: str
    effective_mode: str
    fallback_reason: str | None = None


def resolve_semantic_judge(settings: Settings) -> JudgeResolution:
    normalized_mode = settings.judge_mode.lower().strip()
    if normalized_mode != "llm":
        return JudgeResolution(
            judge=KeywordSemanticJudge(),
            requested_mode=normalized_mode,
            effective_mode="deterministic",
        )

    if settings.llm_provider.lower().strip() != "openai":
        return JudgeResolution(
            judge=KeywordSemanticJudge(),
            requested_mode=normalized_mode,
            effective_mode="deterministic",
            fallback_reason=f"unsupported_provider:{settings.llm_provider}",
        )

    try:
        judge = OpenAISemanticJudge(
            api_key=settings.resolved_openai_api_key(),
            model=settings.llm_model,
            base_url=settings.llm_base_url,
            timeout_s=settings.llm_timeout_s,
            max_retries=settings.llm_max_retries,
            backoff_s=settings.llm_backoff_s,
        )
    except Exception as exc:  # noqa: BLE001
        return JudgeResolution(
            judge=KeywordSemanticJudge(),
            requested_mode=normalized_mode,
            effective_mode="deterministic",
            fallback_reason=str(exc),
        )

    return JudgeResolution(judge=judge, requested_mode=normalized_mode, effective_mode="llm")
