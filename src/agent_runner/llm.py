"""Minimal OpenAI chat-completions client shared by the LLM-backed judge and rewriter."""

from __future__ import annotations

import json
import time
from typing import Any
from urllib import error, request

from agent_runner.errors import CollaboratorUnavailable


def chat_json(
    *,
    api_key: str,
    model: str,
    base_url: str,
    timeout_s: float,
    max_retries: int,
    backoff_s: float,
    system_prompt: str,
    user_prompt: str,
) -> dict[str, Any]:
    """Run one JSON-mode chat completion and return the parsed message content."""
    if not api_key:
        raise RuntimeError("OPENAI_API_KEY is missing")

    request_body = {
        "model": model,
        "temperature": 0,
        "response_format": {"type": "json_object"},
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
    }
    response_json = _request_with_retry(
        api_key=api_key,
        base_url=base_url,
        timeout_s=timeout_s,
        max_retries=max_retries,
        backoff_s=backoff_s,
        request_body=request_body,
    )
    return _parse_content(response_json)


def _request_with_retry(
    *,
    api_key: str,
    base_url: str,
    timeout_s: float,
    max_retries: int,
    backoff_s: float,
    request_body: dict[str, Any],
) -> dict[str, Any]:
    last_error: Exception | None = None
    for attempt in range(max_retries + 1):
        try:
            return _request_once(
                api_key=api_key,
                base_url=base_url,
                timeout_s=timeout_s,
                request_body=request_body,
            )
        except Exception as exc:  # noqa: BLE001
            last_error = exc
            if attempt < max_retries and backoff_s > 0:
                time.sleep(backoff_s)

    if last_error is None:
        raise RuntimeError("LLM request failed")
    raise last_error


def _request_once(
    *,
    api_key: str,
    base_url: str,
    timeout_s: float,
    request_body: dict[str, Any],
) -> dict[str, Any]:
    url = f"{base_url.rstrip('/')}/chat/completions"

    req = request.Request(
        url=url,
        data=json.dumps(request_body).encode("utf-8"),
        method="POST",
        headers={
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        },
    )
    try:
        with request.urlopen(req, timeout=timeout_s) as response:
            raw = response.read().decode("utf-8")
    except error.HTTPError as exc:
        message = exc.read().decode("utf-8", errors="replace")
        if exc.code >= 500:
            raise CollaboratorUnavailable(
                f"LLM request failed with status {exc.code}: {message[:400]}"
            ) from exc
        raise RuntimeError(f"LLM request failed with status {exc.code}: {message[:400]}") from exc
    except error.URLError as exc:
        if isinstance(exc.reason, TimeoutError):
            raise TimeoutError(f"LLM request timed out after {timeout_s:.2f}s") from exc
        raise CollaboratorUnavailable(f"LLM request failed: {exc.reason}") from exc

    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise RuntimeError("LLM returned non-JSON response") from exc


def _parse_content(response_json: dict[str, Any]) -> dict[str, Any]:
    choices = response_json.get("choices", [])
    if not choices:
        raise RuntimeError("LLM response missing choices")

    content = choices[0].get("message", {}).get("content")
    if isinstance(content, list):
        parts = [
            item["text"]
            for item in content
            if isinstance(item, dict) and isinstance(item.get("text"), str)
        ]
        content_text = "".join(parts).strip()
    elif isinstance(content, str):
        content_text = content.strip()
    else:
        content_text = ""

    if not content_text:
        raise RuntimeError("LLM response had empty content")

    try:
        parsed = json.loads(content_text)
    except json.JSONDecodeError as exc:
        raise RuntimeError("LLM content was not valid JSON") from exc
    if not isinstance(parsed, dict):
        raise RuntimeError("LLM content must be a JSON object")
    return parsed
