"""Structural checks over a raw DOM snapshot.

Selectors handed to these helpers come from planner output and are loose:
``submit-button``, ``#login``, ``.nav-item`` or plain text like ``Sign in``.
Matching is regex based over the serialized DOM, so every selector is
entity-decoded and escaped before use.
"""

from __future__ import annotations

import html
import re
from urllib.parse import urlsplit

from agent_runner.schemas import ActualState, DomCheckResults, DomExpectations

_SELECTOR_PREFIXES = ("#", ".")


def sanitize_selector(selector: str) -> str:
    if not selector:
        return ""
    return re.escape(html.unescape(selector))


def _bare_selector(selector: str) -> str:
    stripped = selector.strip()
    if stripped[:1] in _SELECTOR_PREFIXES:
        return stripped[1:]
    return stripped


def element_exists(dom: str, selector: str) -> bool:
    if not selector or not dom:
        return False

    bare = _bare_selector(selector)
    safe = sanitize_selector(bare)
    patterns = (
        rf"id=[\"']{safe}[\"']",
        rf"class=[\"'][^\"']*\b{safe}\b[^\"']*[\"']",
        rf"data-testid=[\"']{safe}[\"']",
        rf"name=[\"']{safe}[\"']",
        rf"aria-label=[\"'][^\"']*{safe}[^\"']*[\"']",
    )
    for pattern in patterns:
        if re.search(pattern, dom, flags=re.IGNORECASE):
            return True

    # Natural-language selectors ("Sign in", "Checkout") are matched as page text.
    looks_like_text = " " in bare or not re.search(r"[_-]", bare)
    if looks_like_text and bare.lower() in dom.lower():
        return True

    return bool(re.search(rf"<{safe}\b", dom, flags=re.IGNORECASE))


def element_not_exists(dom: str, selector: str) -> bool:
    return not element_exists(dom, selector)


def element_has_text(dom: str, selector: str, text: str) -> bool:
    if not selector or not text or not dom:
        return False

    safe = sanitize_selector(_bare_selector(selector))
    patterns = (
        rf"id=[\"']{safe}[\"'][^>]*>([\s\S]*?)</",
        rf"class=[\"'][^\"']*\b{safe}\b[^\"']*[\"'][^>]*>([\s\S]*?)</",
    )
    for pattern in patterns:
        match = re.search(pattern, dom, flags=re.IGNORECASE)
        if match and text in match.group(1):
            return True

    return text in dom


def has_significant_url_change(previous_url: str, current_url: str) -> bool:
    """Host, path, or query changes count; fragment-only changes do not."""
    if previous_url == current_url:
        return False
    try:
        before = urlsplit(previous_url)
        after = urlsplit(current_url)
    except ValueError:
        return True
    if not before.netloc and not after.netloc:
        return previous_url != current_url
    return (
        before.netloc.lower() != after.netloc.lower()
        or before.path != after.path
        or before.query != after.query
    )


def _reported_state(actual: ActualState, selector: str) -> tuple[bool, str | None] | None:
    for state in actual.element_states or []:
        if state.selector == selector:
            return state.exists, state.text
    return None


def perform_dom_checks(
    expected: DomExpectations | None,
    actual: ActualState,
    *,
    previous_url: str | None = None,
) -> DomCheckResults | None:
    """Evaluate every structural check with a concrete target; None when there are none."""
    if expected is None:
        return None

    dom = actual.dom_snapshot
    results: dict[str, bool] = {}

    if expected.element_should_exist:
        selector = expected.element_should_exist
        reported = _reported_state(actual, selector)
        results["element_exists"] = (
            reported[0] if reported is not None else element_exists(dom, selector)
        )

    if expected.element_should_not_exist:
        selector = expected.element_should_not_exist
        reported = _reported_state(actual, selector)
        results["element_not_exists"] = (
            not reported[0] if reported is not None else element_not_exists(dom, selector)
        )

    if expected.element_should_have_text:
        selector = expected.element_should_have_text.selector
        text = expected.element_should_have_text.text
        reported = _reported_state(actual, selector)
        if reported is not None and reported[1] is not None:
            results["element_text_matches"] = reported[0] and text in reported[1]
        else:
            results["element_text_matches"] = element_has_text(dom, selector, text)

    if expected.url_should_change is not None and previous_url is not None:
        changed = has_significant_url_change(previous_url, actual.url)
        results["url_changed"] = changed if expected.url_should_change else not changed

    if not results:
        return None
    return DomCheckResults(**results)
