"""Rule-based step rewriting for actions written as ``tool(arg, ...)``."""

from __future__ import annotations

import re

from agent_runner.schemas import Step, TaskPlan

_ACTION_PATTERN = re.compile(r"^\s*([A-Za-z_][\w.]*)\s*\((.*)\)\s*$", re.DOTALL)
_ATTRIBUTE_PATTERN = re.compile(r"""^\[[\w-]+\*?=["']?([^"'\]]+)["']?\]$""")

TOOL_SWAPS: dict[str, tuple[str, list[str]]] = {
    "click": ("press", ["Enter"]),
    "press": ("click", []),
    "setValue": ("type", []),
    "type": ("setValue", []),
    "fill": ("type", []),
}


def parse_action(action: str) -> tuple[str, list[str]] | None:
    match = _ACTION_PATTERN.match(action)
    if match is None:
        return None
    tool, raw_args = match.group(1), match.group(2).strip()
    if not raw_args:
        return tool, []
    return tool, [_strip_quotes(part.strip()) for part in _split_args(raw_args)]


def format_action(tool: str, args: list[str]) -> str:
    return f"{tool}({', '.join(args)})"


def selector_candidates(selector: str) -> list[str]:
    """Alternate selectors for the same element, most specific first."""
    name = _selector_name(selector)
    if not name:
        return []
    candidates = [
        f'[data-testid="{name}"]',
        f'[name="{name}"]',
        f'[aria-label="{name}"]',
        f"#{name}",
        f".{name}",
        f"text={name.replace('-', ' ').replace('_', ' ')}",
    ]
    return [candidate for candidate in candidates if candidate != selector.strip()]


class DeterministicStepRewriter:
    def alternative_selector(self, step: Step, attempt_number: int, reason: str) -> Step | None:
        parsed = parse_action(step.action)
        if parsed is None or not parsed[1]:
            return None
        tool, args = parsed

        candidates = selector_candidates(args[0])
        if not candidates:
            return None
        replacement = candidates[(attempt_number - 1) % len(candidates)]
        return _rewritten(step, format_action(tool, [replacement, *args[1:]]), args[0], replacement)

    def alternative_tool(self, step: Step, attempt_number: int, reason: str) -> Step | None:
        parsed = parse_action(step.action)
        if parsed is None:
            return None
        tool, args = parsed

        swap = TOOL_SWAPS.get(tool)
        if swap is None:
            return None
        new_tool, extra_args = swap
        if tool == "press":
            new_args = args[:1]
        else:
            new_args = [*args, *extra_args]
        return _rewritten(step, format_action(new_tool, new_args), tool, new_tool)

    def replan_tail(self, plan: TaskPlan, step_index: int, reason: str) -> list[Step] | None:
        # Rules cannot invent new steps.
        return None


def _rewritten(step: Step, action: str, old: str, new: str) -> Step:
    return step.model_copy(
        update={
            "action": action,
            "description": f"{step.description} (retry with {new} instead of {old})",
        }
    )


def _selector_name(selector: str) -> str:
    text = selector.strip()
    if text.startswith("text="):
        return re.sub(r"\s+", "-", text[5:].strip().lower())
    attribute = _ATTRIBUTE_PATTERN.match(text)
    if attribute:
        return attribute.group(1).strip()
    if text[:1] in {"#", "."}:
        return text[1:]
    return text if re.fullmatch(r"[\w-]+", text) else ""


def _split_args(raw_args: str) -> list[str]:
    parts: list[str] = []
    current: list[str] = []
    quote: str | None = None
    depth = 0
    for char in raw_args:
        if quote:
            current.append(char)
            if char == quote:
                quote = None
            continue
        if char in {"'", '"'}:
            quote = char
        elif char == "[":
            depth += 1
        elif char == "]":
            depth -= 1
        elif char == "," and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        current.append(char)
    parts.append("".join(current))
    return parts


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        return value[1:-1]
    return value
