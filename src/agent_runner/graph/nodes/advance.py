"""Advance node: move the cursor past a succeeded step."""

from agent_runner.graph.state import RunState


def run(state: RunState) -> RunState:
    plan = state["plan"]
    plan = plan.model_copy(update={"current_step_index": plan.current_step_index + 1})
    return {"plan": plan, "status": "completed" if plan.finished else "executing"}
