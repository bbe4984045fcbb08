"""LangGraph workflow assembly for one task run."""

from langgraph.graph import END, START, StateGraph

from agent_runner.graph.context import RunContext
from agent_runner.graph.nodes import advance, correct, execute, finalize, verify
from agent_runner.graph.state import RunState


def build_graph(ctx: RunContext):
    def _route_start(state: RunState) -> str:
        if ctx.cancelled:
            return "cancel"
        if state["plan"].finished:
            return "done"
        return "execute"

    def _route_after_execute(state: RunState) -> str:
        return "abort" if state.get("status") == "failed" else "verify"

    def _route_after_verify(state: RunState) -> str:
        status = state.get("status")
        if status == "failed":
            return "abort"
        if status == "advancing":
            return "advance"
        if ctx.cancelled:
            return "cancel"
        return "correct"

    def _route_after_correct(state: RunState) -> str:
        if state.get("status") == "failed":
            return "abort"
        if ctx.cancelled:
            return "cancel"
        return "retry"

    def _route_after_advance(state: RunState) -> str:
        if state.get("status") == "completed":
            return "done"
        if ctx.cancelled:
            return "cancel"
        return "next"

    graph = StateGraph(RunState)

    graph.add_node("execute", lambda state: execute.run(state, ctx))
    graph.add_node("verify", lambda state: verify.run(state, ctx))
    graph.add_node("correct", lambda state: correct.run(state, ctx))
    graph.add_node("advance", advance.run)
    graph.add_node("cancel", finalize.cancel)
    graph.add_node("complete", lambda state: {"status": "completed"})
    graph.add_node("finalize", lambda state: finalize.run(state, ctx))

    graph.add_conditional_edges(
        START,
        _route_start,
        {"execute": "execute", "cancel": "cancel", "done": "complete"},
    )
    graph.add_conditional_edges(
        "execute", _route_after_execute, {"verify": "verify", "abort": "finalize"}
    )
    graph.add_conditional_edges(
        "verify",
        _route_after_verify,
        {"advance": "advance", "correct": "correct", "cancel": "cancel", "abort": "finalize"},
    )
    graph.add_conditional_edges(
        "correct",
        _route_after_correct,
        {"retry": "execute", "cancel": "cancel", "abort": "finalize"},
    )
    graph.add_conditional_edges(
        "advance",
        _route_after_advance,
        {"next": "execute", "cancel": "cancel", "done": "finalize"},
    )
    graph.add_edge("cancel", "finalize")
    graph.add_edge("complete", "finalize")
    graph.add_edge("finalize", END)

    return graph.compile()


def recursion_limit(step_count: int, max_attempts: int) -> int:
    """Upper bound on node visits for a run, with room for a longer replacement tail."""
    per_step = (max_attempts + 1) * 3 + 1
    return (step_count + 10) * per_step + 10
