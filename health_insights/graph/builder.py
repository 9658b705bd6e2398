from langgraph.graph import END, START, StateGraph

from health_insights.graph.nodes import dispatch_node, specialist_node, synthesize_node
from health_insights.graph.state import CaseGraphState


def build_graph():
    graph = StateGraph(CaseGraphState)

    # --- nodes ---
    graph.add_node("dispatch", dispatch_node)
    graph.add_node("specialist", specialist_node)
    graph.add_node("synthesize", synthesize_node)

    # --- edges ---
    graph.add_edge(START, "dispatch")

    # dispatch fans out with Send; all specialist tasks share one superstep,
    # so synthesize runs once, after the last of them has settled.
    graph.add_edge("specialist", "synthesize")
    graph.add_edge("synthesize", END)

    return graph.compile(name="health-insights-mdt")


# Lazy singleton
_app = None


def get_graph_app():
    global _app
    if _app is None:
        _app = build_graph()
    return _app
