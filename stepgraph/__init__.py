"""
stepgraph - Execution engine for stateful, possibly cyclic graphs of steps.

    from stepgraph import END, StateGraph

    graph = StateGraph("counter")
    graph.add_node("a", lambda state: {"x": 1})
    graph.add_node("b", lambda state: {"x": state["x"] + 1})
    graph.add_edge("a", "b").add_edge("b", END).set_entry_point("a")

    app = graph.compile()
    final_state = await app.invoke({})
"""

from stepgraph.builder import StateGraph, ValidationResult
from stepgraph.config import RuntimeConfig
from stepgraph.graph import (
    END,
    START,
    AgentState,
    CompiledGraph,
    DrawableGraph,
    DrawingKind,
    EdgeConditionSpec,
    EdgeSpec,
    ExecutionError,
    GraphDefinition,
    GraphError,
    GraphRunError,
    GraphValidationError,
    InvalidConfigurationError,
    MissingEdgeError,
    MissingMappingError,
    MissingNodeError,
    NodeOutput,
    NodeSpec,
    RunErrorKind,
    append,
    merge_state,
    overwrite,
    schema_state_factory,
)
from stepgraph.runtime import NodeOutputStream

__version__ = "0.1.0"

__all__ = [
    "START",
    "END",
    "AgentState",
    "merge_state",
    "overwrite",
    "append",
    "schema_state_factory",
    "NodeSpec",
    "NodeOutput",
    "EdgeSpec",
    "EdgeConditionSpec",
    "GraphDefinition",
    "CompiledGraph",
    "NodeOutputStream",
    "StateGraph",
    "ValidationResult",
    "RuntimeConfig",
    "DrawableGraph",
    "DrawingKind",
    "GraphError",
    "GraphRunError",
    "RunErrorKind",
    "MissingNodeError",
    "MissingEdgeError",
    "MissingMappingError",
    "ExecutionError",
    "InvalidConfigurationError",
    "GraphValidationError",
]
