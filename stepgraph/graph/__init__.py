"""Graph structures: State, Nodes, Edges, and the Compiled Graph."""

from stepgraph.graph.compiled import CompiledGraph
from stepgraph.graph.drawing import DrawableGraph, DrawingKind
from stepgraph.graph.edge import END, START, EdgeConditionSpec, EdgeSpec, GraphDefinition
from stepgraph.graph.errors import (
    ExecutionError,
    GraphError,
    GraphRunError,
    GraphValidationError,
    InvalidConfigurationError,
    MissingEdgeError,
    MissingMappingError,
    MissingNodeError,
    RunErrorKind,
)
from stepgraph.graph.node import NodeOutput, NodeSpec
from stepgraph.graph.state import AgentState, append, merge_state, overwrite, schema_state_factory

__all__ = [
    # State
    "AgentState",
    "merge_state",
    "overwrite",
    "append",
    "schema_state_factory",
    # Node
    "NodeSpec",
    "NodeOutput",
    # Edge
    "START",
    "END",
    "EdgeSpec",
    "EdgeConditionSpec",
    "GraphDefinition",
    # Execution
    "CompiledGraph",
    # Drawing
    "DrawableGraph",
    "DrawingKind",
    # Errors
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
