"""
Edge Protocol - How nodes connect in a graph.

Every node except the finish point has exactly one outgoing edge, which is
either:
- direct: always continue with a fixed target node (possibly END)
- conditional: run a condition action against the state just produced and
  look the routing key it returns up in a mapping of key -> target node

    EdgeSpec(source="agent", target="tools")
    EdgeSpec(
        source="agent",
        condition=EdgeConditionSpec(
            action=should_continue,
            mappings={"continue": "tools", "end": END},
        ),
    )

The GraphDefinition ties nodes, edges, the entry/finish points and the state
contract (factory + reducers) together and compiles into a CompiledGraph.
"""

from collections import Counter
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from stepgraph.graph.errors import GraphValidationError
from stepgraph.graph.node import NodeSpec
from stepgraph.graph.state import AgentState, merge_state

if TYPE_CHECKING:
    from stepgraph.config import RuntimeConfig
    from stepgraph.graph.compiled import CompiledGraph

START = "__start__"
END = "__end__"

RESERVED_NODE_IDS = frozenset({START, END})


class EdgeConditionSpec(BaseModel):
    """Condition action plus the routing key -> target node mapping."""

    action: Callable[..., Any]
    mappings: dict[Any, str] = Field(default_factory=dict)

    model_config = {"frozen": True}


class EdgeSpec(BaseModel):
    """
    Specification for the outgoing edge of a node.

    Exactly one of ``target`` and ``condition`` must be set. A spec that sets
    neither (or both) is reported by ``GraphDefinition.validate()``; when it
    reaches a run anyway, resolving it fails with ExecutionError.
    """

    source: str = Field(description="Source node ID")
    target: str | None = Field(default=None, description="Target node ID for direct edges")
    condition: EdgeConditionSpec | None = None

    model_config = {"frozen": True}

    @property
    def is_direct(self) -> bool:
        return self.target is not None

    @property
    def is_conditional(self) -> bool:
        return self.condition is not None

    def targets(self) -> list[str]:
        """All node IDs this edge can lead to."""
        if self.target is not None:
            return [self.target]
        if self.condition is not None:
            return list(self.condition.mappings.values())
        return []


class GraphDefinition(BaseModel):
    """
    Complete, immutable description of a graph.

    Example:
        GraphDefinition(
            id="counter",
            entry_point="a",
            nodes=[NodeSpec(id="a", action=first), NodeSpec(id="b", action=second)],
            edges=[EdgeSpec(source="a", target="b"), EdgeSpec(source="b", target=END)],
        )
    """

    id: str = "graph"
    entry_point: str = Field(description="ID of the first node to execute")
    finish_point: str | None = Field(
        default=None,
        description="ID of the node whose completion ends the run, skipping its edge",
    )

    nodes: list[NodeSpec] = Field(default_factory=list)
    edges: list[EdgeSpec] = Field(default_factory=list)

    # State contract
    state_factory: Callable[..., Any] = Field(
        default=AgentState,
        description="Builds the initial state from raw caller input",
    )
    reducers: dict[str, Callable[..., Any]] = Field(
        default_factory=dict,
        description="Per-key merge functions, keys without one are overwritten",
    )

    description: str = ""

    model_config = {"frozen": True}

    def get_node(self, node_id: str) -> NodeSpec | None:
        """Get a node by ID."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def get_edge(self, source: str) -> EdgeSpec | None:
        """Get the outgoing edge of a node."""
        for edge in self.edges:
            if edge.source == source:
                return edge
        return None

    def create_state(self, inputs: Mapping[str, Any]) -> AgentState:
        """Build the initial state from raw caller input."""
        return self.state_factory(inputs)

    def merge(self, state: AgentState, partial: Mapping[str, Any] | None) -> AgentState:
        """Merge a node's partial update into ``state`` using this graph's reducers."""
        return merge_state(state, partial, self.reducers)

    def validate(self) -> list[str]:
        """Validate the graph structure."""
        errors = []
        node_ids = {node.id for node in self.nodes}

        if not self.entry_point:
            errors.append("Entry point is not set")
        elif self.entry_point == START:
            errors.append(f"Entry point cannot be '{START}'")
        elif self.entry_point != END and self.entry_point not in node_ids:
            errors.append(f"Entry point '{self.entry_point}' not found")

        if self.finish_point is not None and self.finish_point not in node_ids:
            errors.append(f"Finish point '{self.finish_point}' not found")

        # Node ids
        for node_id, count in Counter(node.id for node in self.nodes).items():
            if count > 1:
                errors.append(f"Duplicate node ID: '{node_id}'")
            if node_id in RESERVED_NODE_IDS:
                errors.append(f"Node ID '{node_id}' is reserved")

        # Edges
        for source, count in Counter(edge.source for edge in self.edges).items():
            if count > 1:
                errors.append(f"Node '{source}' has {count} outgoing edges, expected one")

        for edge in self.edges:
            if edge.source not in node_ids:
                errors.append(f"Edge references missing source '{edge.source}'")

            if edge.is_direct and edge.is_conditional:
                errors.append(f"Edge from '{edge.source}' is both direct and conditional")
            elif not edge.is_direct and not edge.is_conditional:
                errors.append(f"Edge from '{edge.source}' is neither direct nor conditional")

            for target in edge.targets():
                if target != END and target not in node_ids:
                    errors.append(
                        f"Edge from '{edge.source}' references missing target '{target}'"
                    )

        return errors

    def compile(
        self,
        validate: bool = True,
        config: "RuntimeConfig | None" = None,
    ) -> "CompiledGraph":
        """
        Compile into a runnable graph.

        Args:
            validate: Reject structurally invalid graphs up front
            config: Runtime settings (iteration cap, queue size)

        Returns:
            CompiledGraph ready to stream/invoke

        Raises:
            GraphValidationError: If validation is on and the graph is invalid
        """
        from stepgraph.graph.compiled import CompiledGraph

        if validate:
            errors = self.validate()
            if errors:
                raise GraphValidationError(errors)

        if config is None:
            return CompiledGraph(self)
        return CompiledGraph(
            self,
            max_iterations=config.max_iterations,
            queue_size=config.queue_size,
        )
