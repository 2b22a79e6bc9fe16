"""
Compiled Graph - Runs a graph definition step by step.

The compiled graph:
1. Flattens the definition into node id -> action and node id -> edge tables
2. Builds the initial state from the caller's input
3. Executes one node at a time, merging each partial update into a new state
4. Emits a NodeOutput per executed node through a NodeOutputStream
5. Routes to the next node (direct or conditional edge) until END, the
   finish point, or the iteration cap

Example:
    graph = definition.compile()

    async for output in graph.stream({"question": "..."}):
        print(output.node, output.state)

    final_state = await graph.invoke({"question": "..."})
"""

import logging
import threading
import time
import uuid
from collections.abc import Callable, Mapping
from typing import Any

from stepgraph.config import DEFAULT_MAX_ITERATIONS, DEFAULT_QUEUE_SIZE
from stepgraph.graph.drawing import DrawableGraph, DrawingKind, render_mermaid, render_plantuml
from stepgraph.graph.edge import END, EdgeSpec, GraphDefinition
from stepgraph.graph.errors import (
    ExecutionError,
    InvalidConfigurationError,
    MissingEdgeError,
    MissingMappingError,
    MissingNodeError,
)
from stepgraph.graph.node import NodeOutput, call_action
from stepgraph.graph.state import AgentState
from stepgraph.observability import set_trace_context
from stepgraph.runtime.stream import Emitter, NodeOutputStream

logger = logging.getLogger(__name__)


class CompiledGraph:
    """
    Runnable form of a GraphDefinition.

    The node and edge tables are read-only after construction and shared by
    every run. The iteration cap is the only mutable setting; it is guarded by
    a lock and captured when a run starts, so changing it never affects a run
    already in progress.
    """

    def __init__(
        self,
        definition: GraphDefinition,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ):
        """
        Initialize the compiled graph.

        Args:
            definition: Graph to run (not validated here, see GraphDefinition.compile)
            max_iterations: Maximum node executions per run
            queue_size: Hand-off queue capacity, 0 for unbounded
        """
        self.definition = definition
        self.nodes: dict[str, Callable[..., Any]] = {
            node.id: node.action for node in definition.nodes
        }
        self.edges: dict[str, EdgeSpec] = {edge.source: edge for edge in definition.edges}

        self._lock = threading.Lock()
        self._max_iterations = DEFAULT_MAX_ITERATIONS
        self.set_max_iterations(max_iterations)

        if queue_size < 0:
            raise InvalidConfigurationError(f"queue_size must be >= 0, got {queue_size}")
        self.queue_size = queue_size

    @property
    def entry_point(self) -> str:
        return self.definition.entry_point

    @property
    def finish_point(self) -> str | None:
        return self.definition.finish_point

    @property
    def max_iterations(self) -> int:
        with self._lock:
            return self._max_iterations

    def set_max_iterations(self, max_iterations: int) -> None:
        """
        Replace the iteration cap for subsequent runs.

        Raises:
            InvalidConfigurationError: If ``max_iterations`` is not an int > 0
        """
        if (
            isinstance(max_iterations, bool)
            or not isinstance(max_iterations, int)
            or max_iterations <= 0
        ):
            raise InvalidConfigurationError(
                f"max_iterations must be a positive integer, got {max_iterations!r}"
            )
        with self._lock:
            self._max_iterations = max_iterations

    async def _next_node_id(self, node_id: str, state: AgentState) -> str:
        """Resolve the node that follows ``node_id`` given the post-merge state."""
        edge = self.edges.get(node_id)
        if edge is None:
            raise MissingEdgeError(node_id)

        if edge.target is not None:
            return edge.target

        if edge.condition is not None:
            routing_key = await call_action(edge.condition.action, state)
            try:
                target = edge.condition.mappings.get(routing_key)
            except TypeError:  # unhashable routing key
                target = None
            if target is None:
                raise MissingMappingError(node_id, routing_key)
            return target

        raise ExecutionError(f"Invalid edge value for node [{node_id}]", node_id)

    async def _run(
        self,
        inputs: Mapping[str, Any],
        max_iterations: int,
        run_id: str,
        emit: Emitter,
    ) -> bool:
        """
        Execute the graph, emitting one NodeOutput per executed node.

        Returns:
            True if the run stopped because the iteration cap was reached
        """
        set_trace_context(graph_id=self.definition.id, run_id=run_id)

        current = self.entry_point
        iterations = 0

        logger.info(f"Starting run at '{current}'", extra={"event": "run_started"})

        try:
            state = self.definition.create_state(inputs)

            while iterations < max_iterations and current != END:
                action = self.nodes.get(current)
                if action is None:
                    raise MissingNodeError(current)

                started = time.monotonic()
                partial = await call_action(action, state)
                if partial is not None and not isinstance(partial, Mapping):
                    raise TypeError(
                        f"Node '{current}' returned an invalid update: expected a mapping, "
                        f"got {type(partial).__name__}"
                    )
                state = self.definition.merge(state, partial)

                logger.debug(
                    f"Executed '{current}'",
                    extra={
                        "event": "node_executed",
                        "node_id": current,
                        "iteration": iterations,
                        "latency_ms": int((time.monotonic() - started) * 1000),
                    },
                )

                await emit(NodeOutput(current, state))

                if current == self.finish_point:
                    logger.info(
                        f"Reached finish point '{current}'",
                        extra={"event": "run_completed", "node_id": current},
                    )
                    return False

                current = await self._next_node_id(current, state)
                iterations += 1

        except Exception as e:
            logger.error(
                f"Run failed at '{current}': {e}",
                extra={"event": "run_failed", "node_id": current},
            )
            raise

        if current != END:
            logger.warning(
                f"Iteration cap of {max_iterations} reached before '{current}', stopping",
                extra={"event": "run_truncated", "node_id": current, "iteration": iterations},
            )
            return True

        logger.info(f"Run completed after {iterations} step(s)", extra={"event": "run_completed"})
        return False

    def stream(self, inputs: Mapping[str, Any] | None = None) -> NodeOutputStream:
        """
        Start a run and return its outputs as a lazy async sequence.

        Must be called while an event loop is running. No node runs before the
        caller yields control to the loop.

        Args:
            inputs: Raw input handed to the definition's state factory

        Returns:
            Single-pass NodeOutputStream for this run
        """
        if inputs is None:
            inputs = {}
        max_iterations = self.max_iterations
        run_id = uuid.uuid4().hex

        async def produce(emit: Emitter) -> bool:
            return await self._run(inputs, max_iterations, run_id, emit)

        return NodeOutputStream(
            produce,
            queue_size=self.queue_size,
            name=f"stepgraph:{self.definition.id}:{run_id[:8]}",
        )

    async def invoke(self, inputs: Mapping[str, Any] | None = None) -> AgentState | None:
        """
        Run to completion and return the last state.

        Returns:
            State of the last NodeOutput, or None if no node executed
        """
        last: NodeOutput | None = None
        async with self.stream(inputs) as outputs:
            async for output in outputs:
                last = output
        return last.state if last is not None else None

    def get_graph(
        self,
        kind: DrawingKind | str = DrawingKind.PLANTUML,
        title: str | None = None,
    ) -> DrawableGraph:
        """Render the node and edge tables as a text diagram."""
        kind = DrawingKind(kind)
        render = render_mermaid if kind == DrawingKind.MERMAID else render_plantuml
        content = render(
            list(self.nodes),
            self.edges,
            self.entry_point,
            self.finish_point,
            title=title,
        )
        return DrawableGraph(kind=kind, content=content)

    def __repr__(self) -> str:
        return f"CompiledGraph(id='{self.definition.id}', nodes={len(self.nodes)})"
