"""
Tests for edge resolution and run failures.

Each malformed-graph condition must abort the run with its own error kind
and node id, after every output produced before the failure.
"""

import logging

import pytest
from pydantic import BaseModel, ValidationError

from stepgraph.graph.compiled import CompiledGraph
from stepgraph.graph.edge import END, EdgeConditionSpec, EdgeSpec, GraphDefinition
from stepgraph.graph.errors import (
    ExecutionError,
    GraphRunError,
    MissingEdgeError,
    MissingMappingError,
    MissingNodeError,
    RunErrorKind,
)
from stepgraph.graph.node import NodeSpec
from stepgraph.graph.state import schema_state_factory


async def drain(stream, outputs):
    async for output in stream:
        outputs.append(output)


def routed_definition(condition, mappings=None) -> GraphDefinition:
    """A routes through a conditional edge, B goes to END."""
    if mappings is None:
        mappings = {"go": "B", "stop": END}
    return GraphDefinition(
        id="routed",
        entry_point="A",
        nodes=[
            NodeSpec(id="A", action=lambda state: {"x": 1}),
            NodeSpec(id="B", action=lambda state: {"x": state["x"] + 1}),
        ],
        edges=[
            EdgeSpec(source="A", condition=EdgeConditionSpec(action=condition, mappings=mappings)),
            EdgeSpec(source="B", target=END),
        ],
    )


# ---------------------------------------------------------------------------
# Conditional routing
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_conditional_edge_follows_mapping():
    graph = CompiledGraph(routed_definition(lambda state: "go"))

    outputs = []
    await drain(graph.stream({}), outputs)

    assert [o.node for o in outputs] == ["A", "B"]


@pytest.mark.asyncio
async def test_conditional_edge_can_route_to_end():
    graph = CompiledGraph(routed_definition(lambda state: "stop"))

    outputs = []
    await drain(graph.stream({}), outputs)

    assert [o.node for o in outputs] == ["A"]


@pytest.mark.asyncio
async def test_condition_sees_post_merge_state():
    seen = []

    def condition(state):
        seen.append(state.data)
        return "go" if state["x"] == 1 else "stop"

    graph = CompiledGraph(routed_definition(condition))

    outputs = []
    await drain(graph.stream({"x": 0}), outputs)

    assert seen == [{"x": 1}]
    assert seen[0] == outputs[0].state
    assert [o.node for o in outputs] == ["A", "B"]


@pytest.mark.asyncio
async def test_condition_routing_is_deterministic_for_equal_states():
    keys = []

    def condition(state):
        key = "go" if state["x"] > 0 else "stop"
        keys.append(key)
        return key

    graph = CompiledGraph(routed_definition(condition))

    await graph.invoke({})
    await graph.invoke({})

    assert keys == ["go", "go"]


@pytest.mark.asyncio
async def test_non_string_routing_keys():
    graph = CompiledGraph(
        routed_definition(lambda state: state["x"] > 0, mappings={True: "B", False: END})
    )

    result = await graph.invoke({})

    assert result == {"x": 2}


# ---------------------------------------------------------------------------
# Error taxonomy
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_unknown_routing_key_fails_with_missing_mapping():
    graph = CompiledGraph(routed_definition(lambda state: "unknown"))

    outputs = []
    with pytest.raises(MissingMappingError) as exc_info:
        await drain(graph.stream({}), outputs)

    assert [(o.node, o.state) for o in outputs] == [("A", {"x": 1})]
    assert exc_info.value.kind == RunErrorKind.MISSING_MAPPING
    assert exc_info.value.node_id == "A"
    assert exc_info.value.routing_key == "unknown"


@pytest.mark.asyncio
async def test_unhashable_routing_key_fails_with_missing_mapping():
    graph = CompiledGraph(routed_definition(lambda state: ["go"]))

    with pytest.raises(MissingMappingError) as exc_info:
        await graph.invoke({})

    assert exc_info.value.node_id == "A"


@pytest.mark.asyncio
async def test_node_without_edge_fails_with_missing_edge():
    definition = GraphDefinition(
        entry_point="A",
        nodes=[
            NodeSpec(id="A", action=lambda state: {"x": 1}),
            NodeSpec(id="B", action=lambda state: {"x": 2}),
        ],
        edges=[EdgeSpec(source="A", target="B")],
    )
    graph = CompiledGraph(definition)

    outputs = []
    with pytest.raises(MissingEdgeError) as exc_info:
        await drain(graph.stream({}), outputs)

    assert [o.node for o in outputs] == ["A", "B"]
    assert exc_info.value.kind == RunErrorKind.MISSING_EDGE
    assert exc_info.value.node_id == "B"


@pytest.mark.asyncio
async def test_unknown_node_fails_with_missing_node():
    definition = GraphDefinition(
        entry_point="A",
        nodes=[NodeSpec(id="A", action=lambda state: {"x": 1})],
        edges=[EdgeSpec(source="A", target="ghost")],
    )
    graph = CompiledGraph(definition)

    outputs = []
    with pytest.raises(MissingNodeError) as exc_info:
        await drain(graph.stream({}), outputs)

    assert [o.node for o in outputs] == ["A"]
    assert exc_info.value.kind == RunErrorKind.MISSING_NODE
    assert exc_info.value.node_id == "ghost"


@pytest.mark.asyncio
async def test_unknown_entry_point_fails_before_any_output():
    graph = CompiledGraph(GraphDefinition(entry_point="ghost"))

    outputs = []
    with pytest.raises(MissingNodeError):
        await drain(graph.stream({}), outputs)

    assert outputs == []


@pytest.mark.asyncio
async def test_edge_that_is_neither_direct_nor_conditional_fails():
    definition = GraphDefinition(
        entry_point="A",
        nodes=[NodeSpec(id="A", action=lambda state: {"x": 1})],
        edges=[EdgeSpec(source="A")],
    )
    graph = CompiledGraph(definition)

    outputs = []
    with pytest.raises(ExecutionError) as exc_info:
        await drain(graph.stream({}), outputs)

    assert len(outputs) == 1
    assert exc_info.value.kind == RunErrorKind.EXECUTION_ERROR
    assert exc_info.value.node_id == "A"
    assert "A" in str(exc_info.value)


@pytest.mark.asyncio
async def test_run_errors_share_a_base_class_with_serializable_details():
    graph = CompiledGraph(routed_definition(lambda state: "unknown"))

    with pytest.raises(GraphRunError) as exc_info:
        await graph.invoke({})

    assert exc_info.value.to_dict() == {
        "error": "missing_mapping",
        "node": "A",
        "message": str(exc_info.value),
    }


# ---------------------------------------------------------------------------
# Failures raised by user code
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_action_exception_propagates_unchanged_after_prior_outputs():
    def explode(state):
        raise ValueError("boom")

    definition = GraphDefinition(
        entry_point="A",
        nodes=[
            NodeSpec(id="A", action=lambda state: {"x": 1}),
            NodeSpec(id="B", action=explode),
        ],
        edges=[EdgeSpec(source="A", target="B"), EdgeSpec(source="B", target=END)],
    )

    outputs = []
    with pytest.raises(ValueError, match="boom"):
        await drain(CompiledGraph(definition).stream({}), outputs)

    assert [o.node for o in outputs] == ["A"]


@pytest.mark.asyncio
async def test_condition_exception_propagates():
    def broken(state):
        raise KeyError("route")

    graph = CompiledGraph(routed_definition(broken))

    outputs = []
    with pytest.raises(KeyError):
        await drain(graph.stream({}), outputs)

    assert [o.node for o in outputs] == ["A"]


@pytest.mark.asyncio
async def test_non_mapping_update_is_a_type_error_naming_the_node():
    definition = GraphDefinition(
        entry_point="A",
        nodes=[NodeSpec(id="A", action=lambda state: ["not", "a", "mapping"])],
        edges=[EdgeSpec(source="A", target=END)],
    )

    with pytest.raises(TypeError, match="Node 'A' returned an invalid update"):
        await CompiledGraph(definition).invoke({})


@pytest.mark.asyncio
async def test_malformed_input_fails_the_run():
    class Inputs(BaseModel):
        question: str

    definition = GraphDefinition(
        entry_point="A",
        nodes=[NodeSpec(id="A", action=lambda state: {"answer": state["question"]})],
        edges=[EdgeSpec(source="A", target=END)],
        state_factory=schema_state_factory(Inputs),
    )
    graph = CompiledGraph(definition)

    with pytest.raises(ValidationError):
        await graph.invoke({"wrong": 1})

    assert await graph.invoke({"question": "why"}) == {"question": "why", "answer": "why"}


@pytest.mark.asyncio
async def test_non_mapping_input_fails_the_run():
    graph = CompiledGraph(routed_definition(lambda state: "go"))

    with pytest.raises(TypeError):
        await graph.invoke(["x"])  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_reducer_exception_propagates_unchanged():
    def broken_reducer(current, update):
        raise TypeError("reducer bug")

    definition = GraphDefinition(
        entry_point="A",
        nodes=[NodeSpec(id="A", action=lambda state: {"x": 1})],
        edges=[EdgeSpec(source="A", target=END)],
        reducers={"x": broken_reducer},
    )

    with pytest.raises(TypeError) as exc_info:
        await CompiledGraph(definition).invoke({})

    assert str(exc_info.value) == "reducer bug"


@pytest.mark.asyncio
async def test_state_factory_exception_is_logged_as_run_failure(caplog):
    class Inputs(BaseModel):
        question: str

    definition = GraphDefinition(
        entry_point="A",
        nodes=[NodeSpec(id="A", action=lambda state: {})],
        edges=[EdgeSpec(source="A", target=END)],
        state_factory=schema_state_factory(Inputs),
    )

    with caplog.at_level(logging.ERROR, logger="stepgraph.graph.compiled"):
        with pytest.raises(ValidationError):
            await CompiledGraph(definition).invoke({})

    failed = [r for r in caplog.records if getattr(r, "event", None) == "run_failed"]
    assert [r.node_id for r in failed] == ["A"]
