"""
Node Protocol - The units of computation a graph is made of.

A node action takes the current state and returns a partial update:

    async def research(state: AgentState) -> dict:
        return {"findings": await search(state["question"])}

Plain functions work too. Anything awaitable they return is awaited, so a
node that hands work off to another coroutine behaves the same way.
"""

import inspect
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from stepgraph.graph.state import AgentState

# State -> partial update, sync or async
NodeAction = Callable[[AgentState], Mapping[str, Any] | None | Awaitable[Mapping[str, Any] | None]]

# State -> routing key, sync or async
ConditionAction = Callable[[AgentState], Any]


async def call_action(action: Callable[[AgentState], Any], state: AgentState) -> Any:
    """Call a node or condition action and wait for its result."""
    if inspect.iscoroutinefunction(action):
        return await action(state)
    result = action(state)
    if inspect.isawaitable(result):
        result = await result
    return result


class NodeSpec(BaseModel):
    """
    Specification for a node in the graph.

    Example:
        NodeSpec(id="agent", action=call_model, description="Ask the model")
    """

    id: str
    action: Callable[..., Any]
    description: str = ""

    model_config = {"frozen": True}


@dataclass(frozen=True)
class NodeOutput:
    """State snapshot produced right after a node's update was merged."""

    node: str
    state: AgentState

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"node": self.node, "state": self.state.data}

