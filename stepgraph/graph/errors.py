"""
Graph errors - Everything that can abort a graph run or a compilation.

Run failures are tagged with a ``RunErrorKind`` and the offending node id so
hosts can branch on the kind instead of parsing messages:

- missing_node: the current node id has no registered action
- missing_edge: the current node id has no outgoing edge
- missing_mapping: a conditional edge produced a routing key with no target
- execution_error: an edge is neither direct nor conditional
"""

from enum import StrEnum
from typing import Any


class RunErrorKind(StrEnum):
    """Kind of failure that aborted a graph run."""

    MISSING_NODE = "missing_node"
    MISSING_EDGE = "missing_edge"
    MISSING_MAPPING = "missing_mapping"
    EXECUTION_ERROR = "execution_error"


class GraphError(Exception):
    """Base class for every error raised by stepgraph."""


class GraphRunError(GraphError):
    """A run was aborted by a malformed graph encountered at runtime."""

    kind: RunErrorKind = RunErrorKind.EXECUTION_ERROR

    def __init__(self, message: str, node_id: str | None = None):
        super().__init__(message)
        self.node_id = node_id

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "error": self.kind.value,
            "node": self.node_id,
            "message": str(self),
        }


class MissingNodeError(GraphRunError):
    kind = RunErrorKind.MISSING_NODE

    def __init__(self, node_id: str):
        super().__init__(f"Missing node [{node_id}]", node_id)


class MissingEdgeError(GraphRunError):
    kind = RunErrorKind.MISSING_EDGE

    def __init__(self, node_id: str):
        super().__init__(f"Missing edge for node [{node_id}]", node_id)


class MissingMappingError(GraphRunError):
    kind = RunErrorKind.MISSING_MAPPING

    def __init__(self, node_id: str, routing_key: Any):
        super().__init__(
            f"Edge mapping of node [{node_id}] has no target for routing key [{routing_key}]",
            node_id,
        )
        self.routing_key = routing_key


class ExecutionError(GraphRunError):
    kind = RunErrorKind.EXECUTION_ERROR


class InvalidConfigurationError(GraphError, ValueError):
    """A runtime setting was given an out-of-range value."""


class GraphValidationError(GraphError):
    """A graph definition failed structural validation."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("Invalid graph: " + "; ".join(self.errors))
