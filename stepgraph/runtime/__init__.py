"""Runtime plumbing between a running graph and its consumers."""

from stepgraph.runtime.stream import NodeOutputStream

__all__ = ["NodeOutputStream"]
