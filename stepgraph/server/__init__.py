"""HTTP host for compiled graphs."""

from stepgraph.server.streaming_server import (
    ArgumentMetadata,
    GraphStreamingServer,
    StreamingServerConfig,
)

__all__ = ["ArgumentMetadata", "GraphStreamingServer", "StreamingServerConfig"]
