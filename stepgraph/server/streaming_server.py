"""
Graph Streaming Server - Exposes a compiled graph over HTTP.

Routes:
- POST /stream: run the graph on the JSON body, streaming one JSON line per
  NodeOutput ({"node": ..., "state": {...}}) as soon as it is produced. A run
  failure ends the body with {"error": kind, "node": node_id, "message": ...}.
- GET /init: describe the graph for a client UI (mermaid diagram, title,
  declared input arguments).

Uses aiohttp for a lightweight embedded HTTP server that runs within the
existing asyncio loop.
"""

import asyncio
import json
import logging
from dataclasses import asdict, dataclass, field

from aiohttp import web

from stepgraph.config import RuntimeConfig
from stepgraph.graph.compiled import CompiledGraph
from stepgraph.graph.drawing import DrawingKind
from stepgraph.graph.errors import GraphRunError

logger = logging.getLogger(__name__)


@dataclass
class ArgumentMetadata:
    """Declared input argument, shown by client UIs."""

    type: str
    required: bool = True


@dataclass
class StreamingServerConfig:
    """Configuration for the streaming HTTP server."""

    host: str = "127.0.0.1"
    port: int = 8080
    title: str | None = None
    step_delay: float = 0.0  # seconds to wait after writing each output
    args: dict[str, ArgumentMetadata] = field(default_factory=dict)

    @classmethod
    def from_runtime_config(cls, config: RuntimeConfig, **overrides) -> "StreamingServerConfig":
        return cls(host=config.server_host, port=config.server_port, **overrides)


class GraphStreamingServer:
    """
    Embedded HTTP server that streams graph runs to clients.

    Lifecycle:
        server = GraphStreamingServer(compiled_graph, config)
        server.add_input_string_arg("question")
        await server.start()
        # ... server running ...
        await server.stop()
    """

    def __init__(
        self,
        graph: CompiledGraph,
        config: StreamingServerConfig | None = None,
    ):
        self._graph = graph
        self._config = config or StreamingServerConfig()
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    def add_input_string_arg(self, name: str, required: bool = True) -> "GraphStreamingServer":
        """Declare a string input argument."""
        self._config.args[name] = ArgumentMetadata(type="string", required=required)
        return self

    def build_app(self) -> web.Application:
        """Create the aiohttp application with the /stream and /init routes."""
        app = web.Application()
        app.router.add_post("/stream", self._handle_stream)
        app.router.add_get("/init", self._handle_init)
        return app

    async def start(self) -> None:
        """Start the HTTP server."""
        self._app = self.build_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        self._site = web.TCPSite(
            self._runner,
            self._config.host,
            self._config.port,
        )
        await self._site.start()
        logger.info(
            f"Streaming server for graph '{self._graph.definition.id}' started on "
            f"{self._config.host}:{self._config.port}"
        )

    async def stop(self) -> None:
        """Stop the HTTP server gracefully."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._app = None
            self._site = None
            logger.info("Streaming server stopped")

    async def _handle_stream(self, request: web.Request) -> web.StreamResponse:
        """Run the graph and stream its outputs."""
        try:
            body = await request.read()
            inputs = json.loads(body) if body else {}
        except (json.JSONDecodeError, UnicodeDecodeError, ValueError):
            return web.json_response({"error": "Request body must be JSON"}, status=400)

        if not isinstance(inputs, dict):
            return web.json_response({"error": "Request body must be a JSON object"}, status=400)

        missing = [
            name for name, arg in self._config.args.items() if arg.required and name not in inputs
        ]
        if missing:
            return web.json_response(
                {"error": "Missing required arguments", "missing": missing},
                status=400,
            )

        response = web.StreamResponse(headers={"Content-Type": "application/x-ndjson"})
        await response.prepare(request)

        try:
            async with self._graph.stream(inputs) as outputs:
                async for output in outputs:
                    await response.write(_encode_line(output.to_dict()))
                    if self._config.step_delay:
                        await asyncio.sleep(self._config.step_delay)
        except ConnectionResetError:
            logger.warning(
                f"Client disconnected from a run of graph '{self._graph.definition.id}'",
                extra={"event": "client_disconnected"},
            )
            return response
        except Exception as e:
            if isinstance(e, GraphRunError):
                error = e.to_dict()
            else:
                logger.error(f"Graph run failed: {e}")
                error = {"error": type(e).__name__, "node": None, "message": str(e)}
            if _client_gone(request):
                logger.warning(
                    f"Client gone, dropping error line: {error}",
                    extra={"event": "client_disconnected"},
                )
                return response
            await response.write(_encode_line(error))

        if not _client_gone(request):
            await response.write_eof()
        return response

    async def _handle_init(self, request: web.Request) -> web.Response:
        """Describe the graph for client UIs."""
        drawing = self._graph.get_graph(DrawingKind.MERMAID, title=self._config.title)
        return web.json_response(
            {
                "graph": drawing.content,
                "title": self._config.title,
                "args": {name: asdict(arg) for name, arg in self._config.args.items()},
            }
        )

    @property
    def is_running(self) -> bool:
        """Check if the server is running."""
        return self._site is not None

    @property
    def port(self) -> int | None:
        """Return the actual listening port (useful when configured with port=0)."""
        if self._site and self._site._server and self._site._server.sockets:
            return self._site._server.sockets[0].getsockname()[1]
        return None


def _encode_line(payload: dict) -> bytes:
    return (json.dumps(payload, default=str) + "\n").encode("utf-8")


def _client_gone(request: web.Request) -> bool:
    return request.transport is None or request.transport.is_closing()
