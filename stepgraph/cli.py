"""
Command-line interface for stepgraph.

Usage:
    stepgraph run my_agents.graph:app --input '{"question": "..."}'
    stepgraph draw my_agents.graph:app --format mermaid
    stepgraph serve my_agents.graph:app --port 8080

MODULE:ATTR must name a CompiledGraph, a GraphDefinition or a StateGraph.
"""

import argparse
import asyncio
import importlib
import json
import logging
import sys
from pathlib import Path
from typing import Any

from stepgraph.builder.workflow import StateGraph
from stepgraph.config import RuntimeConfig
from stepgraph.graph.compiled import CompiledGraph
from stepgraph.graph.drawing import DrawingKind
from stepgraph.graph.edge import GraphDefinition
from stepgraph.graph.errors import GraphError, GraphRunError
from stepgraph.observability import configure_logging

logger = logging.getLogger(__name__)


def load_graph(target: str, config: RuntimeConfig) -> CompiledGraph:
    """Import ``module:attr`` and turn it into a CompiledGraph."""
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Expected MODULE:ATTR, got '{target}'")

    # Make modules in the working directory importable
    cwd = str(Path.cwd())
    if cwd not in sys.path:
        sys.path.insert(0, cwd)

    obj: Any = importlib.import_module(module_name)
    for part in attr.split("."):
        obj = getattr(obj, part)

    if isinstance(obj, CompiledGraph):
        return obj
    if isinstance(obj, GraphDefinition | StateGraph):
        return obj.compile(config=config)
    raise TypeError(f"'{target}' is a {type(obj).__name__}, not a graph")


async def _stream_to_stdout(graph: CompiledGraph, inputs: dict[str, Any]) -> int:
    async with graph.stream(inputs) as outputs:
        try:
            async for output in outputs:
                print(json.dumps(output.to_dict(), default=str), flush=True)
        except GraphRunError as e:
            print(json.dumps(e.to_dict()), file=sys.stderr)
            return 1
        except Exception as e:
            error = {"error": type(e).__name__, "node": None, "message": str(e)}
            print(json.dumps(error, default=str), file=sys.stderr)
            return 1

        if outputs.truncated:
            logger.warning(f"Run stopped after {outputs.steps} step(s): iteration cap reached")
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    config = RuntimeConfig()
    if args.max_iterations is not None:
        config.max_iterations = args.max_iterations

    try:
        inputs = json.loads(args.input) if args.input else {}
    except json.JSONDecodeError as e:
        print(f"Invalid --input JSON: {e}", file=sys.stderr)
        return 2
    if not isinstance(inputs, dict):
        print("--input must be a JSON object", file=sys.stderr)
        return 2

    try:
        graph = load_graph(args.graph, config)
        if args.max_iterations is not None:
            graph.set_max_iterations(args.max_iterations)
    except (GraphError, ImportError, AttributeError, TypeError, ValueError) as e:
        print(f"Cannot load graph: {e}", file=sys.stderr)
        return 2

    return asyncio.run(_stream_to_stdout(graph, inputs))


def cmd_draw(args: argparse.Namespace) -> int:
    try:
        graph = load_graph(args.graph, RuntimeConfig())
    except (GraphError, ImportError, AttributeError, TypeError, ValueError) as e:
        print(f"Cannot load graph: {e}", file=sys.stderr)
        return 2

    print(graph.get_graph(args.format, title=args.title).content, end="")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    from stepgraph.server.streaming_server import GraphStreamingServer, StreamingServerConfig

    config = RuntimeConfig()
    try:
        graph = load_graph(args.graph, config)
    except (GraphError, ImportError, AttributeError, TypeError, ValueError) as e:
        print(f"Cannot load graph: {e}", file=sys.stderr)
        return 2

    server_config = StreamingServerConfig.from_runtime_config(
        config, title=args.title, step_delay=args.step_delay
    )
    if args.host:
        server_config.host = args.host
    if args.port is not None:
        server_config.port = args.port

    server = GraphStreamingServer(graph, server_config)
    for name in args.arg or []:
        server.add_input_string_arg(name)

    async def serve_forever() -> None:
        await server.start()
        try:
            await asyncio.Event().wait()
        finally:
            await server.stop()

    try:
        asyncio.run(serve_forever())
    except KeyboardInterrupt:
        pass
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stepgraph",
        description="stepgraph - Run, draw and serve state graphs",
    )
    parser.add_argument("--log-level", default=None, help="Override the configured log level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run a graph and print each step as JSON")
    run_parser.add_argument("graph", help="MODULE:ATTR of the graph")
    run_parser.add_argument("--input", default=None, help="JSON object passed as input")
    run_parser.add_argument("--max-iterations", type=int, default=None)
    run_parser.set_defaults(func=cmd_run)

    draw_parser = subparsers.add_parser("draw", help="Print a diagram of a graph")
    draw_parser.add_argument("graph", help="MODULE:ATTR of the graph")
    draw_parser.add_argument(
        "--format",
        choices=[kind.value for kind in DrawingKind],
        default=DrawingKind.PLANTUML.value,
    )
    draw_parser.add_argument("--title", default=None)
    draw_parser.set_defaults(func=cmd_draw)

    serve_parser = subparsers.add_parser("serve", help="Serve a graph over HTTP")
    serve_parser.add_argument("graph", help="MODULE:ATTR of the graph")
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)
    serve_parser.add_argument("--title", default=None)
    serve_parser.add_argument("--step-delay", type=float, default=0.0)
    serve_parser.add_argument(
        "--arg", action="append", help="Declare a required string input (repeatable)"
    )
    serve_parser.set_defaults(func=cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = RuntimeConfig()
    configure_logging(level=args.log_level or config.log_level, format=config.log_format)

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
