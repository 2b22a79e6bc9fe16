"""
Structured logging with automatic trace context propagation.

Key Features:
- Standard logger.info() calls pick up the run context automatically
- ContextVar-based propagation: each graph run's producer task has its own copy
- Dual output modes: JSON for production, human-readable for development

Architecture:
    CompiledGraph.stream() → producer task sets graph_id and run_id once
        ↓ (automatic propagation via ContextVar)
    Node / condition actions → logger.info("message") → get the run context
"""

import json
import logging
import os
import re
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

# Context variable for trace propagation
# asyncio tasks copy the context on creation, so concurrent runs never mix
trace_context: ContextVar[dict[str, Any] | None] = ContextVar("trace_context", default=None)

# ANSI escape code pattern (matches \033[...m or \x1b[...m)
ANSI_ESCAPE_PATTERN = re.compile(r"\x1b\[[0-9;]*m|\033\[[0-9;]*m")

# Record attributes copied into JSON output when present
EXTRA_FIELDS = ("event", "node_id", "iteration", "latency_ms")


def strip_ansi_codes(text: str) -> str:
    """Remove ANSI escape codes from text for clean JSON logging."""
    return ANSI_ESCAPE_PATTERN.sub("", text)


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Produces machine-parseable log entries with:
    - Standard fields (timestamp, level, logger, message)
    - Trace context (graph_id, run_id, ...)
    - Step fields from extra (event, node_id, iteration, latency_ms)
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        context = trace_context.get() or {}

        log_entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": strip_ansi_codes(record.getMessage()),
        }

        log_entry.update(context)

        for name in EXTRA_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_entry[name] = value

        if record.exc_info:
            log_entry["exception"] = strip_ansi_codes(self.formatException(record.exc_info))

        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Human-readable formatter for development.

    Colorized level plus a short run prefix for correlation.
    """

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as human-readable string."""
        context = trace_context.get() or {}
        graph_id = context.get("graph_id", "")
        run_id = context.get("run_id", "")

        prefix_parts = []
        if graph_id:
            prefix_parts.append(f"graph:{graph_id}")
        if run_id:
            prefix_parts.append(f"run:{run_id[-8:]}")

        context_prefix = f"[{' | '.join(prefix_parts)}] " if prefix_parts else ""

        color = self.COLORS.get(record.levelname, "")
        level = f"{record.levelname:<8}"

        event = ""
        record_event = getattr(record, "event", None)
        if record_event is not None:
            event = f" [{record_event}]"

        message = f"{color}[{level}]{self.RESET} {context_prefix}{record.getMessage()}{event}"
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return message


def resolve_format(format: str) -> str:
    """Resolve "auto" to "json" or "human" from LOG_FORMAT / ENV."""
    if format != "auto":
        return format
    log_format_env = os.getenv("LOG_FORMAT", "").lower()
    env = os.getenv("ENV", "development").lower()
    if log_format_env == "json" or env == "production":
        return "json"
    return "human"


def configure_logging(
    level: str = "INFO",
    format: str = "auto",  # "json", "human", or "auto"
) -> None:
    """
    Configure structured logging for the application.

    Call once at startup (CLI entry point, server start, test fixtures).

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Output format:
            - "json": Machine-parseable JSON (for production)
            - "human": Human-readable with colors (for development)
            - "auto": JSON if LOG_FORMAT=json or ENV=production, else human
    """
    if resolve_format(format) == "json":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = HumanReadableFormatter()

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    # aiohttp access logs go through the same handler
    for logger_name in ("aiohttp.access", "aiohttp.server"):
        third_party = logging.getLogger(logger_name)
        third_party.handlers.clear()
        third_party.propagate = True


def set_trace_context(**kwargs: Any) -> None:
    """
    Set trace context for the current execution context.

    Called by CompiledGraph when a run starts (graph_id, run_id). Values
    propagate to every log record emitted from the same task.
    """
    current = trace_context.get() or {}
    trace_context.set({**current, **kwargs})


def get_trace_context() -> dict:
    """
    Get current trace context.

    Returns:
        Dict with graph_id, run_id, etc. Empty dict if no context set.
    """
    context = trace_context.get() or {}
    return context.copy()


def clear_trace_context() -> None:
    """Clear trace context (mostly useful between tests)."""
    trace_context.set(None)
