"""Shared stepgraph configuration utilities.

Reads ~/.stepgraph/configuration.json (or the file named by STEPGRAPH_CONFIG)
so the CLI, the streaming server and compiled graphs share one set of
defaults.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_MAX_ITERATIONS = 25
DEFAULT_QUEUE_SIZE = 0  # unbounded

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

STEPGRAPH_CONFIG_FILE = Path.home() / ".stepgraph" / "configuration.json"


def get_config_path() -> Path:
    """Return the configuration file path, honouring STEPGRAPH_CONFIG."""
    override = os.environ.get("STEPGRAPH_CONFIG")
    if override:
        return Path(override)
    return STEPGRAPH_CONFIG_FILE


def get_stepgraph_config() -> dict[str, Any]:
    """Load the configuration file; missing or unreadable files mean defaults."""
    path = get_config_path()
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def get_max_iterations() -> int:
    """Return the configured iteration cap, falling back to DEFAULT_MAX_ITERATIONS."""
    return get_stepgraph_config().get("runtime", {}).get("max_iterations", DEFAULT_MAX_ITERATIONS)


def get_queue_size() -> int:
    """Return the configured hand-off queue size (0 = unbounded)."""
    return get_stepgraph_config().get("runtime", {}).get("queue_size", DEFAULT_QUEUE_SIZE)


def get_log_level() -> str:
    return get_stepgraph_config().get("logging", {}).get("level", "INFO")


def get_log_format() -> str:
    return get_stepgraph_config().get("logging", {}).get("format", "auto")


def get_server_setting(key: str, default: Any) -> Any:
    return get_stepgraph_config().get("server", {}).get(key, default)


# ---------------------------------------------------------------------------
# RuntimeConfig
# ---------------------------------------------------------------------------


@dataclass
class RuntimeConfig:
    """Runtime configuration loaded from ~/.stepgraph/configuration.json.

    Example file:
        {
            "runtime": {"max_iterations": 50, "queue_size": 16},
            "logging": {"level": "DEBUG", "format": "json"},
            "server": {"host": "0.0.0.0", "port": 8080}
        }
    """

    max_iterations: int = field(default_factory=get_max_iterations)
    queue_size: int = field(default_factory=get_queue_size)
    log_level: str = field(default_factory=get_log_level)
    log_format: str = field(default_factory=get_log_format)
    server_host: str = field(default_factory=lambda: get_server_setting("host", "127.0.0.1"))
    server_port: int = field(default_factory=lambda: get_server_setting("port", 8080))
