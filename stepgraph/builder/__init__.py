"""Graph construction API."""

from stepgraph.builder.workflow import StateGraph, ValidationResult

__all__ = ["StateGraph", "ValidationResult"]
