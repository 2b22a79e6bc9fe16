"""
Graph drawing - Text diagrams of a compiled graph.

Two formats are supported:
- plantuml: usecase diagram, one "check state" card per conditional edge
- mermaid: flowchart with the same structure, served by the streaming server
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum

from stepgraph.graph.edge import END, EdgeSpec


class DrawingKind(StrEnum):
    PLANTUML = "plantuml"
    MERMAID = "mermaid"


@dataclass(frozen=True)
class DrawableGraph:
    """A rendered diagram and the format it is written in."""

    kind: DrawingKind
    content: str


def render_plantuml(
    node_ids: list[str],
    edges: Mapping[str, EdgeSpec],
    entry_point: str,
    finish_point: str | None = None,
    title: str | None = None,
) -> str:
    lines = ["@startuml"]
    if title:
        lines.append(f"title {title}")
    lines.append("circle start")
    lines.append("circle stop")

    for node_id in node_ids:
        lines.append(f'usecase "{node_id}"<<Node>>')

    conditional = [source for source, edge in edges.items() if edge.condition is not None]
    for index, _ in enumerate(conditional, start=1):
        lines.append(f'card "check state" as condition{index}<<Condition>>')

    lines.append(f'start -down-> "{entry_point}"')

    def target_ref(target: str) -> str:
        return "stop" if target == END else f'"{target}"'

    condition_index = 0
    for source, edge in edges.items():
        if edge.target is not None:
            lines.append(f'"{source}" -down-> {target_ref(edge.target)}')
        elif edge.condition is not None:
            condition_index += 1
            lines.append(f'"{source}" -down-> condition{condition_index}')
            for key, target in edge.condition.mappings.items():
                lines.append(f'condition{condition_index} --> {target_ref(target)}: "{key}"')

    if finish_point is not None:
        lines.append(f'"{finish_point}" -down-> stop')

    lines.append("@enduml")
    return "\n".join(lines) + "\n"


def _mermaid_id(node_id: str) -> str:
    return re.sub(r"\W", "_", node_id)


def render_mermaid(
    node_ids: list[str],
    edges: Mapping[str, EdgeSpec],
    entry_point: str,
    finish_point: str | None = None,
    title: str | None = None,
) -> str:
    lines = []
    if title:
        lines.extend(["---", f"title: {title}", "---"])
    lines.append("flowchart TD")
    lines.append("    __start__((start))")
    lines.append("    __end__((stop))")

    for node_id in node_ids:
        lines.append(f'    {_mermaid_id(node_id)}("{node_id}")')

    def target_ref(target: str) -> str:
        return "__end__" if target == END else _mermaid_id(target)

    lines.append(f"    __start__ --> {target_ref(entry_point)}")

    condition_index = 0
    for source, edge in edges.items():
        if edge.target is not None:
            lines.append(f"    {_mermaid_id(source)} --> {target_ref(edge.target)}")
        elif edge.condition is not None:
            condition_index += 1
            condition = f"condition{condition_index}"
            lines.append(f'    {condition}{{"check state"}}')
            lines.append(f"    {_mermaid_id(source)} --> {condition}")
            for key, target in edge.condition.mappings.items():
                lines.append(f'    {condition} -->|"{key}"| {target_ref(target)}')

    if finish_point is not None:
        lines.append(f"    {_mermaid_id(finish_point)} --> __end__")

    return "\n".join(lines) + "\n"
