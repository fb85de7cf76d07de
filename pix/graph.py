"""Stage dependency graph: extraction, traversal, pretty tree and DOT export.

A graph is a list mixing single node names (every stage) and
``(from_stage, to_stage)`` edges. It is derived from a pipeline on demand and
never stored.
"""

from __future__ import annotations

from pix.models import Pipeline
from pix.report import (
    BLUE,
    BOLD,
    CYAN,
    GREEN,
    MAGENTA,
    RED,
    YELLOW,
    colorize,
)
from pix.sdk import PIPELINE_CTX

Edge = tuple[str, str]
Graph = list  # list[str | Edge]

_COPY_COMMANDS = ("COPY", "ADD")

NODE_COLORS = [BLUE, CYAN, GREEN, MAGENTA, RED, YELLOW]


def extract_graph(pipeline: Pipeline) -> Graph:
    """Derive the stage dependency graph of a pipeline.

    FROM contributes an edge from the first token of its argument (the
    ``AS <name>`` suffix is ignored). COPY/ADD contribute an edge from their
    ``from`` option unless it points at the pipeline context. References to
    anything that is not a stage of this pipeline (external images, scratch)
    are not part of the graph. Repeated edges are recorded once.
    """
    stage_names = [s.name for s in pipeline.stages]
    known = set(stage_names)
    edges: list[Edge] = []

    for stage in pipeline.stages:
        for instruction in stage.instructions:
            depends_from = None
            if instruction.command == "FROM" and instruction.args:
                depends_from = instruction.args[0].split(" ")[0]
            elif instruction.command in _COPY_COMMANDS:
                value = instruction.option("from")
                if isinstance(value, str) and value != PIPELINE_CTX:
                    depends_from = value

            if depends_from is None or depends_from not in known:
                continue
            edge = (depends_from, stage.name)
            if edge not in edges:
                edges.append(edge)

    return stage_names + edges


def edges(graph: Graph) -> list[Edge]:
    return [item for item in graph if isinstance(item, tuple)]


def single_nodes(graph: Graph) -> list[str]:
    return [item for item in graph if not isinstance(item, tuple)]


def nodes(graph: Graph) -> list[str]:
    """All nodes, in first-seen order."""
    seen: list[str] = []
    for node in single_nodes(graph) + [n for e in edges(graph) for n in e]:
        if node not in seen:
            seen.append(node)
    return seen


def roots(graph: Graph) -> list[str]:
    children = {to_node for _, to_node in edges(graph)}
    return [n for n in nodes(graph) if n not in children]


def adjacency_list(graph: Graph) -> dict[str, list[str]]:
    adj: dict[str, list[str]] = {}
    for from_node, to_node in edges(graph):
        adj.setdefault(from_node, []).append(to_node)
    return adj


def to_dot(graph: Graph) -> str:
    lines = ["strict digraph {"]
    for item in graph:
        if isinstance(item, tuple):
            lines.append(f'"{item[0]}" -> "{item[1]}"')
        else:
            lines.append(f'"{item}"')
    lines.append("}")
    return "\n".join(lines) + "\n"


def render_tree(pipeline: Pipeline, color: bool = False) -> list[str]:
    """Render the graph as a tree, one line per visited node."""
    graph = extract_graph(pipeline)
    adj = adjacency_list(graph)
    node_colors = {n: NODE_COLORS[i % len(NODE_COLORS)] for i, n in enumerate(nodes(graph))}

    def paint(text: str, code: str) -> str:
        return colorize(text, code) if color else text

    lines = [paint(pipeline.name, BOLD)]

    def walk(node: str, prefix: str, seen: frozenset, is_last: bool) -> None:
        branch = "└─" if is_last else "├─"
        lines.append(f"{prefix}{branch} {paint(node, node_colors[node])}")
        seen = seen | {node}
        # nodes already on the current path are not expanded again
        children = [c for c in adj.get(node, []) if c not in seen]
        next_prefix = prefix + ("   " if is_last else "│  ")
        for i, child in enumerate(children):
            walk(child, next_prefix, seen, i == len(children) - 1)

    graph_roots = roots(graph)
    for i, root in enumerate(graph_roots):
        walk(root, "", frozenset(), i == len(graph_roots) - 1)
    return lines
