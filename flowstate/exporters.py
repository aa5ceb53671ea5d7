"""Human-readable renderings of a compiled workflow graph."""

from typing import Optional, Protocol

from flowstate.core.graph import END, ExecutionGraph
from flowstate.utils.mermaid import generate_mermaid_code, save_mermaid_image


class Exporter(Protocol):
    """Anything that turns a compiled graph into text."""

    def export(self, graph: ExecutionGraph) -> str:
        ...


class ConsoleExporter:
    """Plain-text tree of the event flow.

    Example output::

        StartEvent
        └── NodeOne -> FirstEvent
            └── InterruptableNode -> SecondEvent
                └── NodeForSecond -> StopEvent
    """

    def export(self, graph: ExecutionGraph) -> str:
        lines = [graph.start_event_type.__name__]
        entry = graph.consumers_of(graph.start_event_type)
        self._render(graph, entry, "", set(), lines)
        return "\n".join(lines)

    def _render(self, graph, names, prefix, seen, lines) -> None:
        for index, name in enumerate(names):
            last = index == len(names) - 1
            branch = "└── " if last else "├── "
            produced = ", ".join(t.__name__ for t in graph.produces[name])
            label = f"{name} -> {produced}"
            if name in graph.joins:
                label = f"{name} [merge: {', '.join(graph.joins[name])}] -> {produced}"

            if name in seen:
                lines.append(f"{prefix}{branch}{name} (loop)")
                continue
            lines.append(f"{prefix}{branch}{label}")

            children = []
            for edge in graph.edges:
                if edge.source == name and edge.target != END and edge.target not in children:
                    children.append(edge.target)

            extension = "    " if last else "│   "
            self._render(graph, children, prefix + extension, seen | {name}, lines)


class MermaidExporter:
    """Mermaid flowchart of the graph, optionally rendered to an image."""

    def __init__(self, title: Optional[str] = None, direction: str = "TD"):
        self.title = title
        self.direction = direction

    def export(self, graph: ExecutionGraph) -> str:
        return generate_mermaid_code(graph, title=self.title, direction=self.direction)

    def save_image(self, graph: ExecutionGraph, output_path: str, image_format: str = "png") -> str:
        return save_mermaid_image(self.export(graph), output_path, image_format=image_format)
