"""Mermaid diagram utilities for workflow graphs.

Generates flowchart code from a compiled :class:`ExecutionGraph`, with edges
labelled by the event type that travels along them, and renders it to an
image through the mermaid.ink API.
"""

import base64
import re
from pathlib import Path
from typing import Optional, TYPE_CHECKING

import httpx

from flowstate.core.graph import END, START

if TYPE_CHECKING:
    from flowstate.core.graph import ExecutionGraph

MERMAID_INK_URL = "https://mermaid.ink"
VALID_FORMATS = ("png", "svg", "pdf")

_UNSAFE = re.compile(r"[^A-Za-z0-9_]")


def _node_id(name: str) -> str:
    if name in (START, END):
        return name
    return "n_" + _UNSAFE.sub("_", name)


def generate_mermaid_code(
    graph: "ExecutionGraph",
    title: Optional[str] = None,
    direction: str = "TD",
) -> str:
    """Generate Mermaid flowchart code from an ExecutionGraph.

    Args:
        graph: The compiled graph to visualize
        title: Optional title to display above the diagram
        direction: Flowchart direction - "TD" (top-down) or "LR" (left-right)

    Returns:
        String containing Mermaid flowchart code
    """
    lines = []

    if title:
        lines.append("---")
        lines.append(f"title: {title}")
        lines.append("---")

    lines.append(f"flowchart {direction}")
    lines.append(f"    {START}((({START})))")

    for name in graph.nodes:
        node_id = _node_id(name)
        if name in graph.joins:
            # Hexagon for join nodes
            lines.append(f'    {node_id}{{{{"{name}"}}}}')
        else:
            lines.append(f'    {node_id}["{name}"]')

    if graph.metadata and graph.metadata.terminal_nodes:
        lines.append(f"    {END}((({END})))")

    for edge in graph.edges:
        arrow = "-.->" if edge.is_merge else "-->"
        lines.append(f"    {_node_id(edge.source)} {arrow}|{edge.event}| {_node_id(edge.target)}")

    lines.append("")
    lines.append("    %% Node styling")
    lines.append("    classDef startNode fill:#2d3748,stroke:#2d3748,color:#fff")
    lines.append("    classDef endNode fill:#c53030,stroke:#c53030,color:#fff")
    lines.append("    classDef joinNode fill:#805ad5,stroke:#6b46c1,color:#fff")
    lines.append("    classDef taskNode fill:#3182ce,stroke:#2c5282,color:#fff")

    lines.append("")
    lines.append(f"    class {START} startNode")
    for name in graph.nodes:
        style = "joinNode" if name in graph.joins else "taskNode"
        lines.append(f"    class {_node_id(name)} {style}")
    if graph.metadata and graph.metadata.terminal_nodes:
        lines.append(f"    class {END} endNode")

    return "\n".join(lines)


def save_mermaid_image(
    mermaid_code: str,
    output_path: str,
    image_format: str = "png",
    theme: str = "default",
    background_color: str = "white",
    timeout: float = 30.0,
) -> str:
    """Save Mermaid diagram as an image using mermaid.ink API.

    Args:
        mermaid_code: Mermaid diagram code to render
        output_path: Path where image should be saved
        image_format: Output format - "png", "svg", or "pdf"
        theme: Mermaid theme - "default", "dark", "forest", "neutral"
        background_color: Background color for the diagram
        timeout: HTTP timeout in seconds

    Returns:
        Absolute path to saved image file

    Raises:
        httpx.HTTPError: If image generation fails
        ValueError: If invalid format specified
    """
    if image_format not in VALID_FORMATS:
        raise ValueError(f"Invalid format: {image_format}. Must be one of {list(VALID_FORMATS)}")

    output_file = Path(output_path)
    output_file.parent.mkdir(parents=True, exist_ok=True)

    encoded = base64.urlsafe_b64encode(mermaid_code.encode("utf-8")).decode("ascii")
    endpoint = "img" if image_format == "png" else image_format
    url = f"{MERMAID_INK_URL}/{endpoint}/{encoded}"

    params = {}
    if image_format == "png":
        params["type"] = "png"
    if theme != "default":
        params["theme"] = theme
    if background_color != "white":
        params["bgColor"] = background_color

    with httpx.Client(timeout=timeout) as client:
        response = client.get(url, params=params)
        response.raise_for_status()
        output_file.write_bytes(response.content)

    return str(output_file.absolute())
