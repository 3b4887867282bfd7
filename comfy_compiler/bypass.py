"""
Comfy Compiler - Bypass Resolver
=================================

Removes nodes in bypass mode (mode 4) and threads their upstream sources
directly to their consumers, the way the server would skip them.

The expected type of a rewired input is inferred from the input's name and
matched against the bypassed node's own inputs, hop by hop, until a source
outside the bypassed set is found. Anything that cannot be rewired is
dropped with a warning, so the result never references a removed node.

Usage:
    from comfy_compiler.bypass import resolve_bypassed

    result = resolve_bypassed(graph)
    graph, warnings = result.graph, result.warnings
"""

from dataclasses import dataclass, field

from .compatibility import is_compatible
from .config import get_settings
from .exceptions import WorkflowParseError
from .graph import Connection, WorkflowGraph, parse_workflow, serialize_workflow
from .logging_config import get_logger

logger = get_logger(__name__)

__all__ = [
    "infer_type_from_input_name",
    "BypassResult",
    "resolve_bypassed",
    "resolve_bypassed_text",
]


# =============================================================================
# TYPE INFERENCE
# =============================================================================

_LATENT_NAMES = {"samples", "latent_image", "latent", "latent_images"}
_MODEL_NAMES = {"model", "unet"}
_CLIP_NAMES = {"clip", "clip_l", "clip_g"}
_CONDITIONING_NAMES = {"positive", "negative", "conditioning", "cond"}
_IMAGE_NAMES = {"image", "images", "pixels"}


def infer_type_from_input_name(input_name: str) -> str | None:
    """
    Guess a port type from its input name.

    Best-effort only: custom nodes with renamed ports fall through to None.
    """
    name = input_name.lower()
    if name in _LATENT_NAMES:
        return "LATENT"
    if name in _MODEL_NAMES or name.startswith("model"):
        return "MODEL"
    if name in _CLIP_NAMES or name.startswith("clip"):
        return "CLIP"
    if name == "vae":
        return "VAE"
    if name in _CONDITIONING_NAMES:
        return "CONDITIONING"
    if name in _IMAGE_NAMES:
        return "IMAGE"
    if name == "mask":
        return "MASK"
    if name == "noise":
        return "NOISE"
    return None


# =============================================================================
# RESOLVER
# =============================================================================


@dataclass
class BypassResult:
    graph: WorkflowGraph
    warnings: list[str] = field(default_factory=list)
    removed_node_ids: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.removed_node_ids)


def _resolve_chain(
    graph: WorkflowGraph,
    bypassed: set[str],
    start: Connection,
    expected_type: str,
    max_depth: int,
) -> Connection | None:
    """Walk back through bypassed nodes until a live source of the expected type."""
    current = start
    depth = 0
    while True:
        # The live source itself counts as a hop
        if depth > max_depth:
            logger.warning(
                f"Bypass chain exceeded {max_depth} hops at node {current.source_node_id}",
                extra={"node_id": current.source_node_id},
            )
            return None
        if current.source_node_id not in bypassed:
            break

        node = graph.nodes[current.source_node_id]
        upstream = None
        for name, conn in node.connections():
            inferred = infer_type_from_input_name(name)
            if inferred is not None and is_compatible(inferred, expected_type):
                upstream = conn
                break
        if upstream is None:
            return None

        current = upstream
        depth += 1

    if current.source_node_id not in graph.nodes:
        return None
    return current


def resolve_bypassed(graph: WorkflowGraph, max_depth: int | None = None) -> BypassResult:
    """
    Remove bypassed nodes and rewire their consumers.

    Returns the input graph itself when nothing is bypassed; otherwise a new
    graph. The caller's graph is never mutated.
    """
    bypassed = {node_id for node_id, node in graph.nodes.items() if node.is_bypassed}
    if not bypassed:
        return BypassResult(graph=graph)

    if max_depth is None:
        max_depth = get_settings().compiler.bypass_max_depth

    result_graph = graph.copy()
    warnings: list[str] = []

    for node in result_graph.nodes.values():
        if node.id in bypassed:
            continue

        for input_name, conn in list(node.connections()):
            if conn.source_node_id not in bypassed:
                continue

            expected_type = infer_type_from_input_name(input_name)
            if expected_type is None:
                del node.inputs[input_name]
                warning = (
                    f"Node #{node.id} ({node.class_type}): input '{input_name}' was connected "
                    f"to bypassed node #{conn.source_node_id} and its type could not be inferred; "
                    f"connection removed"
                )
                logger.warning(warning, extra={"node_id": node.id, "input": input_name})
                warnings.append(warning)
                continue

            resolved = _resolve_chain(graph, bypassed, conn, expected_type, max_depth)
            if resolved is None:
                del node.inputs[input_name]
                warning = (
                    f"Node #{node.id} ({node.class_type}): no {expected_type} source found "
                    f"through bypassed node #{conn.source_node_id}; connection removed"
                )
                logger.warning(warning, extra={"node_id": node.id, "input": input_name})
                warnings.append(warning)
                continue

            node.inputs[input_name] = resolved
            logger.debug(
                f"Rewired {node.id}.{input_name}: {conn.source_node_id} -> {resolved.source_node_id}"
            )

    removed = [node_id for node_id in result_graph.nodes if node_id in bypassed]
    for node_id in removed:
        del result_graph.nodes[node_id]

    # Groups only list live nodes; one left empty is dropped
    for group in result_graph.groups:
        group.member_node_ids = [m for m in group.member_node_ids if m not in bypassed]
    result_graph.groups = [g for g in result_graph.groups if g.member_node_ids]

    logger.info(
        f"Resolved {len(removed)} bypassed nodes",
        extra={"removed": removed, "warning_count": len(warnings)},
    )
    return BypassResult(graph=result_graph, warnings=warnings, removed_node_ids=removed)


def resolve_bypassed_text(text: str) -> tuple[str, list[str]]:
    """
    Text-level convenience for callers that hold canonical JSON.

    On a parse failure the original text comes back unchanged with one warning.
    """
    try:
        graph = parse_workflow(text)
    except WorkflowParseError as e:
        logger.warning(f"Bypass resolution skipped: {e.message}")
        return text, [e.message]

    result = resolve_bypassed(graph)
    if not result.changed:
        return text, result.warnings
    return serialize_workflow(result.graph), result.warnings
