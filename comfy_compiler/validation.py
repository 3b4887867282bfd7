"""
Comfy Compiler - Workflow Validation
=====================================

Checks run on templates and graphs before they are stored or submitted:

- Required placeholders present for the workflow category
- Structure is a DAG and every connection points at an existing node
- Output indices exist on their source nodes (when the schema knows them)
- Every class type is available on the server
- Submission requests validated with Pydantic

Validation functions return lists of error strings (empty if valid), so
callers decide whether to block. ``ensure_valid`` raises instead.

Usage:
    from comfy_compiler.validation import validate_graph_structure, PrepareRequest

    errors = validate_graph_structure(graph, schema)
    request = PrepareRequest(values={"positive_prompt": "a fox"}, seed=42)
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .chains import ModifierSelection
from .exceptions import WorkflowValidationError
from .graph import WorkflowGraph
from .logging_config import get_logger
from .schema import NodeTypeSchema
from .substitution import DEFAULT_IMAGE_PATTERN, MAX_SEED, find_placeholders
from .templates import WorkflowCategory

logger = get_logger(__name__)

__all__ = [
    "validate_template",
    "validate_graph_structure",
    "validate_against_schema",
    "missing_class_types",
    "ensure_valid",
    "PrepareRequest",
]


# =============================================================================
# TEMPLATE VALIDATION
# =============================================================================


def _has_literal_value(graph: WorkflowGraph, wanted: str) -> bool:
    return any(
        node.literal(name) == wanted for node in graph.nodes.values() for name in node.inputs
    )


def validate_template(graph: WorkflowGraph, category: WorkflowCategory) -> list[str]:
    """Check the placeholders a template needs to be usable for ``category``."""
    errors = []
    placeholders = find_placeholders(graph)

    if "positive_prompt" not in placeholders:
        errors.append("Missing required placeholder {{positive_prompt}}")

    if category.needs_input_image and "image_filename" not in placeholders:
        if not _has_literal_value(graph, DEFAULT_IMAGE_PATTERN):
            errors.append(
                f"Missing input image: expected {{{{image_filename}}}} or '{DEFAULT_IMAGE_PATTERN}'"
            )

    return errors


# =============================================================================
# STRUCTURE VALIDATION
# =============================================================================


def _find_cycle(graph: WorkflowGraph) -> list[str] | None:
    """Return one cycle as a list of node ids, or None. Iterative DFS."""
    adjacency: dict[str, list[str]] = {node_id: [] for node_id in graph.nodes}
    for node in graph.nodes.values():
        for _, conn in node.connections():
            if conn.source_node_id in adjacency:
                adjacency[node.id].append(conn.source_node_id)

    state: dict[str, int] = {}  # 1 = on stack, 2 = done
    for root in adjacency:
        if root in state:
            continue
        stack = [(root, iter(adjacency[root]))]
        path = [root]
        state[root] = 1
        while stack:
            node_id, neighbors = stack[-1]
            advanced = False
            for neighbor in neighbors:
                if state.get(neighbor) == 1:
                    return path[path.index(neighbor) :] + [neighbor]
                if neighbor not in state:
                    state[neighbor] = 1
                    stack.append((neighbor, iter(adjacency[neighbor])))
                    path.append(neighbor)
                    advanced = True
                    break
            if not advanced:
                state[node_id] = 2
                stack.pop()
                path.pop()
    return None


def validate_graph_structure(
    graph: WorkflowGraph, schema: NodeTypeSchema | None = None
) -> list[str]:
    """Validate references, output indices and acyclicity."""
    if not graph.nodes:
        return ["Workflow has no nodes"]

    errors = []
    for node in graph.nodes.values():
        for input_name, conn in node.connections():
            source = graph.get(conn.source_node_id)
            if source is None:
                errors.append(
                    f"Node '{node.id}' input '{input_name}' references "
                    f"non-existent node '{conn.source_node_id}'"
                )
                continue

            output_count = len(source.outputs)
            if not output_count and schema is not None:
                definition = schema.get(source.class_type)
                output_count = len(definition.outputs) if definition else 0
            if output_count and conn.output_index >= output_count:
                errors.append(
                    f"Node '{node.id}' references invalid output index {conn.output_index} "
                    f"from '{source.id}' (has {output_count} outputs)"
                )

    cycle = _find_cycle(graph)
    if cycle:
        errors.append(f"Workflow contains a cycle: {' -> '.join(cycle)}")

    return errors


def missing_class_types(graph: WorkflowGraph, schema: NodeTypeSchema) -> list[str]:
    """Class types used by the graph that the server does not provide."""
    return sorted(c for c in graph.class_types() if c and not schema.has(c))


def validate_against_schema(graph: WorkflowGraph, schema: NodeTypeSchema) -> list[str]:
    return [f"Node type not available on server: {c}" for c in missing_class_types(graph, schema)]


def ensure_valid(errors: list[str], message: str = "Workflow validation failed"):
    """
    Raise if ``errors`` is non-empty.

    Raises:
        WorkflowValidationError: With the errors attached
    """
    if errors:
        logger.warning(f"{message}: {len(errors)} errors", extra={"errors": errors})
        raise WorkflowValidationError(message, errors=errors)


# =============================================================================
# REQUEST MODEL
# =============================================================================


class PrepareRequest(BaseModel):
    """
    Validated submission parameters for WorkflowCompiler.prepare().

    ``overrides`` maps node id -> input name -> literal value.
    """

    model_config = ConfigDict(extra="forbid")

    values: dict[str, Any] = Field(default_factory=dict)
    overrides: dict[str, dict[str, Any]] = Field(default_factory=dict)
    seed: int | None = Field(default=None, ge=0, le=MAX_SEED)
    randomize_seed: bool = False
    modifier_chain: list[ModifierSelection] = Field(default_factory=list)
    high_noise_chain: list[ModifierSelection] = Field(default_factory=list)
    low_noise_chain: list[ModifierSelection] = Field(default_factory=list)

    @field_validator("overrides", mode="before")
    @classmethod
    def stringify_node_ids(cls, v: Any) -> Any:
        """Node ids are strings in the graph; accept ints from callers."""
        if isinstance(v, dict):
            return {str(k): attrs for k, attrs in v.items()}
        return v
