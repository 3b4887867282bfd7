"""
Comfy Compiler - Placeholder Substitution and Attribute Overrides
==================================================================

Submission-time pass over a workflow template: fills ``{{placeholder}}``
literals with concrete values and applies per-node attribute overrides.
WorkflowCompiler.prepare() runs these before bypass resolution.

Usage:
    from comfy_compiler.substitution import substitute_placeholders, apply_overrides

    result = substitute_placeholders(graph, {"positive_prompt": "a lighthouse", "width": 1024})
    graph = apply_overrides(result.graph, {"3": {"steps": 30}})
"""

import random
import re
from dataclasses import dataclass, field
from typing import Any

from .graph import Literal, WorkflowGraph
from .layout import SEED_INPUT_NAMES
from .logging_config import get_logger
from .templates import PLACEHOLDER_TO_KEY

logger = get_logger(__name__)

__all__ = [
    "PLACEHOLDER_PATTERN",
    "DEFAULT_IMAGE_PATTERN",
    "MAX_SEED",
    "SubstitutionResult",
    "find_placeholders",
    "substitute_placeholders",
    "apply_overrides",
    "apply_seed",
    "random_seed",
]

PLACEHOLDER_PATTERN = re.compile(r"\{\{([A-Za-z0-9_]+)\}\}")

# Value written by image templates that predate the image_filename placeholder
DEFAULT_IMAGE_PATTERN = "uploaded_image.png [input]"

MAX_SEED = 2**53 - 1


@dataclass
class SubstitutionResult:
    graph: WorkflowGraph
    substituted: set[str] = field(default_factory=set)
    unresolved: set[str] = field(default_factory=set)
    warnings: list[str] = field(default_factory=list)


def find_placeholders(graph: WorkflowGraph) -> set[str]:
    """Names of all ``{{placeholder}}`` tokens in string literals."""
    names: set[str] = set()
    for node in graph.nodes.values():
        for value in node.inputs.values():
            if isinstance(value, Literal) and isinstance(value.value, str):
                names.update(PLACEHOLDER_PATTERN.findall(value.value))
    return names


def _lookup(values: dict[str, Any], name: str) -> tuple[bool, Any]:
    """Find a value by placeholder name or by the field key it maps to."""
    if name in values:
        return True, values[name]
    key = PLACEHOLDER_TO_KEY.get(name)
    if key is not None and key in values:
        return True, values[key]
    return False, None


def _substitute_string(
    text: str, values: dict[str, Any], substituted: set[str], unresolved: set[str]
) -> Any:
    whole = PLACEHOLDER_PATTERN.fullmatch(text)
    if whole:
        found, value = _lookup(values, whole.group(1))
        if found:
            substituted.add(whole.group(1))
            return value
        unresolved.add(whole.group(1))
        return text

    def replace(match: re.Match) -> str:
        found, value = _lookup(values, match.group(1))
        if not found:
            unresolved.add(match.group(1))
            return match.group(0)
        substituted.add(match.group(1))
        return str(value)

    return PLACEHOLDER_PATTERN.sub(replace, text)


def substitute_placeholders(graph: WorkflowGraph, values: dict[str, Any]) -> SubstitutionResult:
    """
    Replace placeholders in string literals.

    A literal that is exactly ``{{name}}`` takes the value with its type
    (numbers stay numbers); placeholders inside longer strings are replaced
    textually. Values may be keyed by placeholder name or by field key.
    Unknown placeholders are left in place and reported.
    """
    result = graph.copy()
    substituted: set[str] = set()
    unresolved: set[str] = set()

    found_image, image_value = _lookup(values, "image_filename")

    for node in result.nodes.values():
        for name, value in list(node.inputs.items()):
            if not isinstance(value, Literal) or not isinstance(value.value, str):
                continue
            if found_image and value.value == DEFAULT_IMAGE_PATTERN:
                node.inputs[name] = Literal(image_value)
                substituted.add("image_filename")
                continue
            new_value = _substitute_string(value.value, values, substituted, unresolved)
            if new_value != value.value:
                node.inputs[name] = Literal(new_value)

    warnings = [f"No value supplied for placeholder {{{{{name}}}}}" for name in sorted(unresolved)]
    for warning in warnings:
        logger.warning(warning)
    return SubstitutionResult(
        graph=result, substituted=substituted, unresolved=unresolved, warnings=warnings
    )


def apply_overrides(
    graph: WorkflowGraph, overrides: dict[str, dict[str, Any]] | None
) -> WorkflowGraph:
    """
    Apply ``node_id -> {input -> value}`` overrides.

    Only inputs that already exist as literals change; unknown nodes, unknown
    inputs and connected inputs are ignored.
    """
    if not overrides:
        return graph

    result = graph.copy()
    applied = 0
    for node_id, attributes in overrides.items():
        node = result.get(str(node_id))
        if node is None or not isinstance(attributes, dict):
            continue
        for name, value in attributes.items():
            if isinstance(node.inputs.get(name), Literal):
                node.inputs[name] = Literal(value)
                applied += 1

    logger.debug(f"Applied {applied} attribute overrides")
    return result


def random_seed() -> int:
    return random.randint(0, MAX_SEED)


def apply_seed(graph: WorkflowGraph, seed: int) -> WorkflowGraph:
    """Write ``seed`` into every literal seed / noise_seed input."""
    result = graph.copy()
    for node in result.nodes.values():
        for name in SEED_INPUT_NAMES:
            if isinstance(node.inputs.get(name), Literal):
                node.inputs[name] = Literal(seed)
    return result
