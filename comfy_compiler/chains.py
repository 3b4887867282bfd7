"""
Comfy Compiler - Model Modifier Chains
=======================================

Inserts chains of model-modifier (LoRA) nodes between a model source and its
consumers, or appends them after an already-present modifier on the high- or
low-noise path of dual-model video workflows.

Features:
- Fresh chains after the checkpoint / UNET loader
- Extension chains on a noise path picked by a pluggable classifier
- Fresh node ids above every existing numeric id (floor 100)
- Chain list editing helpers with clamped strengths

Missing structure (no model source, no consumers, no sampling pattern) is a
silent no-op: the input graph is returned unchanged.

Usage:
    from comfy_compiler.chains import ModifierSelection, inject_modifier_chain

    chain = [ModifierSelection(name="detail.safetensors", strength=0.8)]
    graph = inject_modifier_chain(graph, chain)
"""

import json
from enum import Enum
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .config import get_settings
from .exceptions import InvalidParameterError
from .graph import Connection, Literal, WorkflowGraph, WorkflowNode, next_node_id
from .logging_config import get_logger

logger = get_logger(__name__)

__all__ = [
    # Selection model
    "ModifierSelection",
    # Chain editing
    "add_selection",
    "remove_selection",
    "update_selection_name",
    "update_selection_strength",
    "filter_unavailable",
    "chain_to_json",
    "chain_from_json",
    "coerce_chain",
    # Noise path classification
    "NoisePath",
    "NoisePathClassifier",
    "StartStepClassifier",
    # Injection
    "create_modifier_node",
    "inject_modifier_chain",
    "extend_modifier_chain",
]


# =============================================================================
# SELECTION MODEL
# =============================================================================


def _clamp_strength(value: float) -> float:
    config = get_settings().compiler
    return min(max(float(value), config.min_strength), config.max_strength)


class ModifierSelection(BaseModel):
    """One entry of a modifier chain: a LoRA file name and its strength."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=500)
    strength: float = Field(default=1.0)

    @field_validator("strength")
    @classmethod
    def clamp_strength(cls, v: float) -> float:
        return _clamp_strength(v)


# =============================================================================
# CHAIN EDITING
# =============================================================================


def add_selection(
    chain: list[ModifierSelection], available: list[str], max_length: int | None = None
) -> list[ModifierSelection]:
    """Append the first available LoRA unless the chain is full."""
    config = get_settings().compiler
    limit = config.max_chain_length if max_length is None else max_length
    if len(chain) >= limit or not available:
        return chain
    return [*chain, ModifierSelection(name=available[0], strength=config.default_strength)]


def remove_selection(chain: list[ModifierSelection], index: int) -> list[ModifierSelection]:
    if not 0 <= index < len(chain):
        return chain
    return chain[:index] + chain[index + 1 :]


def update_selection_name(
    chain: list[ModifierSelection], index: int, name: str
) -> list[ModifierSelection]:
    if not 0 <= index < len(chain):
        return chain
    updated = list(chain)
    updated[index] = chain[index].model_copy(update={"name": name})
    return updated


def update_selection_strength(
    chain: list[ModifierSelection], index: int, strength: float
) -> list[ModifierSelection]:
    """Set a strength, clamped to the configured bounds."""
    if not 0 <= index < len(chain):
        return chain
    updated = list(chain)
    # model_copy skips validation, so clamp here
    updated[index] = chain[index].model_copy(update={"strength": _clamp_strength(strength)})
    return updated


def filter_unavailable(
    chain: list[ModifierSelection], available: list[str]
) -> list[ModifierSelection]:
    """Drop entries whose file no longer exists on the server."""
    known = set(available)
    return [s for s in chain if s.name in known]


def chain_to_json(chain: list[ModifierSelection]) -> str:
    return json.dumps([{"name": s.name, "strength": s.strength} for s in chain])


def chain_from_json(text: str | None) -> list[ModifierSelection]:
    """
    Load a chain saved with chain_to_json. Entries with empty names are skipped.

    Raises:
        InvalidParameterError: If the text is not a JSON list
    """
    if not text:
        return []
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise InvalidParameterError("modifier_chain", text[:50], reason=e.msg, cause=e) from e
    if not isinstance(data, list):
        raise InvalidParameterError("modifier_chain", text[:50], reason="expected a list")

    chain = []
    for item in data:
        if not isinstance(item, dict):
            continue
        name = str(item.get("name") or "").strip()
        if not name:
            continue
        chain.append(ModifierSelection(name=name, strength=item.get("strength", 1.0)))
    return chain


# =============================================================================
# NOISE PATH CLASSIFICATION
# =============================================================================


class NoisePath(str, Enum):
    HIGH = "high"
    LOW = "low"


class NoisePathClassifier(Protocol):
    """Decides which noise paths a model-sampling node feeds."""

    def classify(self, graph: WorkflowGraph, sampling_node_id: str) -> set[NoisePath]:
        """Return every path the node feeds; empty if it feeds no recognizable sampler."""
        ...


class StartStepClassifier:
    """
    Advanced sampler convention: a sampler starting at step 0 runs the
    high-noise model, any other start step the low-noise model.
    """

    def __init__(
        self, sampler_class_type: str | None = None, start_step_input: str = "start_at_step"
    ):
        self.sampler_class_type = (
            sampler_class_type or get_settings().compiler.advanced_sampler_class_type
        )
        self.start_step_input = start_step_input

    def classify(self, graph: WorkflowGraph, sampling_node_id: str) -> set[NoisePath]:
        paths = set()
        for sampler in graph.nodes_of_type(self.sampler_class_type):
            model = sampler.inputs.get("model")
            if not isinstance(model, Connection) or model.source_node_id != sampling_node_id:
                continue
            start_step = sampler.literal(self.start_step_input, -1)
            if isinstance(start_step, (int, float)) and start_step == 0:
                paths.add(NoisePath.HIGH)
            else:
                paths.add(NoisePath.LOW)
        return paths


# =============================================================================
# INJECTION
# =============================================================================


def create_modifier_node(
    node_id: int | str,
    selection: ModifierSelection,
    source_node_id: str,
    source_output_index: int = 0,
    class_type: str | None = None,
) -> WorkflowNode:
    """Build one modifier node fed by ``source_node_id``."""
    return WorkflowNode(
        id=str(node_id),
        class_type=class_type or get_settings().compiler.modifier_class_type,
        inputs={
            "lora_name": Literal(selection.name),
            "strength_model": Literal(float(selection.strength)),
            "model": Connection(source_node_id, source_output_index),
        },
    )


def _append_chain(
    graph: WorkflowGraph, chain: list[ModifierSelection], source_node_id: str
) -> str:
    """Add the chain nodes after ``source_node_id`` and return the last id."""
    config = get_settings().compiler
    next_id = next_node_id(graph, floor=config.injected_id_floor)
    previous = source_node_id
    for selection in chain:
        node = create_modifier_node(next_id, selection, previous)
        graph.nodes[node.id] = node
        previous = node.id
        next_id += 1
    return previous


def _find_model_source(graph: WorkflowGraph) -> WorkflowNode | None:
    for class_type in get_settings().compiler.model_source_class_types:
        matches = graph.nodes_of_type(class_type)
        if matches:
            return matches[0]
    return None


def inject_modifier_chain(
    graph: WorkflowGraph, chain: list[ModifierSelection]
) -> WorkflowGraph:
    """
    Insert ``chain`` between the model source and every consumer of its
    model output (index 0). Consumers are rewired to the last new node.
    """
    if not chain:
        return graph

    source = _find_model_source(graph)
    if source is None:
        logger.debug("No model source found, modifier chain not injected")
        return graph

    consumers = [
        (node.id, name)
        for node in graph.nodes.values()
        for name, conn in node.connections()
        if conn.source_node_id == source.id and conn.output_index == 0
    ]
    if not consumers:
        logger.debug(f"Model source {source.id} has no consumers, modifier chain not injected")
        return graph

    result = graph.copy()
    last_id = _append_chain(result, chain, source.id)
    for node_id, name in consumers:
        result.nodes[node_id].inputs[name] = Connection(last_id, 0)

    logger.info(
        f"Injected {len(chain)} modifier nodes after {source.class_type} #{source.id}",
        extra={"consumer_count": len(consumers), "last_node_id": last_id},
    )
    return result


def extend_modifier_chain(
    graph: WorkflowGraph,
    chain: list[ModifierSelection],
    noise_path: NoisePath,
    classifier: NoisePathClassifier | None = None,
) -> WorkflowGraph:
    """
    Append ``chain`` after the mandatory modifier on one noise path.

    Looks for a model-sampling node fed by a modifier node, keeps the one the
    classifier assigns to ``noise_path``, and rewires its model input to the
    end of the new chain.
    """
    if not chain:
        return graph

    config = get_settings().compiler
    classifier = classifier or StartStepClassifier()

    for sampling in graph.nodes_of_type(config.sampling_class_type):
        model = sampling.inputs.get("model")
        if not isinstance(model, Connection):
            continue
        modifier = graph.get(model.source_node_id)
        if modifier is None or modifier.class_type != config.modifier_class_type:
            continue
        if noise_path not in classifier.classify(graph, sampling.id):
            continue

        result = graph.copy()
        last_id = _append_chain(result, chain, modifier.id)
        result.nodes[sampling.id].inputs["model"] = Connection(last_id, 0)
        logger.info(
            f"Extended {noise_path.value}-noise modifier chain by {len(chain)} nodes",
            extra={"sampling_node_id": sampling.id, "last_node_id": last_id},
        )
        return result

    logger.debug(f"No {noise_path.value}-noise sampling pattern found, chain not extended")
    return graph


def coerce_chain(raw: Any) -> list[ModifierSelection]:
    """Accept ModifierSelection objects or plain dicts."""
    return [s if isinstance(s, ModifierSelection) else ModifierSelection(**s) for s in raw or []]
