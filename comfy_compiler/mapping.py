"""
Comfy Compiler - Field Mapping Analyzer
========================================

Finds which node inputs realize the semantic fields of a workflow category
(prompt text, dimensions, model names...) so an uploaded workflow can be
turned into a reusable template.

Features:
- Prompt encoders classified positive/negative by tracing conditioning edges
- Title keywords as the fallback classifier, then both polarities
- Name-based matching with a type-based fallback for renamed inputs
- Immutable candidate lists; re-selection returns new state objects
- Writing ``{{placeholder}}`` literals into the selected inputs

Usage:
    from comfy_compiler.mapping import analyze_field_mappings, apply_field_mappings

    state = analyze_field_mappings(graph, WorkflowCategory.TEXT_TO_IMAGE, schema)
    if state.all_fields_mapped:
        template = apply_field_mappings(graph, state.to_field_mappings())
"""

import json
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Any

from .exceptions import InvalidParameterError
from .graph import Literal, WorkflowGraph, WorkflowNode
from .logging_config import get_logger
from .schema import ENUM_TYPE, NodeTypeSchema
from .templates import (
    GRAPH_TRACED_KEYS,
    RequiredField,
    WorkflowCategory,
    create_required_field,
    key_for_placeholder,
    optional_keys,
    placeholder_for_key,
    required_keys,
)

logger = get_logger(__name__)

__all__ = [
    "PROMPT_INPUT_NAMES",
    "FieldCandidate",
    "FieldMappingState",
    "WorkflowMappingState",
    "input_names_for_field",
    "trace_conditioning",
    "find_prompt_candidates",
    "find_field_candidates",
    "analyze_field_mappings",
    "apply_field_mappings",
]

# Input names that carry prompt text on common encoder nodes
PROMPT_INPUT_NAMES = ("text", "prompt")

# Extra input names a field may appear under, beyond its placeholder key
_FIELD_INPUT_ALIASES = {
    "fps": ("frame_rate",),
}

_NOISE_PREFIXES = ("highnoise_", "lownoise_")
_MAX_TRACE_DEPTH = 10


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass(frozen=True)
class FieldCandidate:
    """Hypothesis that ``input_key`` on ``node_id`` realizes a field."""

    node_id: str
    node_title: str
    class_type: str
    input_key: str
    current_value: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodeId": self.node_id,
            "nodeName": self.node_title,
            "classType": self.class_type,
            "inputKey": self.input_key,
            "currentValue": self.current_value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FieldCandidate":
        return cls(
            node_id=str(data["nodeId"]),
            node_title=str(data.get("nodeName", "")),
            class_type=str(data.get("classType", "")),
            input_key=str(data["inputKey"]),
            current_value=data.get("currentValue"),
        )


@dataclass(frozen=True)
class FieldMappingState:
    """Candidates for one field and which one is selected (-1 for none)."""

    field: RequiredField
    candidates: tuple[FieldCandidate, ...] = ()
    selected_index: int = 0
    required: bool = True

    @property
    def selected_candidate(self) -> FieldCandidate | None:
        if 0 <= self.selected_index < len(self.candidates):
            return self.candidates[self.selected_index]
        return None

    @property
    def is_mapped(self) -> bool:
        return self.selected_candidate is not None

    @property
    def has_multiple_candidates(self) -> bool:
        return len(self.candidates) > 1

    @property
    def needs_remapping(self) -> bool:
        """Candidates exist but the selection was cleared."""
        return bool(self.candidates) and self.selected_index < 0

    def select(self, index: int) -> "FieldMappingState":
        if not -1 <= index < len(self.candidates):
            raise InvalidParameterError(
                self.field.field_key,
                index,
                reason=f"candidate index out of range (0..{len(self.candidates) - 1})",
            )
        return replace(self, selected_index=index)

    def clear_selection(self) -> "FieldMappingState":
        return replace(self, selected_index=-1)


@dataclass(frozen=True)
class WorkflowMappingState:
    """Mapping state for every field of a workflow."""

    category: WorkflowCategory
    field_mappings: tuple[FieldMappingState, ...] = field(default_factory=tuple)

    @property
    def all_fields_mapped(self) -> bool:
        """True when every required field has a selection."""
        return all(m.is_mapped for m in self.field_mappings if m.required)

    @property
    def unmapped_fields(self) -> list[RequiredField]:
        return [m.field for m in self.field_mappings if m.required and not m.is_mapped]

    def get(self, field_key: str) -> FieldMappingState | None:
        for mapping in self.field_mappings:
            if mapping.field.field_key == field_key:
                return mapping
        return None

    def select(self, field_key: str, index: int) -> "WorkflowMappingState":
        """Return a new state with ``field_key`` pointing at candidate ``index``."""
        updated = tuple(
            m.select(index) if m.field.field_key == field_key else m for m in self.field_mappings
        )
        return replace(self, field_mappings=updated)

    def to_field_mappings(self) -> dict[str, tuple[str, str]]:
        """``field_key -> (node_id, input_key)`` for every selected field."""
        result = {}
        for mapping in self.field_mappings:
            candidate = mapping.selected_candidate
            if candidate is not None:
                result[mapping.field.field_key] = (candidate.node_id, candidate.input_key)
        return result

    def to_json(self) -> str:
        return json.dumps(
            {
                "workflowType": self.category.value,
                "fieldMappings": [
                    {
                        "fieldKey": m.field.field_key,
                        "displayName": m.field.display_name,
                        "description": m.field.description,
                        "required": m.required,
                        "selectedCandidateIndex": m.selected_index,
                        "candidates": [c.to_dict() for c in m.candidates],
                    }
                    for m in self.field_mappings
                ],
            }
        )

    @classmethod
    def from_json(cls, text: str) -> "WorkflowMappingState":
        """
        Restore a state saved with to_json.

        Raises:
            InvalidParameterError: If the text is not a saved mapping state
        """
        try:
            data = json.loads(text)
            mappings = tuple(
                FieldMappingState(
                    field=RequiredField(
                        item["fieldKey"], item["displayName"], item["description"]
                    ),
                    candidates=tuple(FieldCandidate.from_dict(c) for c in item["candidates"]),
                    selected_index=int(item.get("selectedCandidateIndex", 0)),
                    required=bool(item.get("required", True)),
                )
                for item in data["fieldMappings"]
            )
            return cls(category=WorkflowCategory(data["workflowType"]), field_mappings=mappings)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise InvalidParameterError(
                "mapping_state", text[:50], reason=str(e), cause=e
            ) from e


# =============================================================================
# CANDIDATE DISCOVERY
# =============================================================================


def input_names_for_field(field_key: str) -> tuple[str, ...]:
    """Input names under which a field can appear on a node."""
    return (key_for_placeholder(field_key), *_FIELD_INPUT_ALIASES.get(field_key, ()))


def _value_matches_field(field_key: str, value: Any) -> bool:
    # High/low-noise variants share an input key; only the placeholder tells them apart
    if field_key.startswith(_NOISE_PREFIXES):
        return isinstance(value, str) and f"{{{{{field_key}}}}}" in value
    return True


def _candidate(node: WorkflowNode, input_key: str) -> FieldCandidate:
    return FieldCandidate(
        node_id=node.id,
        node_title=node.display_title,
        class_type=node.class_type,
        input_key=input_key,
        current_value=node.literal(input_key),
    )


def trace_conditioning(graph: WorkflowGraph, node_id: str) -> str | None:
    """
    Classify an encoder as "positive" or "negative" from where its output goes.

    Direct edges win; otherwise conditioning-passthrough nodes are followed
    breadth-first with a visited set and a depth bound. A lone "conditioning"
    input (single-conditioning guiders) counts as positive.
    """
    visited = {node_id}
    queue = deque([(node_id, 0)])
    while queue:
        current, depth = queue.popleft()
        next_hop = []
        for edge in graph.outgoing(current):
            name = edge.input_name.lower()
            if name in ("positive", "negative"):
                return name
            if name == "conditioning":
                return "positive"
            next_hop.append(edge.target_node_id)

        if depth >= _MAX_TRACE_DEPTH:
            continue
        for target_id in next_hop:
            target = graph.get(target_id)
            if target_id in visited or target is None:
                continue
            if target.outputs and not target.has_output_type("CONDITIONING"):
                continue
            visited.add(target_id)
            queue.append((target_id, depth + 1))
    return None


def find_prompt_candidates(
    graph: WorkflowGraph, schema: NodeTypeSchema
) -> dict[str, list[FieldCandidate]]:
    """Positive and negative prompt candidates, traced matches first."""
    encoders: list[tuple[WorkflowNode, str]] = []
    for node in graph.nodes.values():
        key = next((k for k in PROMPT_INPUT_NAMES if k in node.inputs), None)
        if key is not None:
            encoders.append((node, key))

    if not encoders:
        # Renamed or localized inputs: CONDITIONING producers with STRING inputs
        for node in graph.nodes.values():
            if not node.has_output_type("CONDITIONING"):
                continue
            definition = schema.get(node.class_type)
            if definition is None:
                continue
            for input_def in definition.inputs:
                if input_def.type == "STRING" and input_def.name in node.inputs:
                    encoders.append((node, input_def.name))

    positive: list[FieldCandidate] = []
    negative: list[FieldCandidate] = []
    for node, key in encoders:
        candidate = _candidate(node, key)
        polarity = trace_conditioning(graph, node.id)
        if polarity == "positive":
            positive.insert(0, candidate)
        elif polarity == "negative":
            negative.insert(0, candidate)
        else:
            title = node.display_title.lower()
            if "positive" in title:
                positive.append(candidate)
            elif "negative" in title:
                negative.append(candidate)
            else:
                positive.append(candidate)
                negative.append(candidate)

    return {"positive_text": positive, "negative_text": negative}


def find_field_candidates(
    field_key: str,
    graph: WorkflowGraph,
    schema: NodeTypeSchema,
    prompt_candidates: dict[str, list[FieldCandidate]] | None = None,
) -> list[FieldCandidate]:
    """Candidates for one field key, in graph order."""
    if field_key in GRAPH_TRACED_KEYS:
        if prompt_candidates is None:
            prompt_candidates = find_prompt_candidates(graph, schema)
        return list(prompt_candidates.get(field_key, []))

    names = input_names_for_field(field_key)
    candidates = [
        _candidate(node, input_key)
        for node in graph.nodes.values()
        for input_key in node.inputs
        if input_key in names
        and _value_matches_field(field_key, node.literal(input_key))
    ]

    if not candidates and field_key == "image":
        # Custom loaders: an IMAGE output plus an enumerated file choice
        for node in graph.nodes.values():
            if not node.has_output_type("IMAGE"):
                continue
            definition = schema.get(node.class_type)
            if definition is None:
                continue
            for input_def in definition.inputs:
                if input_def.type == ENUM_TYPE and input_def.name in node.inputs:
                    candidates.append(_candidate(node, input_def.name))

    return candidates


def analyze_field_mappings(
    graph: WorkflowGraph, category: WorkflowCategory, schema: NodeTypeSchema
) -> WorkflowMappingState:
    """
    Build the mapping state for ``category``: required fields first, then
    the optional fields that apply to this graph's structure.
    """
    prompt_candidates = find_prompt_candidates(graph, schema)
    keys = [(key, True) for key in required_keys(category)]
    keys += [(key, False) for key in optional_keys(category, graph.class_types())]

    mappings = []
    for key, required in keys:
        candidates = tuple(find_field_candidates(key, graph, schema, prompt_candidates))
        mappings.append(
            FieldMappingState(
                field=create_required_field(key),
                candidates=candidates,
                selected_index=0 if candidates else -1,
                required=required,
            )
        )

    state = WorkflowMappingState(category=category, field_mappings=tuple(mappings))
    logger.info(
        f"Analyzed {len(mappings)} fields for {category.value}",
        extra={"unmapped": [f.field_key for f in state.unmapped_fields]},
    )
    return state


# =============================================================================
# TEMPLATE WRITING
# =============================================================================


def apply_field_mappings(
    graph: WorkflowGraph, mappings: dict[str, tuple[str, str]] | WorkflowMappingState
) -> WorkflowGraph:
    """
    Write ``{{placeholder}}`` literals into the mapped inputs.

    Mappings to unknown nodes or inputs are skipped. A connected input is
    replaced by the placeholder literal.
    """
    if isinstance(mappings, WorkflowMappingState):
        mappings = mappings.to_field_mappings()

    result = graph.copy()
    for field_key, (node_id, input_key) in mappings.items():
        node = result.get(node_id)
        if node is None or input_key not in node.inputs:
            logger.debug(f"Skipping mapping {field_key} -> {node_id}.{input_key}")
            continue
        node.inputs[input_key] = Literal(f"{{{{{placeholder_for_key(field_key)}}}}}")
    return result
