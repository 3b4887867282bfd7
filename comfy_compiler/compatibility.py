"""
Comfy Compiler - Type Compatibility
====================================

The single rule deciding whether a producer port may feed a consumer port,
and the editor-time queries built on it.

Usage:
    from comfy_compiler.compatibility import is_compatible, valid_input_targets

    is_compatible("MODEL", "model")  # True
    is_compatible("*", "LATENT")     # True
    targets = valid_input_targets(graph, schema, "4", 0)
"""

from dataclasses import dataclass

from .graph import Connection, UnconnectedSlot, WorkflowGraph, WorkflowNode
from .schema import NodeTypeSchema

__all__ = [
    "WILDCARD_TYPE",
    "is_compatible",
    "SlotRef",
    "input_slot_type",
    "output_slot_type",
    "valid_input_targets",
    "valid_output_sources",
]

WILDCARD_TYPE = "*"


def is_compatible(producer_type: str | None, consumer_type: str | None) -> bool:
    """
    Decide whether ``producer_type`` may feed ``consumer_type``.

    Absent types are permissive, ``*`` matches anything, otherwise the names
    must match case-insensitively.
    """
    if producer_type is None or consumer_type is None:
        return True
    if producer_type == WILDCARD_TYPE or consumer_type == WILDCARD_TYPE:
        return True
    return producer_type.casefold() == consumer_type.casefold()


@dataclass(frozen=True)
class SlotRef:
    """One end of a potential connection."""

    node_id: str
    slot_type: str | None
    input_name: str | None = None
    output_index: int | None = None


def input_slot_type(node: WorkflowNode, input_name: str, schema: NodeTypeSchema) -> str | None:
    """Declared type of an input, preferring the slot's own type."""
    value = node.inputs.get(input_name)
    if isinstance(value, UnconnectedSlot):
        return value.slot_type
    return schema.input_type(node.class_type, input_name)


def output_slot_type(node: WorkflowNode, output_index: int, schema: NodeTypeSchema) -> str | None:
    if 0 <= output_index < len(node.outputs):
        return node.outputs[output_index].type
    return schema.output_type(node.class_type, output_index)


def valid_input_targets(
    graph: WorkflowGraph, schema: NodeTypeSchema, source_node_id: str, output_index: int
) -> list[SlotRef]:
    """Inputs on other nodes that could accept the given output."""
    source = graph.get(source_node_id)
    if source is None:
        return []
    produced = output_slot_type(source, output_index, schema)

    targets = []
    for node in graph.nodes.values():
        if node.id == source_node_id:
            continue
        for name, value in node.inputs.items():
            if not isinstance(value, (Connection, UnconnectedSlot)):
                continue
            consumed = input_slot_type(node, name, schema)
            if is_compatible(produced, consumed):
                targets.append(SlotRef(node.id, consumed, input_name=name))
    return targets


def valid_output_sources(
    graph: WorkflowGraph, schema: NodeTypeSchema, target_node_id: str, input_name: str
) -> list[SlotRef]:
    """Outputs on other nodes that could feed the given input."""
    target = graph.get(target_node_id)
    if target is None:
        return []
    consumed = input_slot_type(target, input_name, schema)

    sources = []
    for node in graph.nodes.values():
        if node.id == target_node_id:
            continue
        definition = schema.get(node.class_type)
        outputs = node.outputs or (list(definition.outputs) if definition else [])
        for index, output in enumerate(outputs):
            if is_compatible(output.type, consumed):
                sources.append(SlotRef(node.id, output.type, output_index=index))
    return sources
