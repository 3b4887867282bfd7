"""
Comfy Compiler - Canonical Graph Model
=======================================

In-memory form of an API-format (canonical) workflow that every compiler
pass operates on.

Features:
- Closed sum type for input values: Literal | Connection | UnconnectedSlot
- Parsing of the ``{"nodes": {...}}`` wrapper or a raw node map
- Derived edges with outgoing/incoming lookups
- Minimal canonical serialization (mode and title only when they carry information)

Usage:
    from comfy_compiler.graph import parse_workflow, serialize_workflow, Connection

    graph = parse_workflow(text)
    for edge in graph.outgoing("4"):
        print(edge.target_node_id, edge.input_name)
    text = serialize_workflow(graph)
"""

import copy
import json
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Iterator, Union

from .exceptions import WorkflowParseError
from .logging_config import get_logger
from .schema import NodeTypeSchema, OutputDefinition

logger = get_logger(__name__)

__all__ = [
    # Modes
    "NodeMode",
    # Input values
    "Literal",
    "Connection",
    "UnconnectedSlot",
    "InputValue",
    "parse_input_value",
    "encode_input_value",
    # Graph structure
    "WorkflowNode",
    "WorkflowEdge",
    "WorkflowGroup",
    "WorkflowNote",
    "WorkflowGraph",
    # Parsing / serialization
    "load_json_document",
    "parse_workflow",
    "workflow_to_dict",
    "serialize_workflow",
    "next_node_id",
]


# =============================================================================
# ENUMS
# =============================================================================


class NodeMode(IntEnum):
    """Execution mode flag shared by both workflow formats."""

    ACTIVE = 0
    MUTED = 2
    BYPASSED = 4


# =============================================================================
# INPUT VALUES
# =============================================================================


@dataclass(frozen=True)
class Literal:
    """A value baked into the node (number, string, boolean, list...)."""

    value: Any


@dataclass(frozen=True)
class Connection:
    """Reference to another node's output slot."""

    source_node_id: str
    output_index: int = 0


@dataclass(frozen=True)
class UnconnectedSlot:
    """A typed input with no producer yet."""

    slot_type: str


InputValue = Union[Literal, Connection, UnconnectedSlot]


def _is_connection_payload(value: Any) -> bool:
    if not isinstance(value, list) or len(value) != 2:
        return False
    source, index = value
    if isinstance(index, bool) or not isinstance(index, int):
        return False
    if isinstance(source, bool):
        return False
    return isinstance(source, (str, int))


def parse_input_value(value: Any) -> InputValue:
    """Decode a canonical input value. ``[id, index]`` pairs are connections."""
    if _is_connection_payload(value):
        return Connection(str(value[0]), value[1])
    return Literal(value)


def encode_input_value(value: InputValue) -> Any:
    """Encode an input value for canonical JSON. Returns None for unconnected slots."""
    match value:
        case Literal(value=raw):
            return raw
        case Connection(source_node_id=source, output_index=index):
            return [source, index]
        case UnconnectedSlot():
            return None
    raise TypeError(f"Unknown input value: {value!r}")


# =============================================================================
# GRAPH STRUCTURE
# =============================================================================


@dataclass
class WorkflowNode:
    """A single executable node."""

    id: str
    class_type: str
    inputs: dict[str, InputValue] = field(default_factory=dict)
    title: str | None = None
    mode: int = NodeMode.ACTIVE
    outputs: list[OutputDefinition] = field(default_factory=list)

    @property
    def display_title(self) -> str:
        return self.title or self.class_type

    @property
    def is_bypassed(self) -> bool:
        return self.mode == NodeMode.BYPASSED

    @property
    def is_muted(self) -> bool:
        return self.mode == NodeMode.MUTED

    def connections(self) -> Iterator[tuple[str, Connection]]:
        """Yield ``(input_name, connection)`` for every connected input."""
        for name, value in self.inputs.items():
            if isinstance(value, Connection):
                yield name, value

    def literal(self, name: str, default: Any = None) -> Any:
        value = self.inputs.get(name)
        if isinstance(value, Literal):
            return value.value
        return default

    def has_output_type(self, slot_type: str) -> bool:
        wanted = slot_type.upper()
        return any(o.type.upper() == wanted for o in self.outputs)


@dataclass(frozen=True)
class WorkflowEdge:
    """A connection seen from the graph level."""

    source_node_id: str
    output_index: int
    target_node_id: str
    input_name: str


@dataclass
class WorkflowGroup:
    id: int | str
    title: str
    member_node_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "title": self.title, "member_nodes": list(self.member_node_ids)}


@dataclass
class WorkflowNote:
    """Free text attached to a workflow; never executed."""

    id: int | str
    title: str
    content: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "title": self.title, "content": self.content}


@dataclass
class WorkflowGraph:
    """
    Canonical workflow graph.

    ``wrapped`` and ``metadata`` remember the document shape the graph was
    parsed from so serialization gives the caller back the same layout.
    """

    nodes: dict[str, WorkflowNode] = field(default_factory=dict)
    groups: list[WorkflowGroup] = field(default_factory=list)
    notes: list[WorkflowNote] = field(default_factory=list)
    wrapped: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.nodes

    def get(self, node_id: str) -> WorkflowNode | None:
        return self.nodes.get(node_id)

    def copy(self) -> "WorkflowGraph":
        """Deep copy; passes never mutate the caller's graph."""
        return copy.deepcopy(self)

    @property
    def edges(self) -> list[WorkflowEdge]:
        return [
            WorkflowEdge(conn.source_node_id, conn.output_index, node.id, name)
            for node in self.nodes.values()
            for name, conn in node.connections()
        ]

    def outgoing(self, node_id: str) -> list[WorkflowEdge]:
        return [e for e in self.edges if e.source_node_id == node_id]

    def incoming(self, node_id: str) -> list[WorkflowEdge]:
        return [e for e in self.edges if e.target_node_id == node_id]

    def nodes_of_type(self, class_type: str) -> list[WorkflowNode]:
        return [n for n in self.nodes.values() if n.class_type == class_type]

    def class_types(self) -> set[str]:
        return {n.class_type for n in self.nodes.values()}


# =============================================================================
# PARSING
# =============================================================================


def load_json_document(source: str | dict[str, Any]) -> dict[str, Any]:
    """
    Decode workflow text into a JSON object.

    Raises:
        WorkflowParseError: If the text is not JSON or not an object
    """
    if isinstance(source, dict):
        return source

    try:
        data = json.loads(source)
    except (json.JSONDecodeError, TypeError) as e:
        line = getattr(e, "lineno", None)
        column = getattr(e, "colno", None)
        raise WorkflowParseError(
            f"Workflow is not valid JSON: {e}",
            source_text=source if isinstance(source, str) else None,
            line=line,
            column=column,
            cause=e,
        ) from e

    if not isinstance(data, dict):
        raise WorkflowParseError(
            f"Workflow must be a JSON object, got {type(data).__name__}",
            source_text=source,
        )
    return data


def _parse_mode(raw: Any) -> int:
    if isinstance(raw, bool) or not isinstance(raw, int):
        return NodeMode.ACTIVE
    try:
        return NodeMode(raw)
    except ValueError:
        return raw


def _parse_node(node_id: str, data: dict[str, Any], schema: NodeTypeSchema | None) -> WorkflowNode:
    class_type = str(data.get("class_type", ""))
    raw_inputs = data.get("inputs")
    inputs: dict[str, InputValue] = {}
    if isinstance(raw_inputs, dict):
        for name, value in raw_inputs.items():
            inputs[name] = parse_input_value(value)

    meta = data.get("_meta")
    title = None
    if isinstance(meta, dict) and isinstance(meta.get("title"), str) and meta["title"]:
        title = meta["title"]

    node = WorkflowNode(
        id=node_id,
        class_type=class_type,
        inputs=inputs,
        title=title,
        mode=_parse_mode(data.get("mode", NodeMode.ACTIVE)),
    )

    definition = schema.get(class_type) if schema is not None else None
    if definition is not None:
        node.outputs = list(definition.outputs)
        for input_def in definition.inputs:
            if input_def.name not in node.inputs and input_def.is_connection_only:
                node.inputs[input_def.name] = UnconnectedSlot(input_def.type)

    return node


def _parse_groups(raw: Any) -> list[WorkflowGroup]:
    groups = []
    if not isinstance(raw, list):
        return groups
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            continue
        members = item.get("member_nodes") or []
        groups.append(
            WorkflowGroup(
                id=item.get("id", index + 1),
                title=str(item.get("title", "Group")),
                member_node_ids=[str(m) for m in members if isinstance(m, (str, int))],
            )
        )
    return groups


def _parse_notes(raw: Any) -> list[WorkflowNote]:
    notes = []
    if not isinstance(raw, list):
        return notes
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            continue
        notes.append(
            WorkflowNote(
                id=item.get("id", index + 1),
                title=str(item.get("title", "Note")),
                content=str(item.get("content", "")),
            )
        )
    return notes


def parse_workflow(
    source: str | dict[str, Any], schema: NodeTypeSchema | None = None
) -> WorkflowGraph:
    """
    Parse a canonical-format workflow.

    Accepts ``{"nodes": {...}, "groups": [...], "notes": [...]}`` or a raw
    ``{id: node}`` map. Entries that do not look like nodes are kept as
    metadata. When a schema is given, node outputs are filled in and missing
    connection-only inputs become UnconnectedSlot values.

    Raises:
        WorkflowParseError: If the document is not a JSON object, or is a
            layout-format document
    """
    data = load_json_document(source)

    raw_nodes = data.get("nodes")
    if isinstance(raw_nodes, list):
        raise WorkflowParseError(
            "Document is in layout format; import it with import_layout()",
            source_text=source if isinstance(source, str) else None,
        )

    wrapped = isinstance(raw_nodes, dict)
    node_map = raw_nodes if wrapped else data
    reserved = {"nodes", "groups", "notes"}

    graph = WorkflowGraph(wrapped=wrapped)
    for key, value in node_map.items():
        if not wrapped and key in reserved:
            continue
        if isinstance(value, dict) and "class_type" in value:
            node_id = str(key)
            graph.nodes[node_id] = _parse_node(node_id, value, schema)
        elif not wrapped:
            graph.metadata[key] = value

    if wrapped:
        for key, value in data.items():
            if key not in reserved:
                graph.metadata[key] = value

    graph.groups = _parse_groups(data.get("groups"))
    graph.notes = _parse_notes(data.get("notes"))
    return graph


# =============================================================================
# SERIALIZATION
# =============================================================================


def _node_to_dict(node: WorkflowNode) -> dict[str, Any]:
    inputs: dict[str, Any] = {}
    for name, value in node.inputs.items():
        if isinstance(value, UnconnectedSlot):
            continue
        inputs[name] = encode_input_value(value)

    result: dict[str, Any] = {"class_type": node.class_type, "inputs": inputs}
    if node.mode != NodeMode.ACTIVE:
        result["mode"] = int(node.mode)
    if node.title and node.title != node.class_type:
        result["_meta"] = {"title": node.title}
    return result


def workflow_to_dict(graph: WorkflowGraph) -> dict[str, Any]:
    """Convert a graph to its canonical JSON object."""
    nodes = {node_id: _node_to_dict(node) for node_id, node in graph.nodes.items()}

    result: dict[str, Any] = {"nodes": nodes} if graph.wrapped else dict(nodes)
    if graph.groups:
        result["groups"] = [g.to_dict() for g in graph.groups]
    if graph.notes:
        result["notes"] = [n.to_dict() for n in graph.notes]
    for key, value in graph.metadata.items():
        result.setdefault(key, value)
    return result


def serialize_workflow(graph: WorkflowGraph, indent: int | None = 2) -> str:
    """Serialize a graph to pretty-printed canonical JSON."""
    return json.dumps(workflow_to_dict(graph), indent=indent, ensure_ascii=False)


def next_node_id(graph: WorkflowGraph, floor: int = 0) -> int:
    """Smallest id above every numeric node id and at least ``floor``."""
    numeric = [int(node_id) for node_id in graph.nodes if node_id.isdigit()]
    return max([floor - 1, *numeric]) + 1
