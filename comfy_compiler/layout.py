"""
Comfy Compiler - Layout Format Importer
========================================

Converts an editor-saved (LiteGraph "layout") workflow into the canonical
graph: positional node list + global link table + widget value arrays in,
named inputs keyed by node id out.

Features:
- Widget values mapped onto schema input names, skipping link-only inputs
- Frontend-only seed control widgets ("randomize", "fixed", ...) dropped
- Connections override literal widget values of the same name
- Reroute nodes collapsed onto their upstream source
- Notes extracted, groups derived from node anchor containment

Usage:
    from comfy_compiler.layout import import_layout

    result = import_layout(text, schema)
    print(result.content)
    for warning in result.warnings:
        print(warning)
"""

from dataclasses import dataclass, field
from typing import Any

from .graph import (
    Connection,
    Literal,
    NodeMode,
    WorkflowGraph,
    WorkflowGroup,
    WorkflowNode,
    WorkflowNote,
    load_json_document,
    serialize_workflow,
)
from .logging_config import get_logger, log_timing
from .schema import NodeTypeSchema

logger = get_logger(__name__)

__all__ = [
    "NOTE_NODE_TYPES",
    "REROUTE_NODE_TYPES",
    "CONTROL_WIDGET_VALUES",
    "SEED_INPUT_NAMES",
    "LayoutLink",
    "ImportResult",
    "is_layout_document",
    "import_layout",
]

NOTE_NODE_TYPES = frozenset({"Note", "MarkdownNote", "workflow/note"})
REROUTE_NODE_TYPES = frozenset({"Reroute", "ReroutePrimitive"})

# Values of the frontend-only "control after generate" widget that follows a seed
CONTROL_WIDGET_VALUES = frozenset({"fixed", "increment", "decrement", "randomize"})
SEED_INPUT_NAMES = frozenset({"seed", "noise_seed"})

DEFAULT_NODE_SIZE = (200.0, 100.0)
MAX_REROUTE_HOPS = 64


@dataclass(frozen=True)
class LayoutLink:
    """One row of the layout link table."""

    link_id: int
    source_node_id: int
    source_slot: int
    target_node_id: int
    target_slot: int
    type: str | None = None


@dataclass
class ImportResult:
    """Canonical graph produced from a layout document plus warnings."""

    graph: WorkflowGraph
    warnings: list[str] = field(default_factory=list)

    @property
    def content(self) -> str:
        """Pretty-printed canonical JSON."""
        return serialize_workflow(self.graph)


# =============================================================================
# DOCUMENT HELPERS
# =============================================================================


def is_layout_document(data: dict[str, Any]) -> bool:
    """Layout documents keep their nodes in a list rather than an id map."""
    return isinstance(data.get("nodes"), list)


def _as_int(value: Any, default: int | None = None) -> int | None:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return default
    return default


def _as_pair(value: Any, default: tuple[float, float] | None = None) -> tuple[float, float] | None:
    """Read ``[a, b]`` or ``{"0": a, "1": b}`` as a float pair."""
    if isinstance(value, dict):
        value = [value.get("0"), value.get("1")]
    if isinstance(value, list) and len(value) >= 2:
        try:
            return float(value[0]), float(value[1])
        except (TypeError, ValueError):
            return default
    return default


def _parse_link(entry: Any) -> LayoutLink | None:
    if isinstance(entry, list):
        if len(entry) < 6:
            return None
        link_id, source, source_slot, target, target_slot, link_type = entry[:6]
    elif isinstance(entry, dict):
        link_id = entry.get("id")
        source = entry.get("origin_id")
        source_slot = entry.get("origin_slot")
        target = entry.get("target_id")
        target_slot = entry.get("target_slot")
        link_type = entry.get("type")
    else:
        return None

    fields = [_as_int(v) for v in (link_id, source, source_slot, target, target_slot)]
    if any(v is None for v in fields):
        return None
    return LayoutLink(*fields, type=link_type if isinstance(link_type, str) else None)


def _build_link_table(raw_links: Any) -> dict[int, LayoutLink]:
    links: dict[int, LayoutLink] = {}
    if not isinstance(raw_links, list):
        return links
    for entry in raw_links:
        link = _parse_link(entry)
        if link is None or link.link_id == -1:
            continue
        links[link.link_id] = link
    return links


# =============================================================================
# WIDGET MAPPING
# =============================================================================


def _is_control_definition(name: str) -> bool:
    return name == "control_after_generate" or name.startswith("control_")


def _map_widget_values(values: list, definitions: list, inputs: dict):
    """Walk widget values in lockstep with the schema's widget inputs."""
    widget_index = 0
    for definition in definitions:
        if widget_index >= len(values):
            break

        value = values[widget_index]
        widget_index += 1

        if _is_control_definition(definition.name):
            continue

        if value is not None:
            inputs[definition.name] = Literal(value)

        if definition.name in SEED_INPUT_NAMES and widget_index < len(values):
            following = values[widget_index]
            if isinstance(following, str) and following in CONTROL_WIDGET_VALUES:
                widget_index += 1


def _map_named_widget_values(values: dict, definitions: list, inputs: dict):
    """Some custom nodes save widgets as a name -> value object."""
    known = {d.name for d in definitions}
    for name, value in values.items():
        if name in known and value is not None and not _is_control_definition(name):
            inputs[name] = Literal(value)


# =============================================================================
# IMPORTER
# =============================================================================


class _LayoutImporter:
    """Single-use conversion state for one document."""

    def __init__(self, data: dict[str, Any], schema: NodeTypeSchema):
        self.data = data
        self.schema = schema
        self.warnings: list[str] = []
        self.links = _build_link_table(data.get("links"))
        self.raw_nodes: dict[int, dict[str, Any]] = {}
        self.positions: dict[str, tuple[float, float]] = {}

        for raw in data.get("nodes") or []:
            if not isinstance(raw, dict):
                continue
            node_id = _as_int(raw.get("id"))
            if node_id is None or node_id == -1:
                continue
            self.raw_nodes[node_id] = raw

    def _node_type(self, raw: dict[str, Any]) -> str:
        node_type = raw.get("type")
        return node_type if isinstance(node_type, str) else ""

    def run(self) -> ImportResult:
        graph = WorkflowGraph(wrapped=True)

        for node_id, raw in self.raw_nodes.items():
            node_type = self._node_type(raw)
            if not node_type or node_type in REROUTE_NODE_TYPES:
                continue

            if node_type in NOTE_NODE_TYPES:
                graph.notes.append(self._convert_note(node_id, raw))
                continue

            node = self._convert_node(node_id, node_type, raw)
            graph.nodes[node.id] = node
            position = _as_pair(raw.get("pos"))
            # Nodes without a readable position belong to no group
            if position is not None:
                self.positions[node.id] = position

        # Connections to skipped nodes (notes, untyped) cannot be resolved
        for node in graph.nodes.values():
            for name, conn in list(node.connections()):
                if conn.source_node_id not in graph.nodes:
                    del node.inputs[name]

        graph.groups = self._convert_groups(graph)
        return ImportResult(graph=graph, warnings=self.warnings)

    def _convert_note(self, node_id: int, raw: dict[str, Any]) -> WorkflowNote:
        title = raw.get("title") if isinstance(raw.get("title"), str) and raw.get("title") else "Note"
        values = raw.get("widgets_values")
        content = ""
        if isinstance(values, list) and values and values[0] is not None:
            content = str(values[0])
        return WorkflowNote(id=node_id, title=title, content=content)

    def _convert_node(self, node_id: int, node_type: str, raw: dict[str, Any]) -> WorkflowNode:
        inputs: dict = {}
        definition = self.schema.get(node_type)
        values = raw.get("widgets_values")

        if definition is not None:
            if isinstance(values, list):
                _map_widget_values(values, definition.widget_inputs, inputs)
            elif isinstance(values, dict):
                _map_named_widget_values(values, definition.widget_inputs, inputs)
        elif values:
            warning = f'Node "{node_type}" (#{node_id}): inputs could not be fully mapped'
            logger.warning(
                f"No schema for {node_type} (#{node_id}), widget values dropped",
                extra={"node_id": node_id, "class_type": node_type},
            )
            self.warnings.append(warning)

        for slot in raw.get("inputs") or []:
            if not isinstance(slot, dict):
                continue
            name = slot.get("name")
            link_id = _as_int(slot.get("link"), -1)
            if not isinstance(name, str) or not name or link_id < 0:
                continue
            source = self._resolve_source(link_id)
            if source is not None:
                inputs[name] = Connection(str(source[0]), source[1])

        title = raw.get("title")
        mode = _as_int(raw.get("mode"), NodeMode.ACTIVE)
        return WorkflowNode(
            id=str(node_id),
            class_type=node_type,
            inputs=inputs,
            title=title if isinstance(title, str) and title and title != node_type else None,
            mode=mode,
            outputs=list(definition.outputs) if definition else [],
        )

    def _resolve_source(self, link_id: int) -> tuple[int, int] | None:
        """Follow a link to its producer, passing through reroute nodes."""
        seen: set[int] = set()
        while len(seen) < MAX_REROUTE_HOPS:
            link = self.links.get(link_id)
            if link is None or link_id in seen:
                return None
            seen.add(link_id)

            source = self.raw_nodes.get(link.source_node_id)
            if source is None:
                return None
            if self._node_type(source) not in REROUTE_NODE_TYPES:
                return link.source_node_id, link.source_slot

            upstream = None
            for slot in source.get("inputs") or []:
                if isinstance(slot, dict):
                    upstream = _as_int(slot.get("link"), -1)
                    break
            if upstream is None or upstream < 0:
                return None
            link_id = upstream
        return None

    def _convert_groups(self, graph: WorkflowGraph) -> list[WorkflowGroup]:
        groups = []
        raw_groups = self.data.get("groups")
        if not isinstance(raw_groups, list):
            return groups

        for index, raw in enumerate(raw_groups):
            if not isinstance(raw, dict):
                continue
            bounding = raw.get("bounding")
            if not isinstance(bounding, list) or len(bounding) < 4:
                continue
            try:
                gx, gy, gw, gh = (float(v) for v in bounding[:4])
            except (TypeError, ValueError):
                continue

            members = [
                node_id
                for node_id, (x, y) in self.positions.items()
                if gx <= x <= gx + gw and gy <= y <= gy + gh
            ]
            if not members:
                continue

            title = raw.get("title")
            group_id = raw.get("id")
            groups.append(
                WorkflowGroup(
                    id=group_id if isinstance(group_id, (int, str)) else index + 1,
                    title=title if isinstance(title, str) and title else "Group",
                    member_node_ids=members,
                )
            )
        return groups


def import_layout(
    source: str | dict[str, Any], schema: NodeTypeSchema | None = None
) -> ImportResult:
    """
    Convert a layout-format workflow to the canonical graph.

    Missing links, groups or widget arrays degrade to empty results. Only a
    document that is not a JSON object aborts the import.

    Raises:
        WorkflowParseError: If the text is not a JSON object
    """
    data = load_json_document(source)
    schema = schema if schema is not None else NodeTypeSchema.empty()

    with log_timing(logger, "layout_import"):
        result = _LayoutImporter(data, schema).run()

    logger.info(
        f"Imported layout workflow: {len(result.graph)} nodes, "
        f"{len(result.graph.groups)} groups, {len(result.graph.notes)} notes",
        extra={"warning_count": len(result.warnings)},
    )
    return result
