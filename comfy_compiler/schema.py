"""
Comfy Compiler - Node Type Schema
==================================

Read-only lookup from node class type to its ordered input definitions and
output types, built from the server's ``/object_info`` document.

Features:
- Required inputs first, then optional, in server order
- COMBO and option-list inputs normalized to the ENUM type
- Connection-only detection (typed ports and forceInput widgets)
- Immutable snapshots swapped atomically by SchemaCache

Usage:
    from comfy_compiler.schema import NodeTypeSchema, get_schema_cache

    schema = NodeTypeSchema.from_object_info(object_info)
    get_schema_cache().replace(schema)

    schema.input_type("KSampler", "model")  # "MODEL"
"""

import json
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from .exceptions import SchemaError
from .logging_config import get_logger

logger = get_logger(__name__)

__all__ = [
    "CONNECTION_TYPES",
    "ENUM_TYPE",
    "InputDefinition",
    "OutputDefinition",
    "NodeTypeDefinition",
    "NodeTypeSchema",
    "SchemaCache",
    "get_schema_cache",
]

# Port types that can only be satisfied by a link, never by a widget value
CONNECTION_TYPES = frozenset(
    {
        "MODEL",
        "CLIP",
        "VAE",
        "CONDITIONING",
        "LATENT",
        "IMAGE",
        "MASK",
        "CONTROL_NET",
        "STYLE_MODEL",
        "CLIP_VISION",
        "CLIP_VISION_OUTPUT",
        "GLIGEN",
        "UPSCALE_MODEL",
        "SAMPLER",
        "SIGMAS",
        "NOISE",
        "GUIDER",
        "*",
    }
)

ENUM_TYPE = "ENUM"


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass(frozen=True)
class InputDefinition:
    """A single declared input of a node class."""

    name: str
    type: str
    required: bool = True
    default: Any = None
    min: float | None = None
    max: float | None = None
    step: float | None = None
    options: tuple = ()
    multiline: bool = False
    force_input: bool = False
    tooltip: str | None = None

    @property
    def is_connection_only(self) -> bool:
        """True if this input can only be fed by a link."""
        return self.force_input or self.type.upper() in CONNECTION_TYPES

    @property
    def is_widget(self) -> bool:
        return not self.is_connection_only


@dataclass(frozen=True)
class OutputDefinition:
    name: str
    type: str


@dataclass(frozen=True)
class NodeTypeDefinition:
    """Inputs and outputs declared for one class type."""

    class_type: str
    inputs: tuple[InputDefinition, ...] = ()
    outputs: tuple[OutputDefinition, ...] = ()
    category: str | None = None
    display_name: str | None = None

    def get_input(self, name: str) -> InputDefinition | None:
        for definition in self.inputs:
            if definition.name == name:
                return definition
        return None

    @property
    def widget_inputs(self) -> list[InputDefinition]:
        """Inputs that are populated from widget values, in declaration order."""
        return [d for d in self.inputs if d.is_widget]

    @property
    def output_types(self) -> list[str]:
        return [o.type for o in self.outputs]


# =============================================================================
# SCHEMA SNAPSHOT
# =============================================================================


def _parse_input_spec(name: str, spec: Any, required: bool) -> InputDefinition | None:
    """Parse one ``[type_or_options, {options}]`` entry from object_info."""
    if not isinstance(spec, list) or not spec:
        return None

    head = spec[0]
    opts = spec[1] if len(spec) > 1 and isinstance(spec[1], dict) else {}
    options: tuple = ()

    if isinstance(head, list):
        input_type = ENUM_TYPE
        options = tuple(head)
    elif isinstance(head, str):
        if head == "COMBO":
            input_type = ENUM_TYPE
            options = tuple(opts.get("options") or ())
        else:
            input_type = head
    else:
        return None

    return InputDefinition(
        name=name,
        type=input_type,
        required=required,
        default=opts.get("default"),
        min=opts.get("min"),
        max=opts.get("max"),
        step=opts.get("step"),
        options=options,
        multiline=bool(opts.get("multiline", False)),
        force_input=bool(opts.get("forceInput", False)),
        tooltip=opts.get("tooltip"),
    )


def _parse_node_definition(class_type: str, info: Any) -> NodeTypeDefinition | None:
    if not isinstance(info, dict):
        return None

    inputs: list[InputDefinition] = []
    input_block = info.get("input")
    if isinstance(input_block, dict):
        for section, required in (("required", True), ("optional", False)):
            specs = input_block.get(section)
            if not isinstance(specs, dict):
                continue
            for name, spec in specs.items():
                definition = _parse_input_spec(name, spec, required)
                if definition is not None:
                    inputs.append(definition)

    output_types = info.get("output")
    output_names = info.get("output_name")
    outputs: list[OutputDefinition] = []
    if isinstance(output_types, list):
        for index, raw_type in enumerate(output_types):
            # Output types may themselves be option lists (enum passthrough)
            out_type = raw_type if isinstance(raw_type, str) else ENUM_TYPE
            out_name = out_type
            if isinstance(output_names, list) and index < len(output_names):
                if isinstance(output_names[index], str):
                    out_name = output_names[index]
            outputs.append(OutputDefinition(name=out_name, type=out_type))

    return NodeTypeDefinition(
        class_type=class_type,
        inputs=tuple(inputs),
        outputs=tuple(outputs),
        category=info.get("category"),
        display_name=info.get("display_name"),
    )


class NodeTypeSchema:
    """
    Immutable snapshot of node class definitions.

    Lookups for unknown class types return None rather than raising, so
    callers degrade to warnings when the server does not know a node.
    """

    def __init__(self, definitions: Mapping[str, NodeTypeDefinition] | None = None):
        self._definitions = MappingProxyType(dict(definitions or {}))

    @classmethod
    def from_object_info(cls, document: dict[str, Any] | str) -> "NodeTypeSchema":
        """
        Build a schema from an ``/object_info`` response.

        Raises:
            SchemaError: If the document is not a JSON object
        """
        if isinstance(document, str):
            try:
                document = json.loads(document)
            except json.JSONDecodeError as e:
                raise SchemaError(f"Schema document is not valid JSON: {e.msg}", cause=e) from e

        if not isinstance(document, dict):
            raise SchemaError(
                "Schema document must be an object keyed by class type",
                details={"type": type(document).__name__},
            )

        definitions: dict[str, NodeTypeDefinition] = {}
        skipped = 0
        for class_type, info in document.items():
            definition = _parse_node_definition(class_type, info)
            if definition is None:
                skipped += 1
                continue
            definitions[class_type] = definition

        logger.debug(
            f"Parsed node schema with {len(definitions)} class types",
            extra={"class_type_count": len(definitions), "skipped": skipped},
        )
        return cls(definitions)

    @classmethod
    def empty(cls) -> "NodeTypeSchema":
        return cls()

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, class_type: object) -> bool:
        return class_type in self._definitions

    @property
    def class_types(self) -> frozenset[str]:
        return frozenset(self._definitions)

    def has(self, class_type: str) -> bool:
        return class_type in self._definitions

    def get(self, class_type: str) -> NodeTypeDefinition | None:
        return self._definitions.get(class_type)

    def input_type(self, class_type: str, input_name: str) -> str | None:
        definition = self._definitions.get(class_type)
        if definition is None:
            return None
        input_def = definition.get_input(input_name)
        return input_def.type if input_def else None

    def output_type(self, class_type: str, output_index: int) -> str | None:
        definition = self._definitions.get(class_type)
        if definition is None or not 0 <= output_index < len(definition.outputs):
            return None
        return definition.outputs[output_index].type

    def options_for(self, class_type: str, input_name: str) -> list:
        """Enum options for an input, empty if none are declared."""
        definition = self._definitions.get(class_type)
        if definition is None:
            return []
        input_def = definition.get_input(input_name)
        return list(input_def.options) if input_def else []


# =============================================================================
# SCHEMA CACHE
# =============================================================================


@dataclass
class SchemaCache:
    """
    Holder for the current schema snapshot.

    Readers take ``snapshot()`` once and pass it down; ``replace()`` swaps the
    whole snapshot under a lock, so a reader sees either the old or the new
    schema in full.
    """

    _snapshot: NodeTypeSchema = field(default_factory=NodeTypeSchema.empty)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _generation: int = 0

    def snapshot(self) -> NodeTypeSchema:
        return self._snapshot

    @property
    def generation(self) -> int:
        """Incremented on every replace."""
        return self._generation

    def replace(self, schema: NodeTypeSchema) -> NodeTypeSchema:
        """Install a new snapshot and return the previous one."""
        with self._lock:
            previous = self._snapshot
            self._snapshot = schema
            self._generation += 1
        logger.info(
            f"Node schema replaced ({len(schema)} class types)",
            extra={"generation": self._generation},
        )
        return previous

    def load_object_info(self, document: dict[str, Any] | str) -> NodeTypeSchema:
        """Parse an object_info document and install it."""
        schema = NodeTypeSchema.from_object_info(document)
        self.replace(schema)
        return schema

    def clear(self):
        self.replace(NodeTypeSchema.empty())


_schema_cache = SchemaCache()


def get_schema_cache() -> SchemaCache:
    """Get the process-wide schema cache."""
    return _schema_cache
