"""
Comfy Compiler - ComfyUI Workflow Graph Compiler
=================================================

Converts, repairs and parameterizes ComfyUI node graphs without a running
editor:

- Layout-format (editor) documents to canonical (API) format
- Bypassed-node resolution by type-matched pass-through
- LoRA chain injection between model loaders and their consumers
- Semantic field mapping and placeholder templates
- Submission-time substitution, seeding and attribute overrides

Installation:
    pip install comfy-compiler
    pip install comfy-compiler[test]    # + pytest

Usage:
    from comfy_compiler import WorkflowCompiler, NodeTypeSchema

    compiler = WorkflowCompiler(NodeTypeSchema.from_object_info(object_info))
    imported = compiler.import_workflow(layout_text)
    state = compiler.analyze_fields(imported.graph)
    template = compiler.create_template(imported.graph, state)

    compiled = compiler.prepare(
        template,
        values={"positive_prompt": "a lighthouse at dusk"},
        modifier_chain=[{"name": "detail.safetensors", "strength": 0.8}],
        seed=42,
    )
    print(compiled.content)
"""

# Configuration (import first - other modules depend on it)
from .config import (
    Settings,
    settings,
    get_settings,
    reload_settings,
)

# Exceptions (with verbosity levels)
from .exceptions import (
    ComfyCompilerError,
    WorkflowError,
    WorkflowParseError,
    WorkflowValidationError,
    SchemaError,
    ValidationError,
    InvalidParameterError,
    Result,
    ErrorLevel,
    VerbosityLevel,
    format_error_for_user,
    set_verbosity,
    get_verbosity,
)

# Logging
from .logging_config import (
    get_logger,
    set_log_level,
    set_request_id,
    clear_request_id,
    LogContext,
    log_timing,
)

# Node type schema
from .schema import (
    InputDefinition,
    OutputDefinition,
    NodeTypeDefinition,
    NodeTypeSchema,
    SchemaCache,
    get_schema_cache,
)

# Canonical graph model
from .graph import (
    NodeMode,
    Literal,
    Connection,
    UnconnectedSlot,
    WorkflowNode,
    WorkflowEdge,
    WorkflowGroup,
    WorkflowNote,
    WorkflowGraph,
    parse_workflow,
    workflow_to_dict,
    serialize_workflow,
)

# Compiler passes
from .compatibility import is_compatible, valid_input_targets, valid_output_sources
from .layout import ImportResult, import_layout, is_layout_document
from .bypass import BypassResult, resolve_bypassed, resolve_bypassed_text
from .chains import (
    ModifierSelection,
    NoisePath,
    StartStepClassifier,
    inject_modifier_chain,
    extend_modifier_chain,
)
from .templates import WorkflowCategory, detect_category
from .mapping import (
    FieldCandidate,
    FieldMappingState,
    WorkflowMappingState,
    analyze_field_mappings,
    apply_field_mappings,
)
from .substitution import substitute_placeholders, apply_overrides, apply_seed
from .validation import PrepareRequest, validate_graph_structure, validate_template

# Facade
from .workflows import (
    CompiledWorkflow,
    WorkflowCompiler,
    compute_workflow_hash,
    get_compiler,
    prepare_workflow,
)

__version__ = "1.0.0"

__all__ = [
    # Version
    "__version__",
    # Config
    "Settings",
    "settings",
    "get_settings",
    "reload_settings",
    # Exceptions
    "ComfyCompilerError",
    "WorkflowError",
    "WorkflowParseError",
    "WorkflowValidationError",
    "SchemaError",
    "ValidationError",
    "InvalidParameterError",
    "Result",
    "ErrorLevel",
    "VerbosityLevel",
    "format_error_for_user",
    "set_verbosity",
    "get_verbosity",
    # Logging
    "get_logger",
    "set_log_level",
    "set_request_id",
    "clear_request_id",
    "LogContext",
    "log_timing",
    # Schema
    "InputDefinition",
    "OutputDefinition",
    "NodeTypeDefinition",
    "NodeTypeSchema",
    "SchemaCache",
    "get_schema_cache",
    # Graph
    "NodeMode",
    "Literal",
    "Connection",
    "UnconnectedSlot",
    "WorkflowNode",
    "WorkflowEdge",
    "WorkflowGroup",
    "WorkflowNote",
    "WorkflowGraph",
    "parse_workflow",
    "workflow_to_dict",
    "serialize_workflow",
    # Passes
    "is_compatible",
    "valid_input_targets",
    "valid_output_sources",
    "ImportResult",
    "import_layout",
    "is_layout_document",
    "BypassResult",
    "resolve_bypassed",
    "resolve_bypassed_text",
    "ModifierSelection",
    "NoisePath",
    "StartStepClassifier",
    "inject_modifier_chain",
    "extend_modifier_chain",
    "WorkflowCategory",
    "detect_category",
    "FieldCandidate",
    "FieldMappingState",
    "WorkflowMappingState",
    "analyze_field_mappings",
    "apply_field_mappings",
    "substitute_placeholders",
    "apply_overrides",
    "apply_seed",
    "PrepareRequest",
    "validate_graph_structure",
    "validate_template",
    # Facade
    "CompiledWorkflow",
    "WorkflowCompiler",
    "compute_workflow_hash",
    "get_compiler",
    "prepare_workflow",
]
