"""
Comfy Compiler - Workflow Compiler
===================================

Entry point tying the passes together for the two moments a workflow is
touched:

Editor time:
- Import a layout or canonical document into the canonical graph
- Detect the workflow category and map semantic fields onto node inputs
- Write placeholders into the mapped inputs to get a reusable template

Submission time:
- Substitute placeholders, set the seed, apply attribute overrides
- Inject modifier (LoRA) chains
- Resolve bypassed nodes last, then hash the result

Usage:
    from comfy_compiler.workflows import WorkflowCompiler
    from comfy_compiler.schema import NodeTypeSchema

    compiler = WorkflowCompiler(NodeTypeSchema.from_object_info(object_info))
    imported = compiler.import_workflow(text)
    compiled = compiler.prepare(imported.graph, values={"positive_prompt": "a red fox"})
    print(compiled.content, compiled.warnings)
"""

import hashlib
import json
import time
from dataclasses import dataclass, field
from typing import Any

from .bypass import BypassResult, resolve_bypassed
from .chains import (
    ModifierSelection,
    NoisePath,
    NoisePathClassifier,
    extend_modifier_chain,
    inject_modifier_chain,
)
from .exceptions import Result, WorkflowValidationError
from .graph import WorkflowGraph, load_json_document, parse_workflow, workflow_to_dict
from .layout import ImportResult, import_layout, is_layout_document
from .logging_config import get_logger, log_timing
from .mapping import WorkflowMappingState, analyze_field_mappings, apply_field_mappings
from .schema import NodeTypeSchema, get_schema_cache
from .substitution import apply_overrides, apply_seed, random_seed, substitute_placeholders
from .templates import WorkflowCategory, detect_category
from .validation import (
    PrepareRequest,
    ensure_valid,
    validate_against_schema,
    validate_graph_structure,
    validate_template,
)

logger = get_logger(__name__)

__all__ = [
    "CompiledWorkflow",
    "compute_workflow_hash",
    "WorkflowCompiler",
    "get_compiler",
    "prepare_workflow",
]


# =============================================================================
# DATA CLASSES
# =============================================================================


def compute_workflow_hash(workflow: dict[str, Any]) -> str:
    """
    Compute a deterministic hash for a workflow.

    Used for change detection and caching.
    """
    serialized = json.dumps(workflow, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(serialized.encode()).hexdigest()[:16]


@dataclass
class CompiledWorkflow:
    """A workflow ready for submission."""

    workflow: dict[str, Any]
    graph: WorkflowGraph | None = None
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    workflow_hash: str = ""
    compiled_at: float = field(default_factory=time.time)

    def __post_init__(self):
        if not self.workflow_hash and self.workflow:
            self.workflow_hash = compute_workflow_hash(self.workflow)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def content(self) -> str:
        """Pretty-printed canonical JSON."""
        return json.dumps(self.workflow, indent=2, ensure_ascii=False)

    @property
    def prompt(self) -> dict[str, Any]:
        """The bare node map, as the server's prompt endpoint expects it."""
        nodes = self.workflow.get("nodes")
        if isinstance(nodes, dict):
            return nodes
        if self.graph is not None:
            return {k: v for k, v in self.workflow.items() if k in self.graph.nodes}
        return self.workflow


# =============================================================================
# COMPILER
# =============================================================================


class WorkflowCompiler:
    """
    Stateless facade over the compiler passes.

    Holds one schema snapshot for its lifetime; build a new compiler after
    the server schema changes.
    """

    def __init__(self, schema: NodeTypeSchema | None = None):
        self.schema = schema if schema is not None else get_schema_cache().snapshot()

    # -------------------------------------------------------------------------
    # Editor time
    # -------------------------------------------------------------------------

    def import_workflow(self, source: str | dict[str, Any]) -> ImportResult:
        """
        Import a layout-format or canonical document.

        Raises:
            WorkflowParseError: If the input is not a JSON object
        """
        data = load_json_document(source)
        if is_layout_document(data):
            return import_layout(data, self.schema)
        return ImportResult(graph=parse_workflow(data, self.schema))

    def try_import(self, source: str | dict[str, Any]) -> Result:
        """import_workflow() wrapped in a Result instead of raising."""
        return Result.from_exception(self.import_workflow, source)

    def detect_category(self, graph: WorkflowGraph) -> WorkflowCategory | None:
        return detect_category(graph.class_types())

    def analyze_fields(
        self, graph: WorkflowGraph, category: WorkflowCategory | None = None
    ) -> WorkflowMappingState:
        """
        Map semantic fields for ``category`` (detected if not given).

        Raises:
            WorkflowValidationError: If no category is given and none can be detected
        """
        category = category or self.detect_category(graph)
        if category is None:
            raise WorkflowValidationError(
                "Could not determine the workflow type",
                errors=["No model loader, image input or video output node found"],
            )
        return analyze_field_mappings(graph, category, self.schema)

    def create_template(
        self, graph: WorkflowGraph, mapping: WorkflowMappingState | dict[str, tuple[str, str]]
    ) -> WorkflowGraph:
        """Write placeholders into the mapped inputs."""
        return apply_field_mappings(graph, mapping)

    def validate(
        self, graph: WorkflowGraph, category: WorkflowCategory | None = None
    ) -> list[str]:
        """All validation errors for a graph (and its template placeholders)."""
        errors = validate_graph_structure(graph, self.schema)
        if len(self.schema):
            errors.extend(validate_against_schema(graph, self.schema))
        if category is not None:
            errors.extend(validate_template(graph, category))
        return errors

    # -------------------------------------------------------------------------
    # Submission time
    # -------------------------------------------------------------------------

    def inject_chain(
        self, graph: WorkflowGraph, chain: list[ModifierSelection]
    ) -> WorkflowGraph:
        return inject_modifier_chain(graph, chain)

    def extend_chain(
        self,
        graph: WorkflowGraph,
        chain: list[ModifierSelection],
        noise_path: NoisePath,
        classifier: NoisePathClassifier | None = None,
    ) -> WorkflowGraph:
        return extend_modifier_chain(graph, chain, noise_path, classifier)

    def resolve_bypass(self, graph: WorkflowGraph) -> BypassResult:
        return resolve_bypassed(graph)

    def prepare(
        self,
        workflow: WorkflowGraph | str | dict[str, Any],
        request: PrepareRequest | None = None,
        *,
        strict: bool = False,
        classifier: NoisePathClassifier | None = None,
        **params: Any,
    ) -> CompiledWorkflow:
        """
        Turn a template into a submittable workflow.

        Args:
            workflow: Canonical graph, or canonical JSON text/object
            request: Submission parameters; keyword params build one if omitted
            strict: Raise WorkflowValidationError on structural errors
            classifier: Noise-path convention for high/low-noise chains

        Raises:
            WorkflowParseError: If text input is not a JSON object
            WorkflowValidationError: In strict mode, if the result is invalid
        """
        if request is None:
            request = PrepareRequest(**params)
        graph = workflow if isinstance(workflow, WorkflowGraph) else parse_workflow(workflow)

        with log_timing(logger, "prepare_workflow", node_count=len(graph)):
            substitution = substitute_placeholders(graph, request.values)
            prepared = substitution.graph
            warnings = list(substitution.warnings)

            seed = request.seed
            if seed is None and request.randomize_seed:
                seed = random_seed()
            if seed is not None:
                prepared = apply_seed(prepared, seed)

            prepared = apply_overrides(prepared, request.overrides)

            prepared = inject_modifier_chain(prepared, request.modifier_chain)
            prepared = extend_modifier_chain(
                prepared, request.high_noise_chain, NoisePath.HIGH, classifier
            )
            prepared = extend_modifier_chain(
                prepared, request.low_noise_chain, NoisePath.LOW, classifier
            )

            bypass = resolve_bypassed(prepared)
            warnings.extend(bypass.warnings)
            prepared = bypass.graph

        errors = validate_graph_structure(prepared, self.schema)
        if strict:
            ensure_valid(errors, "Prepared workflow is invalid")

        compiled = CompiledWorkflow(
            workflow=workflow_to_dict(prepared),
            graph=prepared,
            warnings=warnings,
            errors=errors,
        )
        logger.info(
            f"Prepared workflow {compiled.workflow_hash}: {len(prepared)} nodes",
            extra={"warning_count": len(warnings), "error_count": len(errors)},
        )
        return compiled


# Global compiler bound to the cached schema snapshot
_compiler: WorkflowCompiler | None = None
_compiler_generation: int = -1


def get_compiler() -> WorkflowCompiler:
    """Get a compiler for the current schema snapshot (rebuilt when the cache changes)."""
    global _compiler, _compiler_generation
    cache = get_schema_cache()
    if _compiler is None or _compiler_generation != cache.generation:
        _compiler = WorkflowCompiler(cache.snapshot())
        _compiler_generation = cache.generation
    return _compiler


def prepare_workflow(workflow: WorkflowGraph | str | dict[str, Any], **params: Any) -> CompiledWorkflow:
    """
    Convenience function to prepare a workflow with the global compiler.

    Example:
        compiled = prepare_workflow(template_text, values={"positive_prompt": "a cat"}, seed=7)
    """
    return get_compiler().prepare(workflow, **params)
