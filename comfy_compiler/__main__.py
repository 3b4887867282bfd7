"""
Comfy Compiler - CLI Entry Point
Run with: python -m comfy_compiler
"""

import argparse
import json
import sys
from pathlib import Path


def _read(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text(encoding="utf-8")


def _write(text: str, path: str | None):
    if path:
        Path(path).write_text(text + "\n", encoding="utf-8")
    else:
        print(text)


def _report(warnings: list[str]):
    for warning in warnings:
        print(f"warning: {warning}", file=sys.stderr)


def _build_compiler(args):
    from .schema import NodeTypeSchema
    from .workflows import WorkflowCompiler

    if args.schema:
        return WorkflowCompiler(NodeTypeSchema.from_object_info(_read(args.schema)))
    return WorkflowCompiler(NodeTypeSchema.empty())


def _parse_modifier(spec: str) -> dict:
    """``name`` or ``name:strength``."""
    name, sep, strength = spec.rpartition(":")
    if not sep:
        return {"name": spec}
    try:
        return {"name": name, "strength": float(strength)}
    except ValueError:
        return {"name": spec}


def cmd_convert(args) -> int:
    compiler = _build_compiler(args)
    result = compiler.import_workflow(_read(args.input))
    _report(result.warnings)
    _write(result.content, args.output)
    return 0


def cmd_bypass(args) -> int:
    from .graph import parse_workflow, serialize_workflow

    compiler = _build_compiler(args)
    result = compiler.resolve_bypass(parse_workflow(_read(args.input), compiler.schema))
    _report(result.warnings)
    _write(serialize_workflow(result.graph), args.output)
    return 0


def cmd_analyze(args) -> int:
    from .templates import WorkflowCategory

    compiler = _build_compiler(args)
    imported = compiler.import_workflow(_read(args.input))
    _report(imported.warnings)
    category = WorkflowCategory(args.category) if args.category else None
    state = compiler.analyze_fields(imported.graph, category)
    _write(state.to_json(), args.output)
    for required in state.unmapped_fields:
        print(f"unmapped: {required.field_key}", file=sys.stderr)
    return 0


def cmd_prepare(args) -> int:
    compiler = _build_compiler(args)
    imported = compiler.import_workflow(_read(args.input))
    values = json.loads(args.values) if args.values else {}
    compiled = compiler.prepare(
        imported.graph,
        values=values,
        seed=args.seed,
        randomize_seed=args.random_seed,
        modifier_chain=[_parse_modifier(m) for m in args.lora],
        strict=args.strict,
    )
    _report(imported.warnings + compiled.warnings)
    for error in compiled.errors:
        print(f"error: {error}", file=sys.stderr)
    _write(compiled.content, args.output)
    return 0 if compiled.is_valid else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="comfy-compiler", description="Comfy Compiler - ComfyUI workflow graph compiler"
    )
    parser.add_argument("--version", "-v", action="store_true", help="Show version and exit")
    parser.add_argument("--log-level", default=None, help="Override the log level")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("input", help="Workflow JSON file ('-' for stdin)")
    common.add_argument("--output", "-o", default=None, help="Write output here instead of stdout")
    common.add_argument("--schema", "-s", default=None, help="object_info JSON from the server")

    sub = parser.add_subparsers(dest="command")

    convert = sub.add_parser("convert", parents=[common], help="Convert to canonical format")
    convert.set_defaults(func=cmd_convert)

    bypass = sub.add_parser("bypass", parents=[common], help="Resolve bypassed nodes")
    bypass.set_defaults(func=cmd_bypass)

    analyze = sub.add_parser("analyze", parents=[common], help="Map semantic fields")
    analyze.add_argument("--category", "-c", default=None, help="tti, iti_inpainting, ...")
    analyze.set_defaults(func=cmd_analyze)

    prepare = sub.add_parser("prepare", parents=[common], help="Prepare for submission")
    prepare.add_argument("--values", default=None, help="JSON object of placeholder values")
    prepare.add_argument("--seed", type=int, default=None)
    prepare.add_argument("--random-seed", action="store_true")
    prepare.add_argument(
        "--lora", action="append", default=[], help="name[:strength], repeatable"
    )
    prepare.add_argument("--strict", action="store_true", help="Fail on structural errors")
    prepare.set_defaults(func=cmd_prepare)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        from . import __version__

        print(f"comfy-compiler v{__version__}")
        return 0

    if not getattr(args, "func", None):
        parser.print_help()
        return 2

    from .exceptions import ComfyCompilerError, collect_suggestions, format_error_for_user
    from .logging_config import set_log_level

    if args.log_level:
        set_log_level(args.log_level)

    try:
        return args.func(args)
    except ComfyCompilerError as e:
        print(f"Error: {format_error_for_user(e)}", file=sys.stderr)
        for suggestion in collect_suggestions(e):
            print(f"  - {suggestion}", file=sys.stderr)
        return 1
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
