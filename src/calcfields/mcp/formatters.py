"""Formatters for LLM-optimized output.

These format pipeline artifacts for consumption by the orchestration layer
via MCP tools.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from calcfields.pipeline.coordinator import FieldRequestResult
    from calcfields.tools.models import ToolDescriptor
    from calcfields.views.models import SemanticViewDefinition


def format_view_for_llm(view: SemanticViewDefinition) -> str:
    """Format a semantic view for LLM consumption."""
    lines = [f"# Semantic View: {view.scope_id}"]
    lines.append(f"Relation: {view.relation} (generation {view.generation_version})")
    lines.append("")

    lines.append("## Dimensions")
    for c in view.dimensions:
        lines.append(f"- {c.name} ({c.data_type.value}): {c.display_name}")
    lines.append("")

    lines.append("## Measures")
    for c in view.measures:
        synonyms = f" [also: {', '.join(c.synonyms)}]" if c.synonyms else ""
        lines.append(f"- {c.name} ({c.data_type.value}): {c.display_name}{synonyms}")
    lines.append("")

    lines.append("## Calculated Fields")
    if not view.calculated_fields:
        lines.append("(none)")
    for f in view.calculated_fields:
        lines.append(f"- {f.name} ({f.result_type.value}, v{f.version}): {f.display_name}")
        lines.append(f"  = {f.expression}")
        if f.description:
            lines.append(f"  {f.description}")
    lines.append("")

    lines.append("---")
    lines.append("Query calculated fields by name through this view; they are not callable tools.")
    return "\n".join(lines)


def format_field_result(result: FieldRequestResult) -> str:
    """Format a pipeline result for LLM consumption."""
    lines = [f"# Field Request: {result.status.value.upper()}"]
    lines.append("")

    if result.success and result.definition is not None:
        d = result.definition
        lines.append(f"Field: {d.name} ({d.result_type.value}), version {d.version}")
        lines.append(f"Expression: {d.canonical_sql or d.expression_text}")
        if result.replayed:
            lines.append("This exact definition was already saved; nothing changed.")
        if result.view_published:
            lines.append(
                f"Available in the semantic view (generation {result.generation_version})."
            )
        for w in result.warnings:
            lines.append(f"Warning: {w}")
        return "\n".join(lines)

    if result.candidate is not None:
        lines.append(f"Proposed: {result.candidate.name} = {result.candidate.expression}")
    lines.append("## Errors")
    for message in result.error_messages:
        lines.append(f"- {message}")
    lines.append("")
    if result.retryable:
        lines.append("The failure was transient; the same request may succeed if retried.")
    else:
        lines.append("Rephrase the request or reference columns from the semantic view.")
    return "\n".join(lines)


def format_function_usage(descriptor: ToolDescriptor) -> str:
    """Describe how to use a pre-built engine function."""
    params = descriptor.input_schema.get("properties", {})
    signature = ", ".join(params)
    return (
        f"# {descriptor.name}({signature}) -> {descriptor.output_type}\n\n"
        f"{descriptor.description}\n\n"
        "This is an engine function: call it inside queries against the semantic view."
    )
