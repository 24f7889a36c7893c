"""Tool registration exporter.

Publishes, per scope, the operator-registered pre-built functions plus the
two pipeline tools (``request_calculated_field`` and ``get_semantic_view``).
The list of active calculated-field names is refreshed from every newly
published view; register the exporter as a ViewRegistry listener:

    exporter = ToolRegistrationExporter(Path("config/tools"))
    registry.add_listener(exporter.refresh)

Pre-built functions are read from ``<tools_dir>/<scope>.yaml``:

    functions:
      - name: irr
        description: Internal rate of return of a cash-flow series
        input_schema:
          type: object
          properties:
            cash_flows: {type: array, items: {type: number}}
          required: [cash_flows]
        output_type: NUMBER
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from calcfields.core.logging import get_logger
from calcfields.tools.models import ToolDescriptor, ToolDescriptorSet, ToolKind
from calcfields.views.models import SemanticViewDefinition

logger = get_logger(__name__)

REQUEST_TOOL = "request_calculated_field"
VIEW_TOOL = "get_semantic_view"
RESERVED_NAMES = frozenset({REQUEST_TOOL, VIEW_TOOL})


def _field_list(names: tuple[str, ...]) -> str:
    if not names:
        return "No calculated fields are defined yet."
    return "Calculated fields: " + ", ".join(names) + "."


def _pipeline_tools(field_names: tuple[str, ...]) -> tuple[ToolDescriptor, ...]:
    fields_line = _field_list(field_names)
    return (
        ToolDescriptor(
            name=REQUEST_TOOL,
            description=(
                "Define a new calculated field from a natural-language description. "
                "The expression is validated against the column catalog before it is "
                "saved; once saved the field is available in the semantic view. "
                + fields_line
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "request": {
                        "type": "string",
                        "description": (
                            "What to calculate, e.g. 'multiply LTM EBITDA by Total Leverage'"
                        ),
                    },
                    "requested_by": {
                        "type": "string",
                        "description": "Identity of the requesting user or agent",
                    },
                },
                "required": ["request"],
            },
            output_type="FieldRequestResult",
            kind=ToolKind.PIPELINE,
        ),
        ToolDescriptor(
            name=VIEW_TOOL,
            description=(
                "Get the semantic view: dimensions, measures and calculated fields with "
                "their expressions and types. Query calculated fields through this view. "
                + fields_line
            ),
            output_type="SemanticViewDefinition",
            kind=ToolKind.PIPELINE,
        ),
    )


def _descriptor_from_dict(data: dict[str, Any]) -> ToolDescriptor:
    kwargs: dict[str, Any] = {
        "name": data["name"],
        "description": data.get("description", ""),
        "output_type": str(data.get("output_type", "string")),
        "kind": ToolKind.FUNCTION,
    }
    if data.get("input_schema"):
        kwargs["input_schema"] = data["input_schema"]
    return ToolDescriptor(**kwargs)


class ToolRegistrationExporter:
    """Builds the tool descriptor set of each scope."""

    def __init__(self, tools_dir: Path | None = None):
        self.tools_dir = tools_dir
        self._functions: dict[str, dict[str, ToolDescriptor]] = {}
        self._loaded: set[str] = set()
        self._fields: dict[str, tuple[str, ...]] = {}
        self._generations: dict[str, int] = {}

    def register_function(self, scope_id: str, descriptor: ToolDescriptor) -> None:
        """Register a pre-built function for a scope.

        Raises:
            ValueError: If the name is taken by a pipeline tool
        """
        if descriptor.name in RESERVED_NAMES:
            raise ValueError(f"'{descriptor.name}' is a reserved tool name")
        self._ensure_loaded(scope_id)
        self._functions[scope_id][descriptor.name] = descriptor.model_copy(
            update={"kind": ToolKind.FUNCTION}
        )
        logger.info("function_registered", scope_id=scope_id, name=descriptor.name)

    def refresh(self, view: SemanticViewDefinition) -> None:
        """Pick up the calculated fields of a newly published view."""
        self._fields[view.scope_id] = tuple(view.field_names)
        self._generations[view.scope_id] = view.generation_version
        logger.debug(
            "tool_descriptors_refreshed",
            scope_id=view.scope_id,
            generation_version=view.generation_version,
            fields=len(view.field_names),
        )

    def export(self, scope_id: str) -> ToolDescriptorSet:
        self._ensure_loaded(scope_id)
        field_names = self._fields.get(scope_id, ())
        functions = tuple(
            self._functions[scope_id][name] for name in sorted(self._functions[scope_id])
        )
        return ToolDescriptorSet(
            scope_id=scope_id,
            tools=functions + _pipeline_tools(field_names),
            calculated_fields=field_names,
            generation_version=self._generations.get(scope_id),
        )

    def _ensure_loaded(self, scope_id: str) -> None:
        if scope_id in self._loaded:
            return
        self._loaded.add(scope_id)
        registered = self._functions.setdefault(scope_id, {})

        if self.tools_dir is None:
            return
        path = self.tools_dir / f"{scope_id}.yaml"
        if not path.exists():
            return

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        for entry in data.get("functions", []):
            descriptor = _descriptor_from_dict(entry)
            if descriptor.name in RESERVED_NAMES:
                raise ValueError(f"{path}: '{descriptor.name}' is a reserved tool name")
            registered[descriptor.name] = descriptor
        logger.debug("functions_loaded", scope_id=scope_id, count=len(registered))
