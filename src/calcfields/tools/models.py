"""Tool descriptor models.

Descriptors are what the orchestration layer sees: a name, a description
and the input/output contract of something it can call. Calculated fields
are never descriptors of their own; they are listed by name for
discoverability and consumed through the semantic view.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ToolKind(str, Enum):
    FUNCTION = "function"  # operator-registered pre-built function / UDF
    PIPELINE = "pipeline"  # built into the field pipeline


class ToolDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    input_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
    output_type: str = "string"
    kind: ToolKind = ToolKind.FUNCTION


class ToolDescriptorSet(BaseModel):
    """Everything exported for one scope.

    Attributes:
        calculated_fields: Names of the active calculated fields in the
            published view, for discoverability only
        generation_version: Generation of the view the set was refreshed
            from; None before the first publish
    """

    model_config = ConfigDict(frozen=True)

    scope_id: str
    tools: tuple[ToolDescriptor, ...] = ()
    calculated_fields: tuple[str, ...] = ()
    generation_version: int | None = None

    @property
    def tool_names(self) -> list[str]:
        return [t.name for t in self.tools]

    def get(self, name: str) -> ToolDescriptor | None:
        return next((t for t in self.tools if t.name == name), None)
