"""Tool descriptors exported to the orchestration layer."""

from calcfields.tools.exporter import REQUEST_TOOL, VIEW_TOOL, ToolRegistrationExporter
from calcfields.tools.models import ToolDescriptor, ToolDescriptorSet, ToolKind

__all__ = [
    "REQUEST_TOOL",
    "VIEW_TOOL",
    "ToolRegistrationExporter",
    "ToolDescriptor",
    "ToolDescriptorSet",
    "ToolKind",
]
