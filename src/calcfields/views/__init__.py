"""Semantic view regeneration and publication."""

from calcfields.views.export import dump_json, dump_yaml, view_to_dict, write_view
from calcfields.views.models import SemanticViewDefinition, ViewCalculatedField, ViewColumn
from calcfields.views.regeneration import (
    RegenerationEngine,
    RegenerationFailure,
    RegenerationFailureKind,
    fold_view,
)
from calcfields.views.registry import ViewRegistry

__all__ = [
    "dump_json",
    "dump_yaml",
    "view_to_dict",
    "write_view",
    "SemanticViewDefinition",
    "ViewCalculatedField",
    "ViewColumn",
    "RegenerationEngine",
    "RegenerationFailure",
    "RegenerationFailureKind",
    "fold_view",
    "ViewRegistry",
]
