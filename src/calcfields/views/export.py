"""Serialization of semantic views.

The view artifact is written as YAML (the format downstream semantic-layer
tooling reads) or JSON.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from calcfields.views.models import SemanticViewDefinition


def view_to_dict(view: SemanticViewDefinition) -> dict[str, Any]:
    """Plain-data form of a view, stable key order."""

    def column(c: Any) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": c.name,
            "display_name": c.display_name,
            "data_type": c.data_type.value,
        }
        if c.synonyms:
            data["synonyms"] = list(c.synonyms)
        return data

    return {
        "name": view.scope_id,
        "relation": view.relation,
        "generation_version": view.generation_version,
        "catalog_version": view.catalog_version,
        "store_revision": view.store_revision,
        "generated_at": view.generated_at.isoformat(),
        "dimensions": [column(c) for c in view.dimensions],
        "measures": [column(c) for c in view.measures],
        "calculated_fields": [
            {
                "name": f.name,
                "display_name": f.display_name,
                "expr": f.expression,
                "data_type": f.result_type.value,
                "role": f.role.value,
                "version": f.version,
                "referenced_columns": list(f.referenced_columns),
                **({"description": f.description} if f.description else {}),
            }
            for f in view.calculated_fields
        ],
    }


def dump_yaml(view: SemanticViewDefinition) -> str:
    return yaml.safe_dump(view_to_dict(view), sort_keys=False, allow_unicode=True)


def dump_json(view: SemanticViewDefinition) -> str:
    return json.dumps(view_to_dict(view), indent=2)


def write_view(view: SemanticViewDefinition, path: Path) -> Path:
    """Write a view to ``path``; the suffix picks YAML or JSON."""
    if path.suffix.lower() == ".json":
        text = dump_json(view)
    elif path.suffix.lower() in (".yaml", ".yml"):
        text = dump_yaml(view)
    else:
        raise ValueError(f"Unsupported view format: {path.suffix or '(none)'}")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path
