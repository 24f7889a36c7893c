"""Publication point for semantic views.

Publishing replaces the scope's entry with a new frozen view in a single
reference assignment, so readers always get a complete view, either the
current or the previous generation. When regenerations race, the one that
finishes last wins, unless it was folded from an older catalog or store
state than the view already published."""

from __future__ import annotations

from collections.abc import Callable

from calcfields.core.logging import get_logger
from calcfields.views.models import SemanticViewDefinition

logger = get_logger(__name__)

ViewListener = Callable[[SemanticViewDefinition], None]


def _state(view: SemanticViewDefinition) -> tuple[int, int]:
    return (view.catalog_version, view.store_revision)


class ViewRegistry:
    """Holds the published view of every scope."""

    def __init__(self) -> None:
        self._current: dict[str, SemanticViewDefinition] = {}
        self._previous: dict[str, SemanticViewDefinition] = {}
        self._listeners: list[ViewListener] = []

    def add_listener(self, listener: ViewListener) -> None:
        """Call ``listener`` with every newly published view."""
        self._listeners.append(listener)

    def publish(self, view: SemanticViewDefinition) -> SemanticViewDefinition:
        """Publish a view and return the view that is current afterwards.

        A view folded from an older catalog or store state than the current
        one is dropped, and the current view is returned instead. Views of
        the same state replace each other.
        """
        current = self._current.get(view.scope_id)
        if current is not None and _state(view) < _state(current):
            logger.info(
                "stale_view_skipped",
                scope_id=view.scope_id,
                store_revision=view.store_revision,
                current_store_revision=current.store_revision,
                catalog_version=view.catalog_version,
                current_catalog_version=current.catalog_version,
            )
            return current

        if current is not None:
            self._previous[view.scope_id] = current
        self._current[view.scope_id] = view

        logger.info(
            "view_published",
            scope_id=view.scope_id,
            generation_version=view.generation_version,
            store_revision=view.store_revision,
            fields=len(view.calculated_fields),
        )
        for listener in self._listeners:
            listener(view)
        return view

    def current(self, scope_id: str) -> SemanticViewDefinition | None:
        return self._current.get(scope_id)

    def previous(self, scope_id: str) -> SemanticViewDefinition | None:
        return self._previous.get(scope_id)

    def scopes(self) -> list[str]:
        return sorted(self._current)

    def live_field_names(self, scope_id: str) -> set[str]:
        """Field names referenced by any servable generation of a scope."""
        names: set[str] = set()
        for view in (self._current.get(scope_id), self._previous.get(scope_id)):
            if view is not None:
                names.update(view.field_names)
        return names
