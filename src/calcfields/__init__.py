"""Calculated fields.

Turns natural-language metric requests into validated, versioned calculated
fields and folds them into a governed semantic view.

Example:
    from calcfields import FieldsContext

    async with FieldsContext(with_generator=True) as ctx:
        result = await ctx.coordinator.request_field(
            "credit", "multiply LTM EBITDA by Total Leverage", requested_by="analyst"
        )
"""

__version__ = "0.1.0"

from calcfields.context import FieldsContext
from calcfields.core.models.base import Result

__all__ = [
    "FieldsContext",
    "Result",
    "__version__",
]
