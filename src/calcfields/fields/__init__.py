"""Calculated field definitions and the versioned metadata store."""

from calcfields.fields.models import (
    AttemptOutcome,
    CalculatedFieldDefinition,
    ConflictKind,
    FieldAttempt,
    FieldStatus,
    InvalidTransitionError,
    Persisted,
    PersistenceConflict,
    StoreSnapshot,
)
from calcfields.fields.store import MetadataStore, PutOutcome

__all__ = [
    "AttemptOutcome",
    "CalculatedFieldDefinition",
    "ConflictKind",
    "FieldAttempt",
    "FieldStatus",
    "InvalidTransitionError",
    "Persisted",
    "PersistenceConflict",
    "StoreSnapshot",
    "MetadataStore",
    "PutOutcome",
]
