"""Persistent processing state."""

from mailwarden.storage.database import (
    CrossAccountMoveRecord,
    IdempotencyStore,
    ProcessedRecord,
)

__all__ = [
    "CrossAccountMoveRecord",
    "IdempotencyStore",
    "ProcessedRecord",
]
