"""Content mapper: declarative content entities over a core/meta/term store."""

from content_mapper.errors import (
    ContentMapperError,
    EmptyEntity,
    NotFound,
    SaveError,
    SchemaError,
    StoreError,
    UnregisteredType,
)
from content_mapper.models import Condition, Entity, Record, RevisionSnapshot, TermRef

__all__ = [
    "Condition",
    "ContentMapperError",
    "EmptyEntity",
    "Entity",
    "NotFound",
    "Record",
    "RevisionSnapshot",
    "SaveError",
    "SchemaError",
    "StoreError",
    "TermRef",
    "UnregisteredType",
]
