"""Exceptions raised by the content mapper."""


class ContentMapperError(Exception):
    """Base class for content mapper errors."""


class NotFound(ContentMapperError):
    """The requested record does not exist in the store."""


class UnregisteredType(ContentMapperError):
    """No schema is registered for an entity type."""

    def __init__(self, entity_type: str) -> None:
        super().__init__(f"No schema registered for entity type: {entity_type}")
        self.entity_type = entity_type


class SchemaError(ContentMapperError):
    """A schema declaration is invalid."""


class StoreError(ContentMapperError):
    """A gateway call was rejected by the underlying store."""


class EmptyEntity(ContentMapperError):
    """Save was attempted on an entity with no attributes set."""


class SaveError(ContentMapperError):
    """The core record write was rejected; no meta or term writes happened."""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.cause = cause
