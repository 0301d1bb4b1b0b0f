"""Persistence gateway interface for the content store."""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from content_mapper.models import COMPARE_OPERATORS, Record, TermRef

PUBLISHED = "publish"
TRASH = "trash"
# Status a trashed record had before it was trashed.
TRASH_STATUS_KEY = "_trash_meta_status"


@dataclass(frozen=True)
class CoreFilter:
    """Comparison against a column of the core record table."""

    key: str
    value: Any
    compare: str = "="


@dataclass(frozen=True)
class MetaFilter:
    """Comparison against a metadata value; ``numeric`` casts the stored text."""

    key: str
    value: Any
    compare: str = "="
    numeric: bool = False


@dataclass(frozen=True)
class TermFilter:
    """Match entities associated with any of ``terms`` in a taxonomy.

    ``field`` names the term attribute the terms are given as: ``slug``,
    ``name`` or ``term_id``.
    """

    taxonomy: str
    terms: tuple[Any, ...]
    field: str = "slug"


@dataclass(frozen=True)
class Order:
    """Sort specification; ``source`` is ``core`` or ``meta``."""

    key: str
    direction: str = "ASC"
    source: str = "core"
    numeric: bool = False

    def __post_init__(self) -> None:
        direction = self.direction.upper()
        if direction not in ("ASC", "DESC"):
            raise ValueError(f"Unsupported order direction: {self.direction}")
        object.__setattr__(self, "direction", direction)

    @property
    def descending(self) -> bool:
        return self.direction == "DESC"


def validate_compare(compare: str) -> str:
    compare = compare.strip().upper()
    if compare not in COMPARE_OPERATORS:
        raise ValueError(f"Unsupported compare operator: {compare}")
    return compare


class PersistenceGateway(ABC):
    """Abstract base class for content stores.

    Every call is an independent read or write; the gateway offers no
    transactions spanning calls.
    """

    @abstractmethod
    def get_record(self, record_id: int) -> Record:
        """Read a core record. Raises NotFound if absent."""
        pass

    @abstractmethod
    def insert_record(self, core_fields: dict[str, Any]) -> int:
        """Insert a core record and return its new id. Raises StoreError on rejection."""
        pass

    @abstractmethod
    def update_record(self, record_id: int, core_fields: dict[str, Any]) -> None:
        """Update columns of an existing core record."""
        pass

    @abstractmethod
    def delete_record(self, record_id: int, bypass_trash: bool = False) -> bool:
        """Trash or delete a core record.

        Without ``bypass_trash`` the record moves to the trash. A record
        already in the trash, a revision, or any record when ``bypass_trash``
        is set is removed with its metadata, term associations and revisions.
        Returns False if the record does not exist.
        """
        pass

    @abstractmethod
    def get_meta_all(self, record_id: int) -> dict[str, list[Any]]:
        """Read all metadata of a record, each key mapping to its stored values."""
        pass

    @abstractmethod
    def upsert_meta(self, record_id: int, key: str, value: Any) -> None:
        """Create or replace a metadata value."""
        pass

    @abstractmethod
    def delete_meta(self, record_id: int, key: str) -> None:
        """Delete every value stored for a metadata key."""
        pass

    @abstractmethod
    def query_ids(
        self,
        entity_type: str,
        core_filter: CoreFilter | None = None,
        meta_filter: MetaFilter | None = None,
        order: Order | None = None,
        *,
        status: str | None = PUBLISHED,
        term_filter: TermFilter | None = None,
        include_ids: Sequence[int] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[int]:
        """Return ordered record ids of ``entity_type`` matching every given filter.

        ``status=None`` matches any status. ``include_ids`` restricts the
        result to the given ids.
        """
        pass

    @abstractmethod
    def get_terms_for_entity(self, record_id: int, taxonomy: str) -> list[TermRef]:
        """List the terms associated with a record in a taxonomy."""
        pass

    @abstractmethod
    def set_terms_for_entity(self, record_id: int, taxonomy: str, terms: Sequence[int | str]) -> None:
        """Replace a record's associations in a taxonomy.

        Integers are term ids. Strings are tag names, created by the store
        when missing.
        """
        pass

    @abstractmethod
    def find_term_by_name(self, name: str, taxonomy: str) -> TermRef:
        """Find a term by exact name. Raises NotFound if absent."""
        pass

    @abstractmethod
    def create_term(self, name: str, taxonomy: str) -> TermRef:
        """Create a term and return it with its new id."""
        pass

    @abstractmethod
    def get_revision_meta(self, revision_id: int) -> dict[str, list[Any]] | None:
        """Read the metadata of a revision, or None if the revision is absent."""
        pass

    def close(self) -> None:
        """Release the store's resources. Stores holding none do nothing."""
        pass

    def get_term_meta_all(self, term_id: int) -> dict[str, list[Any]]:
        """Read the metadata of a term. Stores without term metadata return nothing."""
        return {}
