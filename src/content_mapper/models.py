"""Data models for the content mapper."""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

ID = "ID"
REVISION_TYPE = "revision"
FREE_TAGGING_TAXONOMY = "post_tag"

# Columns of the core record table, shared by every entity type.
CORE_KEYS: tuple[str, ...] = (
    ID,
    "post_author",
    "post_date",
    "post_date_gmt",
    "post_content",
    "post_title",
    "post_category",
    "post_excerpt",
    "post_status",
    "comment_status",
    "ping_status",
    "post_password",
    "post_name",
    "to_ping",
    "pinged",
    "post_modified",
    "post_modified_gmt",
    "post_content_filtered",
    "post_parent",
    "guid",
    "menu_order",
    "post_type",
    "post_mime_type",
    "comment_count",
)

COMPARE_OPERATORS = frozenset({"=", "!=", "<>", "<", "<=", ">", ">=", "LIKE", "NOT LIKE", "IN", "NOT IN"})


@dataclass
class TermRef:
    """Reference to a term: an id, or a name that has not been resolved yet."""

    id: int | None = None
    name: str | None = None
    slug: str | None = None
    taxonomy: str | None = None
    parent: int = 0

    def __post_init__(self) -> None:
        if self.id is None and self.name is None:
            raise ValueError("TermRef needs an id or a name")
        if self.id is not None:
            self.id = int(self.id)


@dataclass
class Record:
    """A raw row of the core record table."""

    id: int
    fields: dict[str, Any] = field(default_factory=dict)

    @property
    def post_type(self) -> str | None:
        return self.fields.get("post_type")

    @property
    def title(self) -> str | None:
        return self.fields.get("post_title")


@dataclass
class Entity:
    """A content entity with core attributes, meta fields and taxonomy terms."""

    entity_type: str
    id: int | None = None
    real_type: str | None = None
    core_attributes: dict[str, Any] = field(default_factory=dict)
    meta_fields: dict[str, Any] = field(default_factory=dict)
    taxonomy_terms: dict[str, list[Any]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.real_type is None:
            self.real_type = self.entity_type

    def set(self, key: str, value: Any) -> None:
        """Set a core attribute or a meta field."""
        if key == ID:
            self.assign_id(value)
        elif key in CORE_KEYS:
            self.core_attributes[key] = value
        else:
            self.meta_fields[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        if key == ID:
            return self.id
        if key in self.core_attributes:
            return self.core_attributes[key]
        return self.meta_fields.get(key, default)

    def has(self, key: str) -> bool:
        if key == ID:
            return self.id is not None
        return key in self.core_attributes or key in self.meta_fields

    def assign_id(self, value: Any) -> None:
        """Assign the id once; a persisted entity keeps its id."""
        new_id = int(value)
        if self.id is not None and self.id != new_id:
            raise ValueError(f"Entity id is immutable: {self.id} != {new_id}")
        self.id = new_id

    def is_empty(self) -> bool:
        return self.id is None and not self.core_attributes and not self.meta_fields

    @property
    def title(self) -> str | None:
        return self.core_attributes.get("post_title")

    def set_terms(self, terms: Sequence[Any], taxonomy: str | None = None, append: bool = False) -> list[Any]:
        """Assign term references (ids, names, TermRefs or term entities) to a taxonomy."""
        taxonomy = taxonomy or FREE_TAGGING_TAXONOMY
        current = self.taxonomy_terms.get(taxonomy, [])
        self.taxonomy_terms[taxonomy] = current + list(terms) if append else list(terms)
        return self.taxonomy_terms[taxonomy]

    def get_terms(self, taxonomy: str | None = None) -> Any:
        if taxonomy:
            return self.taxonomy_terms.get(taxonomy, [])
        return self.taxonomy_terms

    def has_term(self, term_id: int) -> bool:
        for terms in self.taxonomy_terms.values():
            for term in terms:
                if term_id_of(term) == int(term_id):
                    return True
        return False


def term_id_of(term: Any) -> int | None:
    """Return the id carried by a term reference, or None for an unresolved name."""
    if isinstance(term, bool):
        return None
    if isinstance(term, int):
        return term
    if isinstance(term, (TermRef, Entity)):
        return term.id
    if isinstance(term, str) and term.strip().lstrip("-").isdigit():
        return int(term)
    return None


@dataclass
class Condition:
    """A single field condition: ``key compare value``."""

    key: str
    value: Any
    compare: str = "="

    def __post_init__(self) -> None:
        self.compare = self.compare.strip().upper()
        if self.compare not in COMPARE_OPERATORS:
            raise ValueError(f"Unsupported compare operator: {self.compare}")

    @classmethod
    def coerce(cls, condition: "Condition | Mapping[str, Any] | Sequence[Any]") -> "Condition":
        """Build a condition from a mapping or a ``(key, value[, compare])`` sequence."""
        if isinstance(condition, Condition):
            return condition
        if isinstance(condition, Mapping):
            values = list(condition.values())
            key = condition["key"] if "key" in condition else values[0]
            value = condition["value"] if "value" in condition else values[1]
            compare = condition.get("compare", values[2] if len(values) > 2 else "=")
            return cls(key=key, value=value, compare=compare)
        items = list(condition)
        return cls(key=items[0], value=items[1], compare=items[2] if len(items) > 2 else "=")


@dataclass
class RevisionSnapshot:
    """Metadata of an entity captured by the store at a prior save."""

    owner_entity_id: int
    revision_id: int
    meta_at_snapshot: dict[str, list[Any]] = field(default_factory=dict)

    def has(self, key: str) -> bool:
        return key in self.meta_at_snapshot

    def canonical(self, key: str, default: Any = None) -> Any:
        """First stored value for ``key``."""
        values = self.meta_at_snapshot.get(key)
        if not values:
            return default
        return values[0]
