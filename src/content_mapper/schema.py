"""Schema registry: field definitions, taxonomies and entity types."""

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from types import MappingProxyType
from typing import Any, ClassVar

import structlog
import yaml

from content_mapper.errors import SchemaError, UnregisteredType
from content_mapper.models import CORE_KEYS
from content_mapper.taxonomy import taxonomy_key, taxonomy_label
from content_mapper.text import human, is_numeric, machine, normalize_whitespace, url_decode

logger = structlog.get_logger()

DEFAULT_POSTS_PER_PAGE = 10
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Backslash escapes added to link objects on submission.
_SLASHED = re.compile(r"\\(.)")


@dataclass(frozen=True)
class FieldSchema:
    """A custom field of an entity type. Subclasses form a closed set of field types."""

    type: ClassVar[str] = "text"

    key: str
    label: str = ""
    default: Any = None
    description: str | None = None

    def __post_init__(self) -> None:
        if not self.label:
            object.__setattr__(self, "label", human(self.key))

    def to_storage(self, value: Any) -> str:
        """Encode a value as the text kept in the metadata table."""
        if value is None:
            return ""
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        return str(value)

    def from_storage(self, value: Any) -> Any:
        """Decode stored text into the field's value."""
        return value

    def same_value(self, left: Any, right: Any) -> bool:
        """Compare two values by their whitespace-normalized storage form.

        A loaded value and the text it was stored as compare equal.
        """
        return normalize_whitespace(self.to_storage(left)) == normalize_whitespace(self.to_storage(right))


@dataclass(frozen=True)
class TextField(FieldSchema):
    type: ClassVar[str] = "text"


@dataclass(frozen=True)
class HtmlField(FieldSchema):
    type: ClassVar[str] = "html"


@dataclass(frozen=True)
class HiddenField(FieldSchema):
    type: ClassVar[str] = "hidden"


@dataclass(frozen=True)
class CheckboxField(FieldSchema):
    type: ClassVar[str] = "checkbox"

    def to_storage(self, value: Any) -> str:
        return "1" if self.from_storage(value) else "0"

    def from_storage(self, value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() not in ("", "0", "false", "off", "no")
        return bool(value)


@dataclass(frozen=True)
class NumberField(FieldSchema):
    type: ClassVar[str] = "number"

    def to_storage(self, value: Any) -> str:
        """Store numbers in canonical form: ``"03"`` and ``3`` both become ``"3"``."""
        if isinstance(value, bool) or not is_numeric(value):
            return super().to_storage(value)
        text = str(value).strip()
        try:
            return str(int(text))
        except ValueError:
            number = float(text)
        return str(int(number)) if number.is_integer() else repr(number)

    def from_storage(self, value: Any) -> Any:
        if isinstance(value, bool) or not is_numeric(value):
            return value
        number = float(value)
        return int(number) if number.is_integer() and "." not in str(value) else number


@dataclass(frozen=True)
class SelectField(FieldSchema):
    type: ClassVar[str] = "select"

    options: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__post_init__()
        object.__setattr__(self, "options", MappingProxyType({str(k): v for k, v in self.options.items()}))

    def option_label(self, value: Any) -> Any:
        """Map a stored value to its option label, passing unknown values through."""
        return self.options.get(str(value)) or value


@dataclass(frozen=True)
class LinkField(FieldSchema):
    """A link object captured URL-encoded upstream and stored decoded."""

    type: ClassVar[str] = "link"

    def to_storage(self, value: Any) -> str:
        return super().to_storage(url_decode(value))

    @staticmethod
    def decode(value: Any) -> dict | None:
        """Decode a link object (``href``, ``title``, ``target``), or None if the value is not one."""
        if isinstance(value, dict):
            return value
        if not isinstance(value, str):
            return None
        text = _SLASHED.sub(r"\1", url_decode(value))
        try:
            decoded = json.loads(text)
        except ValueError:
            return None
        return decoded if isinstance(decoded, dict) else None

    def url(self, value: Any) -> Any:
        """The link's ``href``.

        A link missing any of its parts yields the field default, when one is
        declared. Values that are not link objects come back unchanged.
        """
        link = self.decode(value)
        if link is None:
            return value
        if not all(link.get(part) for part in ("href", "title", "target")) and self.default is not None:
            return self.default
        return link.get("href")

    def part(self, value: Any, part: str) -> Any:
        """One part of the link; ``body`` is an alias for ``title``."""
        link = self.decode(value)
        if link is None:
            return None
        return link.get("title" if part == "body" else part)


@dataclass(frozen=True)
class AddBySearchField(FieldSchema):
    """Comma-separated ids of referenced entities."""

    type: ClassVar[str] = "add-by-search"

    def to_storage(self, value: Any) -> str:
        if isinstance(value, (list, tuple)):
            return ",".join(str(v) for v in value)
        return super().to_storage(value)

    @staticmethod
    def ids(value: Any) -> list[str]:
        if not value:
            return []
        return [part.strip() for part in str(value).split(",") if part.strip()]


@dataclass(frozen=True)
class AddManyField(FieldSchema):
    """A repeating group of sub-entities.

    The stored value is either a legacy comma-separated id list or a JSON
    object with a ``subposts`` list. ``variations`` maps a variation name to
    the sub-fields shown for sub-entities of that variation.
    """

    type: ClassVar[str] = "add-many"

    variations: Mapping[str, Mapping[str, FieldSchema]] = field(default_factory=dict)

    def variation_fields(self, variation: str | None) -> Mapping[str, FieldSchema]:
        if variation and variation in self.variations:
            return self.variations[variation]
        if len(self.variations) == 1:
            return next(iter(self.variations.values()))
        return {}


FIELD_TYPES: Mapping[str, type[FieldSchema]] = MappingProxyType(
    {
        cls.type: cls
        for cls in (
            TextField,
            CheckboxField,
            NumberField,
            SelectField,
            LinkField,
            HtmlField,
            HiddenField,
            AddManyField,
            AddBySearchField,
        )
    }
)

# Older declarations mark composite fields with a class attribute instead of a type.
_LEGACY_CLASSES = {"addmany": "add-many", "addbysearch": "add-by-search"}


def parse_field(key: str, decl: Mapping[str, Any] | str | None, check_core: bool = True) -> FieldSchema:
    """Build a FieldSchema from a declaration, rejecting unknown types."""
    if check_core and key in CORE_KEYS:
        raise SchemaError(f"Field key collides with a core attribute: {key}")

    if decl is None:
        decl = {}
    elif isinstance(decl, str):
        decl = {"type": decl}
    elif not isinstance(decl, Mapping):
        raise SchemaError(f"Invalid declaration for field {key}: {decl!r}")

    field_type = decl.get("type", "text")
    if decl.get("class") in _LEGACY_CLASSES:
        field_type = _LEGACY_CLASSES[decl["class"]]
    elif decl.get("data-addmany") is True:
        field_type = "add-many"

    cls = FIELD_TYPES.get(field_type)
    if cls is None:
        raise SchemaError(f"Unknown type {field_type!r} for field {key}")

    kwargs: dict[str, Any] = {
        "key": key,
        "label": decl.get("label") or "",
        "default": decl.get("default"),
        "description": decl.get("description"),
    }
    if cls is SelectField:
        kwargs["options"] = decl.get("options") or {}
    elif cls is AddManyField:
        variations = {}
        for name, variation in (decl.get("variations") or {}).items():
            sub_fields = (variation or {}).get("fields", variation) or {}
            variations[name] = MappingProxyType(
                {sub_key: parse_field(sub_key, sub_decl, check_core=False) for sub_key, sub_decl in sub_fields.items()}
            )
        kwargs["variations"] = MappingProxyType(variations)
    return cls(**kwargs)


def parse_fields(decls: Mapping[str, Any] | None, check_core: bool = True) -> Mapping[str, FieldSchema]:
    return MappingProxyType({key: parse_field(key, decl, check_core) for key, decl in (decls or {}).items()})


@dataclass(frozen=True)
class TaxonomyDef:
    """A classification axis. Hierarchical unless declared otherwise."""

    key: str
    label: str
    hierarchical: bool = True
    options: Mapping[str, Any] = field(default_factory=dict)
    fields: Mapping[str, FieldSchema] = field(default_factory=dict)

    @property
    def typed(self) -> bool:
        """Terms of a typed taxonomy carry their own fields and load as entities."""
        return bool(self.fields)


def _taxonomy_from_options(key: Any, label: str | None, decl: Mapping[str, Any]) -> TaxonomyDef:
    label = decl.get("label") or label
    explicit_key = decl.get("key")
    if explicit_key:
        key = explicit_key
    if not label:
        if not isinstance(key, str):
            raise SchemaError(f"Taxonomy declaration needs a key or a label: {dict(decl)!r}")
        label = taxonomy_label(key)
    options = {k: v for k, v in decl.items() if k not in ("key", "label", "hierarchical", "fields")}
    return TaxonomyDef(
        key=taxonomy_key(key, label),
        label=label,
        hierarchical=bool(decl.get("hierarchical", True)),
        options=MappingProxyType(options),
        fields=parse_fields(decl.get("fields"), check_core=False),
    )


def parse_taxonomies(decls: Any) -> Mapping[str, TaxonomyDef]:
    """Build taxonomy definitions from a list or a mapping declaration.

    Accepted forms::

        ["genre", {"label": "Hot Sauces"}]
        {"genre": "Genres", "origin": {"hierarchical": False}}
    """
    if not decls:
        return MappingProxyType({})

    items = list(enumerate(decls)) if isinstance(decls, list) else list(decls.items())
    taxonomies: dict[str, TaxonomyDef] = {}
    for key, decl in items:
        if decl is None:
            decl = {}
        if isinstance(decl, str):
            if isinstance(key, str):
                taxonomy = _taxonomy_from_options(key, decl, {})
            else:
                taxonomy = _taxonomy_from_options(key, taxonomy_label(decl), {})
        elif isinstance(decl, Mapping):
            taxonomy = _taxonomy_from_options(key, None, decl)
        else:
            raise SchemaError(f"Invalid taxonomy declaration: {decl!r}")
        taxonomies[taxonomy.key] = taxonomy
    return MappingProxyType(taxonomies)


@dataclass(frozen=True)
class EntityType:
    """Capabilities registered for one entity type."""

    name: str
    singular: str = ""
    plural: str = ""
    fields: Mapping[str, FieldSchema] = field(default_factory=dict)
    taxonomies: Mapping[str, TaxonomyDef] = field(default_factory=dict)
    defaults: Mapping[str, Any] = field(default_factory=dict)
    default_order_by: str = "menu_order"
    default_order: str = "ASC"
    posts_per_page: int = DEFAULT_POSTS_PER_PAGE

    def __post_init__(self) -> None:
        if not self.singular:
            object.__setattr__(self, "singular", human(self.name))
        if not self.plural:
            object.__setattr__(self, "plural", f"{self.singular}s")

    def meta_field_keys(self) -> list[str]:
        return list(self.fields)

    def taxonomy_keys(self) -> list[str]:
        return list(self.taxonomies)

    def label_text(self, key: str) -> str:
        if key in self.fields:
            return self.fields[key].label
        return human(key)

    def rest_base(self) -> str:
        return machine(self.plural, "-")

    def admin_columns(self) -> list[str]:
        return self.meta_field_keys() + self.taxonomy_keys()

    def defaults_for(self, author_id: int | None, now: datetime) -> dict[str, Any]:
        """Core values filled in on save for keys the entity does not set."""
        defaults: dict[str, Any] = {
            "post_type": self.name,
            "post_author": author_id,
            "post_date": now.strftime(DATE_FORMAT),
            "post_category": [0],
            "post_status": "publish",
        }
        defaults.update(self.defaults)
        return defaults


def parse_entity_type(name: str, decl: Mapping[str, Any] | None, posts_per_page: int) -> EntityType:
    decl = decl or {}
    unknown = set(decl) - {
        "singular",
        "plural",
        "fields",
        "taxonomies",
        "defaults",
        "default_order_by",
        "default_order",
        "posts_per_page",
    }
    if unknown:
        raise SchemaError(f"Unknown keys in entity type {name}: {sorted(unknown)}")
    return EntityType(
        name=name,
        singular=decl.get("singular") or "",
        plural=decl.get("plural") or "",
        fields=parse_fields(decl.get("fields")),
        taxonomies=parse_taxonomies(decl.get("taxonomies")),
        defaults=MappingProxyType(dict(decl.get("defaults") or {})),
        default_order_by=decl.get("default_order_by", "menu_order"),
        default_order=str(decl.get("default_order", "ASC")).upper(),
        posts_per_page=int(decl.get("posts_per_page", posts_per_page)),
    )


class SchemaRegistry:
    """Immutable registry of entity types, built once at startup."""

    def __init__(self, entity_types: Mapping[str, EntityType]) -> None:
        self._types: Mapping[str, EntityType] = MappingProxyType(dict(entity_types))
        typed: dict[str, TaxonomyDef] = {}
        for entity_type in self._types.values():
            for key, taxonomy in entity_type.taxonomies.items():
                if taxonomy.typed and key not in typed:
                    typed[key] = taxonomy
        self._typed_taxonomies: Mapping[str, TaxonomyDef] = MappingProxyType(typed)
        logger.debug("Schema registry built", types=list(self._types), typed_taxonomies=list(typed))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], posts_per_page: int = DEFAULT_POSTS_PER_PAGE) -> "SchemaRegistry":
        """Build a registry from a ``{"types": {name: declaration}}`` mapping."""
        types_decl = data.get("types", data) if data else {}
        entity_types = {
            name: parse_entity_type(name, decl, posts_per_page) for name, decl in (types_decl or {}).items()
        }
        if "post" not in entity_types:
            entity_types["post"] = EntityType(
                name="post",
                taxonomies=parse_taxonomies(["category"]),
                posts_per_page=posts_per_page,
            )
        return cls(entity_types)

    def is_registered(self, entity_type: str | None) -> bool:
        return entity_type in self._types

    def class_for(self, entity_type: str | None) -> EntityType:
        try:
            return self._types[entity_type]
        except KeyError:
            raise UnregisteredType(str(entity_type)) from None

    def entity_types(self) -> list[str]:
        return list(self._types)

    def fields_of(self, entity_type: str) -> Mapping[str, FieldSchema]:
        return self.class_for(entity_type).fields

    def core_keys_of(self, entity_type: str | None = None) -> tuple[str, ...]:
        return CORE_KEYS

    def taxonomies_of(self, entity_type: str) -> Mapping[str, TaxonomyDef]:
        return self.class_for(entity_type).taxonomies

    def defaults_of(self, entity_type: str, author_id: int | None, now: datetime) -> dict[str, Any]:
        return self.class_for(entity_type).defaults_for(author_id, now)

    def typed_taxonomies(self) -> Mapping[str, TaxonomyDef]:
        return self._typed_taxonomies


def load_schema(path: str | Path, posts_per_page: int = DEFAULT_POSTS_PER_PAGE) -> SchemaRegistry:
    """Load a registry from a YAML schema file."""
    path = Path(path)
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.error("Failed to load schema", path=str(path), error=str(e))
        raise SchemaError(f"Failed to load schema from {path}: {e}") from e
    logger.debug("Schema loaded", path=str(path))
    return SchemaRegistry.from_mapping(data, posts_per_page=posts_per_page)
