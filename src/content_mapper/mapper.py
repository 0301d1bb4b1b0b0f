"""Entity mapper: loads entities from the store and saves them back."""

import re
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import Any

import structlog

from content_mapper.errors import EmptyEntity, NotFound, SaveError, StoreError, UnregisteredType
from content_mapper.gateway import PersistenceGateway
from content_mapper.models import CORE_KEYS, ID, REVISION_TYPE, Entity, Record, TermRef
from content_mapper.schema import FieldSchema, LinkField, SchemaRegistry, TaxonomyDef
from content_mapper.taxonomy import TaxonomyResolver
from content_mapper.text import decode_title

logger = structlog.get_logger()

# The store re-escapes these characters in titles on insert and update.
_TITLE_QUIRK = re.compile(r"[&']")


class EntityMapper:
    """Maps store records, metadata and terms to entities and back."""

    def __init__(
        self,
        registry: SchemaRegistry,
        gateway: PersistenceGateway,
        resolver: TaxonomyResolver | None = None,
        author_id: int | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.registry = registry
        self.gateway = gateway
        self.resolver = resolver or TaxonomyResolver(gateway)
        self.author_id = author_id
        self.clock = clock
        self.last_error: Exception | None = None

    def _fields(self, entity_type: str | None) -> Mapping[str, FieldSchema]:
        if not self.registry.is_registered(entity_type):
            return {}
        return self.registry.fields_of(entity_type)

    def _taxonomies(self, entity_type: str | None) -> Mapping[str, TaxonomyDef]:
        if not self.registry.is_registered(entity_type):
            return {}
        return self.registry.taxonomies_of(entity_type)

    def _record(self, raw: Any) -> Record:
        if isinstance(raw, Record):
            return raw
        if isinstance(raw, Entity):
            raw = raw.id
        if raw is None:
            raise NotFound("No record given")
        return self.gateway.get_record(raw)

    def load(self, raw: Any, load_taxonomies: bool = True) -> Entity:
        """Load an entity from an id or a raw record. Raises NotFound."""
        record = self._record(raw)

        entity_type = record.post_type or "post"
        real_type = entity_type
        parent_id = record.fields.get("post_parent")
        if entity_type == REVISION_TYPE and parent_id:
            try:
                real_type = self.gateway.get_record(parent_id).post_type or entity_type
            except NotFound:
                logger.warning("Revision owner not found", revision_id=record.id, owner_id=parent_id)

        entity = Entity(entity_type=entity_type, id=record.id, real_type=real_type)
        for key, value in record.fields.items():
            if key in CORE_KEYS and key != ID:
                entity.core_attributes[key] = value
        if "post_title" in entity.core_attributes:
            entity.core_attributes["post_title"] = decode_title(entity.core_attributes["post_title"])

        fields = self._fields(real_type)
        for key, values in self.gateway.get_meta_all(record.id).items():
            if key in fields and values:
                entity.meta_fields[key] = fields[key].from_storage(values[0])

        if load_taxonomies:
            self.load_terms(entity)

        logger.debug("Entity loaded", entity_id=entity.id, entity_type=entity_type, real_type=real_type)
        return entity

    def find(self, entity_id: Any, load_taxonomies: bool = True) -> Entity | None:
        """Load an entity, or return None if it does not exist."""
        try:
            return self.load(entity_id, load_taxonomies)
        except NotFound:
            logger.debug("Entity not found", entity_id=entity_id)
            return None

    def load_many(self, ids: Iterable[Any], load_taxonomies: bool = True) -> list[Entity]:
        """Load entities in the given order, skipping ids that no longer resolve."""
        entities = []
        for entity_id in ids:
            entity = self.find(entity_id, load_taxonomies)
            if entity is not None:
                entities.append(entity)
        return entities

    def load_terms(self, entity: Entity) -> bool:
        taxonomies = self._taxonomies(entity.real_type)
        if not taxonomies or entity.id is None:
            return False

        typed = self.registry.typed_taxonomies()
        for key in taxonomies:
            terms = self.gateway.get_terms_for_entity(entity.id, key)
            if not terms:
                continue

            unique: dict[int, TermRef] = {}
            for term in terms:
                unique.setdefault(int(term.id), term)

            if key in typed:
                entity.taxonomy_terms[key] = [self.load_term(term, typed[key]) for term in unique.values()]
            else:
                entity.taxonomy_terms[key] = list(unique.values())
        return True

    def load_term(self, term: TermRef, taxonomy: TaxonomyDef) -> Entity:
        """Materialize a term of a typed taxonomy as an entity of that taxonomy."""
        entity = Entity(entity_type=taxonomy.key, id=term.id)
        entity.core_attributes.update({"post_title": term.name, "post_name": term.slug, "post_parent": term.parent})
        for key, values in self.gateway.get_term_meta_all(term.id).items():
            if key in taxonomy.fields and values:
                entity.meta_fields[key] = taxonomy.fields[key].from_storage(values[0])
        return entity

    def get(self, entity: Entity, key: str) -> Any:
        """Read a value, falling back to the field's declared default."""
        if entity.has(key):
            return entity.get(key)
        field = self._fields(entity.real_type).get(key)
        return field.default if field else None

    def _link_field(self, entity: Entity, key: str) -> LinkField:
        field = self._fields(entity.real_type).get(key)
        return field if isinstance(field, LinkField) else LinkField(key)

    def link_url(self, entity: Entity, key: str) -> Any:
        """The ``href`` of a link field, or the field default for an incomplete link."""
        return self._link_field(entity, key).url(entity.get(key))

    def link_part(self, entity: Entity, key: str, part: str) -> Any:
        return self._link_field(entity, key).part(entity.get(key), part)

    def delete(self, entity: Entity | int, bypass_trash: bool = False) -> bool:
        """Move an entity to the trash, or remove it for good with ``bypass_trash``."""
        entity_id = entity.id if isinstance(entity, Entity) else entity
        if entity_id is None:
            return False
        deleted = self.gateway.delete_record(entity_id, bypass_trash)
        logger.info("Entity deleted", entity_id=entity_id, bypass_trash=bypass_trash, deleted=deleted)
        return deleted

    def save(self, entity: Entity, exclude_core: bool = False) -> int | None:
        """Save an entity and return its id.

        Core record, each meta key and each taxonomy are separate gateway
        calls. A failure part way through leaves the earlier writes in place.
        Raises EmptyEntity and SaveError.
        """
        if entity.is_empty():
            raise EmptyEntity("Nothing to save")

        try:
            entity_type = self.registry.class_for(entity.real_type)
        except UnregisteredType as e:
            logger.warning("Skipping save of unregistered type", entity_type=e.entity_type)
            return None

        for key, value in entity_type.defaults_for(self.author_id, self.clock()).items():
            if not entity.has(key):
                entity.set(key, value)

        core = dict(entity.core_attributes)
        meta = {k: v for k, v in entity.meta_fields.items() if k in entity_type.fields}
        dropped = [k for k in entity.meta_fields if k not in entity_type.fields]
        if dropped:
            logger.debug("Dropping keys outside the schema", entity_type=entity_type.name, keys=dropped)

        if not exclude_core:
            self._save_core(entity, core)

        if entity.id is None:
            raise SaveError("Cannot save fields of an entity that has no id")

        for key, value in meta.items():
            self.gateway.upsert_meta(entity.id, key, entity_type.fields[key].to_storage(value))

        for taxonomy, refs in entity.taxonomy_terms.items():
            if not refs:
                continue
            term_ids = self.resolver.resolve_all(refs, taxonomy)
            self.gateway.set_terms_for_entity(entity.id, taxonomy, term_ids)
            entity.taxonomy_terms[taxonomy] = list(term_ids)

        logger.info("Entity saved", entity_id=entity.id, entity_type=entity_type.name, meta_keys=list(meta))
        return entity.id

    def _save_core(self, entity: Entity, core: dict[str, Any]) -> None:
        try:
            if entity.id is not None:
                self.gateway.update_record(entity.id, core)
            else:
                entity.assign_id(self.gateway.insert_record(core))
        except StoreError as e:
            self.last_error = e
            logger.error("Core record write rejected", entity_id=entity.id, error=str(e))
            raise SaveError(f"Core record write rejected: {e}", cause=e) from e

        title = core.get("post_title")
        if isinstance(title, str) and _TITLE_QUIRK.search(title):
            self.gateway.update_record(entity.id, {"post_title": title})
