"""Entry points called by the hook layer around save, preview and revisions."""

from collections.abc import Mapping
from typing import Any

import structlog

from content_mapper.errors import NotFound
from content_mapper.gateway import PersistenceGateway
from content_mapper.mapper import EntityMapper
from content_mapper.models import CORE_KEYS, ID, REVISION_TYPE, Entity, Record
from content_mapper.revisions import RevisionDiffer
from content_mapper.schema import CheckboxField, SchemaRegistry
from content_mapper.text import is_numeric

logger = structlog.get_logger()

# Core columns the store itself tracks across revisions.
REVISION_CORE_FIELDS = ("post_title", "post_content", "post_excerpt")


class ContentHooks:
    """Adapts save, restore and revision-screen events to the mapper and differ.

    Missing records and unregistered types end the call quietly with a
    ``None``/``False``/unchanged result.
    """

    def __init__(
        self,
        registry: SchemaRegistry,
        gateway: PersistenceGateway,
        mapper: EntityMapper | None = None,
        differ: RevisionDiffer | None = None,
    ) -> None:
        self.registry = registry
        self.gateway = gateway
        self.mapper = mapper or EntityMapper(registry, gateway)
        self.differ = differ or RevisionDiffer(registry, gateway)

    def _owner_type(self, record: Record) -> str | None:
        """Entity type of a record, looking through revisions to their owner."""
        if record.post_type != REVISION_TYPE:
            return record.post_type
        try:
            return self.gateway.get_record(record.fields.get("post_parent")).post_type
        except NotFound:
            return None

    def on_save(
        self,
        entity_id: int,
        raw_record: Record,
        is_update: bool,
        submitted: Mapping[str, Any],
        preview: bool = False,
        autosave: bool = False,
    ) -> int | None:
        """Save submitted field values onto the record (or revision) just written by the store.

        Submitted taxonomy assignments are keyed ``{entity_type}_{taxonomy}``.
        The core record is left to the store; only meta and terms are written.
        """
        # Previews persist only through the revision.
        if preview and raw_record.post_type != REVISION_TYPE:
            return None

        entity_type = self._owner_type(raw_record)
        if not self.registry.is_registered(entity_type):
            return None
        if autosave:
            return entity_id
        # Deletes arrive without a post type.
        if "post_type" not in submitted:
            return entity_id

        definition = self.registry.class_for(entity_type)
        entity = Entity(entity_type=raw_record.post_type or entity_type, real_type=entity_type)

        for key in [*CORE_KEYS, *definition.fields]:
            if key == ID:
                continue
            if key in submitted:
                entity.set(key, submitted[key])
            elif isinstance(definition.fields.get(key), CheckboxField):
                entity.set(key, "0")

        for taxonomy in definition.taxonomies:
            submitted_key = f"{entity_type}_{taxonomy}"
            if submitted_key not in submitted:
                continue
            values = submitted[submitted_key]
            if not isinstance(values, (list, tuple)):
                values = [values]
            # The form always posts a 0 for an empty selection.
            terms = [int(v) if is_numeric(v) else v for v in values if str(v) != "0"]
            entity.set_terms(terms, taxonomy)

        entity.assign_id(entity_id)
        logger.debug("Saving submitted fields", entity_id=entity_id, entity_type=entity_type, is_update=is_update)
        return self.mapper.save(entity, exclude_core=True)

    def on_restore_revision(self, entity_id: int, revision_id: int) -> bool:
        """Write a revision's metadata back onto its entity."""
        try:
            record = self.gateway.get_record(entity_id)
        except NotFound:
            return False
        if not self.registry.is_registered(record.post_type):
            return False

        target = self.mapper.load(record, load_taxonomies=False)
        snapshot = self.differ.snapshot(entity_id, revision_id)
        self.differ.restore(target, snapshot, self.registry.fields_of(record.post_type))
        return True

    def compute_revision_display_fields(
        self, default_labels: Mapping[str, str], entity_id: int | None = None
    ) -> dict[str, str]:
        """Add the entity type's meta field labels to the revision screen's field list."""
        labels = dict(default_labels)
        if entity_id is None:
            return labels
        try:
            record = self.gateway.get_record(entity_id)
        except NotFound:
            return labels

        entity_type = self._owner_type(record)
        if not self.registry.is_registered(entity_type):
            return labels
        definition = self.registry.class_for(entity_type)
        for key in definition.fields:
            labels[key] = definition.label_text(key)
        return labels

    def render_revision_field_value(self, field_key: str, revision_id: int) -> str | None:
        """Display text of one field as stored in a revision."""
        try:
            revision = self.gateway.get_record(revision_id)
        except NotFound:
            return None

        entity_type = self._owner_type(revision)
        if not self.registry.is_registered(entity_type):
            return None

        values = self.gateway.get_meta_all(revision_id).get(field_key)
        value = values[0] if values else ""
        return self.differ.render(value, self.registry.fields_of(entity_type).get(field_key))

    def check_for_changes(
        self,
        post_has_changed: bool,
        last_revision_id: int,
        entity_id: int,
        submitted: Mapping[str, Any],
    ) -> bool:
        """Decide whether a new revision is needed, taking meta fields into account."""
        if post_has_changed:
            return True
        try:
            record = self.gateway.get_record(entity_id)
            revision = self.gateway.get_record(last_revision_id)
        except NotFound:
            return post_has_changed
        if not self.registry.is_registered(record.post_type):
            return post_has_changed

        fields = self.registry.fields_of(record.post_type)
        keys = [*REVISION_CORE_FIELDS, *fields]
        live: dict[str, Any] = dict(record.fields)
        live.update(self.gateway.get_meta_all(entity_id))
        previous: dict[str, Any] = dict(revision.fields)
        previous.update(self.gateway.get_meta_all(last_revision_id))
        return self.differ.has_changed(submitted, previous, keys, live=live, fields=fields)

    @staticmethod
    def always_preview_changes(check_for_changes: bool, preview: bool) -> bool:
        """Previews always produce a fresh revision so term changes show up."""
        return True if preview else check_for_changes
