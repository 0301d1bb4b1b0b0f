"""Revision change detection, display rendering and restore."""

import json
from collections.abc import Iterable, Mapping
from typing import Any

import structlog

from content_mapper.errors import NotFound, StoreError
from content_mapper.gateway import PersistenceGateway
from content_mapper.models import Entity, RevisionSnapshot
from content_mapper.schema import (
    AddBySearchField,
    AddManyField,
    CheckboxField,
    FieldSchema,
    LinkField,
    SchemaRegistry,
    SelectField,
)
from content_mapper.text import decode_title, human, normalize_whitespace

logger = structlog.get_logger()

DELETED = "Post Deleted"
INDENT = " " * 4


def _first(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def decode_structured(value: Any) -> dict | list | None:
    """Return the object a value encodes, or None if it is not structured JSON."""
    if isinstance(value, (dict, list)):
        return value
    if not isinstance(value, str):
        return None
    try:
        decoded = json.loads(value)
    except ValueError:
        return None
    return decoded if isinstance(decoded, (dict, list)) else None


def pretty_print_json(value: Any, level: int = 0) -> str:
    """Render a JSON object as ``Key: value`` lines, indenting each nesting level.

    Anything that is not a JSON object or array is returned as text.
    """
    structured = decode_structured(value)
    if structured is None:
        return _text(value)

    items = structured.items() if isinstance(structured, dict) else enumerate(structured, 1)
    lines = []
    for key, item in items:
        prefix = f"{INDENT * level}{human(str(key))}:"
        if decode_structured(item):
            lines.append(f"{prefix}\n{pretty_print_json(item, level + 1)}")
        else:
            lines.append(f"{prefix} {_text(item)}")
    return "\n".join(lines)


class RevisionDiffer:
    """Compares, renders and restores revision snapshots of entity metadata."""

    def __init__(self, registry: SchemaRegistry, gateway: PersistenceGateway) -> None:
        self.registry = registry
        self.gateway = gateway

    def has_changed(
        self,
        current: Mapping[str, Any],
        previous: Mapping[str, Any] | RevisionSnapshot,
        field_keys: Iterable[str],
        live: Mapping[str, Any] | None = None,
        preview: bool = False,
        fields: Mapping[str, FieldSchema] | None = None,
    ) -> bool:
        """True as soon as one field differs after whitespace normalization.

        ``current`` holds submitted values; keys missing from it fall back to
        ``live``. Schema fields compare by their storage form, so a loaded
        ``True`` equals a stored ``"1"``. Without ``fields`` the schema of a
        snapshot's owner is used. Previews always count as changed.
        """
        if preview:
            return True

        if fields is None:
            fields = self._owner_fields(previous)
        live = live or {}
        for key in field_keys:
            value = _first(current[key] if key in current else live.get(key))
            if isinstance(previous, RevisionSnapshot):
                before = previous.canonical(key)
            else:
                before = _first(previous.get(key))

            field = fields.get(key)
            if field is not None:
                same = field.same_value(value, before)
            else:
                same = normalize_whitespace(_text(value)) == normalize_whitespace(_text(before))
            if not same:
                logger.debug("Field changed since last revision", field=key)
                return True
        return False

    def _owner_fields(self, previous: Mapping[str, Any] | RevisionSnapshot) -> Mapping[str, FieldSchema]:
        if not isinstance(previous, RevisionSnapshot):
            return {}
        try:
            entity_type = self.gateway.get_record(previous.owner_entity_id).post_type
        except NotFound:
            return {}
        if not self.registry.is_registered(entity_type):
            return {}
        return self.registry.fields_of(entity_type)

    def snapshot(self, owner_id: int, revision_id: int) -> RevisionSnapshot | None:
        meta = self.gateway.get_revision_meta(revision_id)
        if meta is None:
            return None
        return RevisionSnapshot(owner_entity_id=owner_id, revision_id=revision_id, meta_at_snapshot=meta)

    def render(self, value: Any, field: FieldSchema | None) -> str:
        """Render a stored field value for display in a revision comparison."""
        if value is None:
            return ""
        if isinstance(field, CheckboxField):
            return "Yes" if field.from_storage(value) else "No"
        if isinstance(field, SelectField):
            return _text(field.option_label(value))
        if isinstance(field, LinkField):
            return pretty_print_json(value)
        if isinstance(field, AddBySearchField):
            return "\n".join(self._title(entity_id) for entity_id in field.ids(value))
        if isinstance(field, AddManyField):
            return self._render_add_many(value, field)
        return _text(value)

    def _title(self, entity_id: Any) -> str:
        try:
            return decode_title(self.gateway.get_record(entity_id).title) or ""
        except NotFound:
            return DELETED

    def _render_add_many(self, value: Any, field: AddManyField) -> str:
        structured = decode_structured(value)
        if isinstance(structured, dict):
            out = ""
            for subpost in structured.get("subposts") or []:
                for name, config in (subpost.get("fieldsConfig") or {}).items():
                    config = config if isinstance(config, dict) else {"value": config}
                    label = config.get("label") or human(name)
                    out += f"{label}: {pretty_print_json(config.get('value'))}\n"
            return out

        values = []
        for entity_id in AddBySearchField.ids(value):
            try:
                record = self.gateway.get_record(entity_id)
            except NotFound:
                values.append(DELETED)
                continue
            meta = self.gateway.get_meta_all(record.id)
            sub_fields = field.variation_fields(_first(meta.get("fields_variation")))
            lines = []
            for name, sub_field in sub_fields.items():
                sub_value = record.fields.get(name, _first(meta.get(name)))
                lines.append(f"{sub_field.label}: {_text(sub_value)}")
            values.append("\n".join(lines))
        return "\n".join(values)

    def restore(
        self,
        target: Entity,
        snapshot: RevisionSnapshot | None,
        field_keys: Iterable[str] | None = None,
    ) -> None:
        """Write a snapshot's canonical values onto the target, deleting fields it lacks."""
        fields = self.registry.fields_of(target.real_type) if self.registry.is_registered(target.real_type) else {}
        keys = list(fields) if field_keys is None else list(field_keys)

        for key in keys:
            field = fields.get(key)
            if snapshot is None or not snapshot.has(key):
                self.gateway.delete_meta(target.id, key)
                target.meta_fields.pop(key, None)
                continue

            value = snapshot.canonical(key)
            self.gateway.upsert_meta(target.id, key, value)
            target.meta_fields[key] = field.from_storage(value) if field else value
            if isinstance(field, AddManyField):
                self.restore_subentities(target, snapshot.revision_id, value)

        logger.info(
            "Revision restored",
            entity_id=target.id,
            revision_id=snapshot.revision_id if snapshot else None,
            fields=keys,
        )

    def restore_subentities(self, target: Entity, revision_id: int, payload: Any) -> None:
        """Restore the sub-entities of a repeating group from a snapshot payload.

        Structured payloads carry each sub-entity's field values, which are
        written back. Legacy id lists re-attach the listed sub-entities to the
        target in their stored order.
        """
        structured = decode_structured(payload)
        if isinstance(structured, dict):
            for subpost in structured.get("subposts") or []:
                sub_id = subpost.get("postId") or subpost.get("id")
                if not sub_id:
                    continue
                try:
                    self.gateway.get_record(sub_id)
                except NotFound:
                    logger.warning("Sub-entity missing, not restored", sub_id=sub_id, revision_id=revision_id)
                    continue
                for name, config in (subpost.get("fieldsConfig") or {}).items():
                    value = config.get("value") if isinstance(config, dict) else config
                    self.gateway.upsert_meta(int(sub_id), name, _text(value))
            return

        for position, sub_id in enumerate(AddBySearchField.ids(payload)):
            try:
                self.gateway.update_record(int(sub_id), {"post_parent": target.id, "menu_order": position})
            except (StoreError, ValueError) as e:
                logger.warning("Sub-entity not re-attached", sub_id=sub_id, revision_id=revision_id, error=str(e))
