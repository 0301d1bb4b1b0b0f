"""Tests for the entity mapper."""

from unittest.mock import MagicMock

import pytest

from content_mapper.errors import EmptyEntity, NotFound, SaveError, StoreError
from content_mapper.gateways import MemoryGateway
from content_mapper.mapper import EntityMapper
from content_mapper.models import Entity, Record, TermRef
from content_mapper.schema import SchemaRegistry


def make_sauce(**meta: object) -> Entity:
    entity = Entity(entity_type="sauce")
    entity.set("post_title", "Ghost Pepper")
    for key, value in meta.items():
        entity.set(key, value)
    return entity


def test_save_and_load_round_trip(mapper: EntityMapper, gateway: MemoryGateway) -> None:
    """Test that saved fields load back with their declared types."""
    entity = make_sauce(heat="hot", priority=3, featured=True)
    entity.set_terms(["Mexico"], "origin")

    entity_id = mapper.save(entity)

    assert entity_id == entity.id == 1
    record = gateway.get_record(entity_id)
    assert record.post_type == "sauce"
    assert record.fields["post_status"] == "publish"
    assert record.fields["post_author"] == 1
    assert record.fields["post_date"] == "2024-05-01 12:30:00"
    assert gateway.get_meta_all(entity_id) == {"heat": ["hot"], "priority": ["3"], "featured": ["1"]}

    loaded = mapper.load(entity_id)
    assert loaded.title == "Ghost Pepper"
    assert loaded.meta_fields == {"heat": "hot", "priority": 3, "featured": True}
    assert [t.name for t in loaded.get_terms("origin")] == ["Mexico"]


def test_save_replaces_terms_with_ids(mapper: EntityMapper) -> None:
    entity = make_sauce()
    entity.set_terms(["Mexico", "Peru", "Mexico"], "origin")
    mapper.save(entity)
    assert entity.get_terms("origin") == [1, 2]

    entity.set_terms(["Peru"], "origin")
    mapper.save(entity)
    assert [t.id for t in mapper.load(entity.id).get_terms("origin")] == [2]


def test_save_drops_unknown_meta(mapper: EntityMapper, gateway: MemoryGateway) -> None:
    entity = make_sauce(heat="mild", flavour="smoky")
    mapper.save(entity)
    assert "flavour" not in gateway.get_meta_all(entity.id)
    assert entity.meta_fields["flavour"] == "smoky"


def test_save_keeps_given_defaults(mapper: EntityMapper, gateway: MemoryGateway) -> None:
    entity = make_sauce()
    entity.set("post_status", "draft")
    mapper.save(entity)
    assert gateway.get_record(entity.id).fields["post_status"] == "draft"


def test_save_updates_existing(mapper: EntityMapper, gateway: MemoryGateway) -> None:
    entity = make_sauce(heat="mild")
    mapper.save(entity)

    loaded = mapper.load(entity.id)
    loaded.set("heat", "hot")
    loaded.set("post_title", "Reaper")
    assert mapper.save(loaded) == entity.id

    assert len(gateway.records) == 1
    assert gateway.get_record(entity.id).title == "Reaper"
    assert gateway.get_meta_all(entity.id)["heat"] == ["hot"]


def test_save_empty_entity(mapper: EntityMapper) -> None:
    with pytest.raises(EmptyEntity):
        mapper.save(Entity(entity_type="sauce"))


def test_save_unregistered_type(mapper: EntityMapper, gateway: MemoryGateway) -> None:
    entity = Entity(entity_type="recipe")
    entity.set("post_title", "Stew")
    assert mapper.save(entity) is None
    assert gateway.records == {}


def test_save_error_writes_no_meta(registry: SchemaRegistry) -> None:
    """Test that a rejected core write stops the save before any meta write."""
    gateway = MagicMock()
    gateway.insert_record.side_effect = StoreError("disk full")
    mapper = EntityMapper(registry, gateway)

    entity = make_sauce(heat="hot")
    entity.set_terms(["Mexico"], "origin")
    with pytest.raises(SaveError) as exc_info:
        mapper.save(entity)

    assert isinstance(exc_info.value.cause, StoreError)
    assert mapper.last_error is exc_info.value.cause
    gateway.upsert_meta.assert_not_called()
    gateway.set_terms_for_entity.assert_not_called()
    assert entity.id is None


def test_save_rewrites_quirky_title(registry: SchemaRegistry) -> None:
    """Test the follow-up title write for titles with ampersands or quotes."""
    gateway = MagicMock()
    gateway.insert_record.return_value = 5
    mapper = EntityMapper(registry, gateway)

    mapper.save(make_sauce())
    gateway.update_record.assert_not_called()

    entity = Entity(entity_type="sauce")
    entity.set("post_title", "Salt & Pepper")
    mapper.save(entity)
    gateway.update_record.assert_called_once_with(5, {"post_title": "Salt & Pepper"})


def test_save_decodes_links(mapper: EntityMapper, gateway: MemoryGateway) -> None:
    entity = make_sauce(website="https%3A%2F%2Fexample.com%2Fsauce")
    mapper.save(entity)
    assert gateway.get_meta_all(entity.id)["website"] == ["https://example.com/sauce"]


def test_save_exclude_core(mapper: EntityMapper, gateway: MemoryGateway) -> None:
    record_id = gateway.insert_record({"post_type": "sauce", "post_title": "Original"})
    entity = Entity(entity_type="sauce", id=record_id)
    entity.set("post_title", "Changed")
    entity.set("heat", "mild")

    mapper.save(entity, exclude_core=True)

    assert gateway.get_record(record_id).title == "Original"
    assert gateway.get_meta_all(record_id)["heat"] == ["mild"]


def test_load_decodes_title(mapper: EntityMapper, gateway: MemoryGateway) -> None:
    record_id = gateway.insert_record({"post_type": "sauce", "post_title": "Salt &amp; Pepper"})
    assert mapper.load(record_id).title == "Salt & Pepper"


def test_load_ignores_meta_outside_schema(mapper: EntityMapper, gateway: MemoryGateway) -> None:
    record_id = gateway.insert_record({"post_type": "sauce"})
    gateway.upsert_meta(record_id, "_edit_lock", "123")
    gateway.upsert_meta(record_id, "heat", "hot")
    assert mapper.load(record_id).meta_fields == {"heat": "hot"}


def test_load_from_record(mapper: EntityMapper) -> None:
    entity = mapper.load(Record(id=42, fields={"post_type": "sauce", "post_title": "Raw"}), load_taxonomies=False)
    assert entity.id == 42
    assert entity.title == "Raw"


def test_load_missing(mapper: EntityMapper) -> None:
    with pytest.raises(NotFound):
        mapper.load(404)
    assert mapper.find(404) is None
    assert mapper.load_many([404]) == []


def test_load_revision_uses_owner_type(mapper: EntityMapper, gateway: MemoryGateway) -> None:
    """Test that a revision loads with its owner's fields."""
    entity = make_sauce(heat="hot")
    mapper.save(entity)
    revision_id = gateway.create_revision(entity.id)

    revision = mapper.load(revision_id)
    assert revision.entity_type == "revision"
    assert revision.real_type == "sauce"
    assert revision.meta_fields == {"heat": "hot"}


def test_load_typed_taxonomy_terms(mapper: EntityMapper, gateway: MemoryGateway) -> None:
    """Test that terms of a taxonomy with fields load as entities."""
    entity = make_sauce()
    entity.set_terms(["Acme"], "brand")
    mapper.save(entity)
    term_id = entity.get_terms("brand")[0]
    gateway.term_meta[term_id] = {"country": ["MX"], "other": ["x"]}

    brand = mapper.load(entity.id).get_terms("brand")[0]
    assert isinstance(brand, Entity)
    assert brand.entity_type == "brand"
    assert brand.id == term_id
    assert brand.title == "Acme"
    assert brand.get("post_name") == "acme"
    assert brand.meta_fields == {"country": "MX"}


def test_load_terms_deduplicates(mapper: EntityMapper) -> None:
    gateway = MagicMock()
    gateway.get_terms_for_entity.return_value = [TermRef(id=1, name="A"), TermRef(id="1", name="A")]
    mapper.gateway = gateway

    entity = Entity(entity_type="sauce", id=1)
    assert mapper.load_terms(entity)
    assert len(entity.get_terms("origin")) == 1


def test_get_falls_back_to_default(mapper: EntityMapper) -> None:
    entity = make_sauce()
    assert mapper.get(entity, "priority") == 0
    assert mapper.get(entity, "post_title") == "Ghost Pepper"
    assert mapper.get(entity, "heat") is None


def test_number_field_round_trip_from_text(
    mapper: EntityMapper, gateway: MemoryGateway, registry: SchemaRegistry
) -> None:
    """Test that a number submitted as text loads back as the same value."""
    entity = make_sauce(priority="2")
    mapper.save(entity)
    assert gateway.get_meta_all(entity.id)["priority"] == ["2"]

    loaded = mapper.load(entity.id)
    assert loaded.get("priority") == 2
    assert registry.fields_of("sauce")["priority"].same_value(loaded.get("priority"), "2")


def test_link_helpers(mapper: EntityMapper) -> None:
    entity = make_sauce(website='{"href": "https://example.com", "title": "Shop", "target": "_blank"}')
    assert mapper.link_url(entity, "website") == "https://example.com"
    assert mapper.link_part(entity, "website", "body") == "Shop"
    assert mapper.link_part(entity, "website", "target") == "_blank"
    assert mapper.link_url(entity, "heat") is None


def test_delete_trashes_then_removes(mapper: EntityMapper, gateway: MemoryGateway) -> None:
    entity = make_sauce(heat="hot")
    mapper.save(entity)

    assert mapper.delete(entity)
    assert gateway.get_record(entity.id).fields["post_status"] == "trash"
    assert mapper.find(entity.id) is not None

    assert mapper.delete(entity.id)
    assert mapper.find(entity.id) is None
    assert gateway.get_meta_all(entity.id) == {}


def test_delete_bypass_trash(mapper: EntityMapper, gateway: MemoryGateway) -> None:
    entity = make_sauce(heat="hot")
    mapper.save(entity)
    assert mapper.delete(entity, bypass_trash=True)
    assert mapper.find(entity.id) is None


def test_delete_missing(mapper: EntityMapper) -> None:
    assert not mapper.delete(999)
    assert not mapper.delete(make_sauce())
