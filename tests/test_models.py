"""Tests for data models."""

import pytest

from content_mapper.models import Condition, Entity, RevisionSnapshot, TermRef, term_id_of


def test_entity_creation() -> None:
    """Test entity creation with defaults."""
    entity = Entity(entity_type="sauce")
    assert entity.id is None
    assert entity.real_type == "sauce"
    assert entity.core_attributes == {}
    assert entity.meta_fields == {}
    assert entity.taxonomy_terms == {}
    assert entity.is_empty()


def test_entity_set_routes_keys() -> None:
    """Test that set() routes core keys and meta keys to different stores."""
    entity = Entity(entity_type="sauce")
    entity.set("post_title", "Ghost Pepper")
    entity.set("heat", "extreme")
    entity.set("ID", "7")

    assert entity.core_attributes == {"post_title": "Ghost Pepper"}
    assert entity.meta_fields == {"heat": "extreme"}
    assert entity.id == 7
    assert entity.title == "Ghost Pepper"
    assert entity.get("ID") == 7
    assert entity.get("missing", "x") == "x"
    assert entity.has("heat")
    assert not entity.has("color")


def test_entity_id_is_immutable() -> None:
    """Test that a persisted entity keeps its id."""
    entity = Entity(entity_type="sauce", id=3)
    entity.assign_id(3)
    with pytest.raises(ValueError):
        entity.assign_id(4)


def test_entity_terms() -> None:
    """Test term assignment and lookup."""
    entity = Entity(entity_type="sauce")
    entity.set_terms([1, "Spicy"])
    assert entity.get_terms("post_tag") == [1, "Spicy"]

    entity.set_terms([TermRef(id=5, name="Mexico")], "origin")
    entity.set_terms([6], "origin", append=True)
    assert [term_id_of(t) for t in entity.get_terms("origin")] == [5, 6]
    assert entity.has_term(6)
    assert not entity.has_term(9)

    entity.set_terms([2], "origin")
    assert entity.get_terms("origin") == [2]


def test_term_ref_requires_id_or_name() -> None:
    """Test TermRef validation."""
    assert TermRef(id="4").id == 4
    with pytest.raises(ValueError):
        TermRef()


def test_term_id_of() -> None:
    """Test extracting ids from term references."""
    assert term_id_of(3) == 3
    assert term_id_of("12") == 12
    assert term_id_of("Spicy") is None
    assert term_id_of(True) is None
    assert term_id_of(Entity(entity_type="brand", id=8)) == 8


def test_condition_normalizes_compare() -> None:
    """Test that compare operators are upper-cased and validated."""
    assert Condition("title", "%hot%", "like").compare == "LIKE"
    with pytest.raises(ValueError):
        Condition("title", "x", "~=")


def test_condition_coerce() -> None:
    """Test building conditions from mappings and sequences."""
    assert Condition.coerce({"key": "heat", "value": "mild"}) == Condition("heat", "mild", "=")
    assert Condition.coerce(("priority", 2, ">")) == Condition("priority", 2, ">")
    assert Condition.coerce(["heat", "mild"]) == Condition("heat", "mild")


def test_revision_snapshot() -> None:
    """Test snapshot lookups use the first stored value."""
    snapshot = RevisionSnapshot(owner_entity_id=1, revision_id=2, meta_at_snapshot={"heat": ["hot", "mild"], "x": []})
    assert snapshot.has("heat")
    assert snapshot.canonical("heat") == "hot"
    assert snapshot.canonical("x", "none") == "none"
    assert not snapshot.has("color")
