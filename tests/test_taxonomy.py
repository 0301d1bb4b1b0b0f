"""Tests for taxonomy resolution."""

from unittest.mock import MagicMock

import pytest

from content_mapper.errors import NotFound
from content_mapper.gateways import MemoryGateway
from content_mapper.models import Entity, TermRef
from content_mapper.taxonomy import TaxonomyResolver, taxonomy_label


def test_taxonomy_label() -> None:
    assert taxonomy_label("hot-sauces") == "Hot Sauces"


def test_resolve_creates_term_once(gateway: MemoryGateway) -> None:
    """Test that a new name creates one term and later lookups reuse it."""
    resolver = TaxonomyResolver(gateway)

    first = resolver.resolve_term_reference("Spicy", "origin")
    second = resolver.resolve_term_reference("Spicy", "origin")

    assert first == second
    assert len([t for t in gateway.terms.values() if t.name == "Spicy"]) == 1


def test_resolve_ids_pass_through(gateway: MemoryGateway) -> None:
    resolver = TaxonomyResolver(gateway)
    assert resolver.resolve_term_reference(4, "origin") == 4
    assert resolver.resolve_term_reference("4", "origin") == 4
    assert resolver.resolve_term_reference(TermRef(id=9), "origin") == 9
    assert resolver.resolve_term_reference(Entity(entity_type="brand", id=11), "brand") == 11
    assert gateway.terms == {}


def test_resolve_term_ref_by_name(gateway: MemoryGateway) -> None:
    existing = gateway.create_term("Mexico", "origin")
    resolver = TaxonomyResolver(gateway)
    assert resolver.resolve_term_reference(TermRef(name="Mexico"), "origin") == existing.id


def test_free_tagging_names_pass_through() -> None:
    """Test that tag names are left for the store to create."""
    gateway = MagicMock()
    resolver = TaxonomyResolver(gateway)

    assert resolver.resolve_term_reference("smoky", "post_tag") == "smoky"
    gateway.find_term_by_name.assert_not_called()
    gateway.create_term.assert_not_called()


def test_resolve_creates_on_not_found() -> None:
    gateway = MagicMock()
    gateway.find_term_by_name.side_effect = NotFound("missing")
    gateway.create_term.return_value = TermRef(id=21, name="Peru", taxonomy="origin")

    resolver = TaxonomyResolver(gateway)
    assert resolver.resolve_term_reference("Peru", "origin") == 21
    gateway.create_term.assert_called_once_with("Peru", "origin")


def test_resolve_all_deduplicates(gateway: MemoryGateway) -> None:
    resolver = TaxonomyResolver(gateway)
    ids = resolver.resolve_all(["Mexico", 99, "Mexico", "99"], "origin")
    assert ids == [1, 99]


def test_resolve_rejects_fractional_id(gateway: MemoryGateway) -> None:
    resolver = TaxonomyResolver(gateway)
    with pytest.raises(ValueError):
        resolver.resolve_term_reference("4.5", "origin")
    with pytest.raises(ValueError):
        resolver.resolve_term_reference(4.5, "origin")
    assert resolver.resolve_term_reference("4.0", "origin") == 4
    assert gateway.terms == {}
