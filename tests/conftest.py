"""Shared fixtures."""

from datetime import datetime

import pytest

from content_mapper.gateways import MemoryGateway
from content_mapper.hooks import ContentHooks
from content_mapper.mapper import EntityMapper
from content_mapper.query import QueryCompiler
from content_mapper.revisions import RevisionDiffer
from content_mapper.schema import SchemaRegistry

SCHEMA = {
    "types": {
        "sauce": {
            "fields": {
                "heat": "text",
                "priority": {"type": "number", "default": 0},
                "color": {"type": "select", "options": {"r": "Red", "g": "Green"}},
                "featured": "checkbox",
                "website": "link",
                "related": {"type": "add-by-search", "label": "Related Sauces"},
                "ingredients": {
                    "type": "add-many",
                    "variations": {"default": {"fields": {"name": "text", "amount": "number"}}},
                },
            },
            "taxonomies": ["origin", {"label": "Hot Sauces"}, {"key": "brand", "fields": {"country": "text"}}],
        },
        "ingredient": {"fields": {"amount": "number"}},
    }
}

FIXED_NOW = datetime(2024, 5, 1, 12, 30, 0)


@pytest.fixture
def registry() -> SchemaRegistry:
    return SchemaRegistry.from_mapping(SCHEMA)


@pytest.fixture
def gateway() -> MemoryGateway:
    return MemoryGateway()


@pytest.fixture
def mapper(registry: SchemaRegistry, gateway: MemoryGateway) -> EntityMapper:
    return EntityMapper(registry, gateway, author_id=1, clock=lambda: FIXED_NOW)


@pytest.fixture
def compiler(registry: SchemaRegistry, gateway: MemoryGateway, mapper: EntityMapper) -> QueryCompiler:
    return QueryCompiler(registry, gateway, mapper)


@pytest.fixture
def differ(registry: SchemaRegistry, gateway: MemoryGateway) -> RevisionDiffer:
    return RevisionDiffer(registry, gateway)


@pytest.fixture
def hooks(registry: SchemaRegistry, gateway: MemoryGateway, mapper: EntityMapper, differ: RevisionDiffer) -> ContentHooks:
    return ContentHooks(registry, gateway, mapper, differ)
