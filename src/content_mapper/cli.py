"""CLI for content mapper."""

import re
from dataclasses import dataclass
from typing import Annotated, Literal

import structlog
from cyclopts import App, Parameter

from content_mapper.config import Config, get_config
from content_mapper.config_commands import config_app
from content_mapper.gateway import PersistenceGateway
from content_mapper.gateways import MemoryGateway, SqliteGateway
from content_mapper.hooks import ContentHooks
from content_mapper.mapper import EntityMapper
from content_mapper.models import Condition, Entity
from content_mapper.query import QueryCompiler
from content_mapper.revision_commands import revision_app
from content_mapper.schema import SchemaRegistry, load_schema

logger = structlog.get_logger()

app = App(
    help="Content Mapper - declarative content entities over a core/meta/term store",
)

app.command(revision_app)
app.command(config_app)

_CONDITION = re.compile(r"^\s*([\w\-]+)\s*(!=|<>|<=|>=|=|<|>|\s(?:not\s+like|like|not\s+in|in)\s)\s*(.*)$", re.I)


def configure_logging(log_level: str) -> None:
    """Configure structlog with the specified log level."""
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(min_level=log_level.lower()))


@dataclass
class Services:
    """Components wired from config. Use as a context manager to close the store."""

    registry: SchemaRegistry
    gateway: PersistenceGateway
    mapper: EntityMapper
    compiler: QueryCompiler
    hooks: ContentHooks

    def __enter__(self) -> "Services":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.gateway.close()


def get_gateway(config: Config) -> PersistenceGateway:
    """Get the configured gateway."""
    backend = config.get("store.backend")
    if backend == "sqlite":
        return SqliteGateway(config.get_path("store.path"))
    elif backend == "memory":
        return MemoryGateway()
    else:
        raise ValueError(f"Unknown store backend: {backend}")


def get_registry(config: Config) -> SchemaRegistry:
    """Load the configured schema file, or the built-in types when there is none."""
    posts_per_page = config.get_int("posts_per_page")
    path = config.get_path("schema.path")
    if path is None or not path.exists():
        logger.warning("Schema file not found, using built-in types", path=str(path))
        return SchemaRegistry.from_mapping({}, posts_per_page=posts_per_page)
    return load_schema(path, posts_per_page=posts_per_page)


def get_services() -> Services:
    config = get_config()
    registry = get_registry(config)
    gateway = get_gateway(config)
    mapper = EntityMapper(registry, gateway, author_id=config.get_int("author_id"))
    return Services(
        registry=registry,
        gateway=gateway,
        mapper=mapper,
        compiler=QueryCompiler(registry, gateway, mapper),
        hooks=ContentHooks(registry, gateway, mapper),
    )


def parse_condition(text: str) -> Condition:
    """Parse ``key<op>value``, e.g. ``priority>=2`` or ``title like %sauce%``."""
    match = _CONDITION.match(text)
    if not match:
        raise ValueError(f"Cannot parse condition: {text!r}")
    key, compare, value = match.groups()
    compare = " ".join(compare.split()).upper()
    if compare in ("IN", "NOT IN"):
        return Condition(key, [v.strip() for v in value.split(",")], compare)
    return Condition(key, value, compare)


def print_entity(entity: Entity) -> None:
    print(f"Entity: {entity.id} ({entity.real_type})")
    print(f"Title: {entity.title or ''}")
    print(f"Status: {entity.get('post_status', '')}")
    for key, value in entity.meta_fields.items():
        print(f"{key}: {value}")
    for taxonomy, terms in entity.taxonomy_terms.items():
        names = [getattr(term, "name", None) or getattr(term, "title", None) or str(term) for term in terms]
        print(f"{taxonomy}: {', '.join(names)}")


def print_entities(entities: list[Entity]) -> None:
    print(f"Found {len(entities)} entity(ies):\n")
    for entity in entities:
        status_marker = "●" if entity.get("post_status") == "publish" else "○"
        print(f"{status_marker} {entity.id}: {entity.title or ''}")


@app.command
def types() -> None:
    """List registered entity types."""
    registry = get_registry(get_config())
    for name in registry.entity_types():
        definition = registry.class_for(name)
        fields = ", ".join(f"{k}:{f.type}" for k, f in definition.fields.items()) or "-"
        taxonomies = ", ".join(definition.taxonomy_keys()) or "-"
        print(f"{name} ({definition.plural}) fields: {fields}; taxonomies: {taxonomies}")


@app.command
def show(entity_id: int) -> None:
    """Show an entity by ID."""
    with get_services() as services:
        entity = services.mapper.find(entity_id)
        if entity is None:
            print(f"Entity {entity_id} not found")
            return
        print_entity(entity)


@app.command
def query(
    entity_type: str,
    *where: str,
    order_by: str | None = None,
    order: str | None = None,
    limit: int | None = None,
) -> None:
    """List entities of a type matching every condition, e.g. ``priority>=2``."""
    conditions = [parse_condition(text) for text in where]
    with get_services() as services:
        entities = services.compiler.get_by_multiple(
            entity_type, conditions, order_by=order_by, order=order, limit=limit
        )
    print_entities(entities)


@app.command
def page(entity_type: str, number: int = 1, page_size: int | None = None) -> None:
    """Show one page of entities, newest first."""
    with get_services() as services:
        entities = services.compiler.get_page(entity_type, number, page_size)
        total = services.compiler.page_count(entity_type, page_size)
    print(f"Page {number} of {total}")
    print_entities(entities)


@app.command
def pages(entity_type: str, page_size: int | None = None) -> None:
    """Count the pages of published entities."""
    with get_services() as services:
        print(services.compiler.page_count(entity_type, page_size))


@app.command
def delete(entity_id: int, force: bool = False) -> None:
    """Move an entity to the trash, or remove it for good with --force."""
    with get_services() as services:
        if services.mapper.delete(entity_id, bypass_trash=force):
            print(f"Deleted entity {entity_id}" if force else f"Trashed entity {entity_id}")
        else:
            print(f"Entity {entity_id} not found")


@app.command(name="delete-all")
def delete_all(entity_type: str, force: bool = False) -> None:
    """Delete every published entity of a type."""
    with get_services() as services:
        count = services.compiler.delete_all(entity_type, bypass_trash=force)
    print(f"Deleted {count} entity(ies)")


@app.meta.default
def main(
    *tokens: Annotated[str, Parameter(show=False, allow_leading_hyphen=True)],
    log_level: Literal["debug", "info", "warning", "error", "critical"] = "critical",
) -> None:
    """Main entry point with global options."""
    configure_logging(log_level)
    app(tokens)


if __name__ == "__main__":
    app.meta()
