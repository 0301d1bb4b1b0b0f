"""Query compiler: turns field conditions into ordered entity id sets."""

import math
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

import structlog

from content_mapper.errors import UnregisteredType
from content_mapper.gateway import PUBLISHED, CoreFilter, MetaFilter, Order, PersistenceGateway, TermFilter
from content_mapper.mapper import EntityMapper
from content_mapper.models import CORE_KEYS, ID, Condition, Entity
from content_mapper.schema import EntityType, NumberField, SchemaRegistry

logger = structlog.get_logger()

# Short order names accepted alongside column and field keys.
ORDER_ALIASES = {
    "id": ID,
    "date": "post_date",
    "modified": "post_modified",
    "title": "post_title",
    "name": "post_name",
    "author": "post_author",
    "parent": "post_parent",
}

ConditionLike = Condition | Mapping[str, Any] | Sequence[Any]


class QueryCompiler:
    """Resolves conditions over core columns and meta fields for one entity type at a time.

    Conditions are combined with AND only. Store-specific translation of the
    filters happens inside the gateway.
    """

    def __init__(self, registry: SchemaRegistry, gateway: PersistenceGateway, mapper: EntityMapper) -> None:
        self.registry = registry
        self.gateway = gateway
        self.mapper = mapper

    def _type(self, entity_type: str) -> EntityType | None:
        try:
            return self.registry.class_for(entity_type)
        except UnregisteredType:
            logger.warning("Query on unregistered type", entity_type=entity_type)
            return None

    def order_for(self, entity_type: EntityType, order_by: str | None = None, order: str | None = None) -> Order:
        """Build the sort for a listing.

        A meta field key sorts on its stored value, numerically for number
        fields. Without ``order_by`` the type's manual order applies.
        """
        key = order_by or entity_type.default_order_by
        direction = (order or entity_type.default_order).upper()
        field = entity_type.fields.get(key)
        if field is not None:
            return Order(key, direction, source="meta", numeric=isinstance(field, NumberField))
        key = ORDER_ALIASES.get(key, key)
        if key not in CORE_KEYS:
            raise ValueError(f"Cannot order {entity_type.name} by {order_by!r}")
        return Order(key, direction)

    def resolve(
        self,
        entity_type: str,
        condition: ConditionLike,
        order_by: str | None = None,
        order: str | None = None,
        status: str | None = PUBLISHED,
        limit: int | None = None,
    ) -> list[int]:
        """Return the ordered ids of ``entity_type`` that satisfy one condition."""
        definition = self._type(entity_type)
        if definition is None:
            return []
        condition = Condition.coerce(condition)

        if condition.key in CORE_KEYS:
            if order_by is None or ORDER_ALIASES.get(order_by, order_by) in CORE_KEYS:
                sort = Order(ORDER_ALIASES.get(order_by, order_by) if order_by else "post_date", order or "DESC")
            else:
                sort = self.order_for(definition, order_by, order)
            return self.gateway.query_ids(
                entity_type,
                core_filter=CoreFilter(condition.key, condition.value, condition.compare),
                order=sort,
                status=status,
                limit=limit,
            )

        # Meta values are stored as text, so number fields compare numerically by cast.
        field = definition.fields.get(condition.key)
        numeric = isinstance(field, NumberField)
        return self.gateway.query_ids(
            entity_type,
            meta_filter=MetaFilter(condition.key, condition.value, condition.compare, numeric=numeric),
            order=self.order_for(definition, order_by, order),
            status=status,
            limit=limit,
        )

    def resolve_all(
        self, entity_type: str, conditions: Iterable[ConditionLike], status: str | None = PUBLISHED
    ) -> list[int]:
        """Intersect the id sets of every condition, keeping the first condition's order."""
        ids: list[int] | None = None
        for condition in conditions:
            found = self.resolve(entity_type, condition, status=status)
            if ids is None:
                ids = found
            else:
                matched = set(found)
                ids = [i for i in ids if i in matched]
            if not ids:
                logger.debug("No ids left, skipping remaining conditions", entity_type=entity_type)
                return []
        return ids or []

    def get_where(
        self,
        entity_type: str,
        order_by: str | None = None,
        order: str | None = None,
        limit: int | None = None,
        offset: int = 0,
        include_ids: Sequence[int] | None = None,
        term_filter: TermFilter | None = None,
        meta_filter: MetaFilter | None = None,
        status: str | None = PUBLISHED,
        load_terms: bool = True,
    ) -> list[Entity]:
        definition = self._type(entity_type)
        if definition is None:
            return []
        ids = self.gateway.query_ids(
            entity_type,
            meta_filter=meta_filter,
            order=self.order_for(definition, order_by, order),
            status=status,
            term_filter=term_filter,
            include_ids=include_ids,
            limit=limit,
            offset=offset,
        )
        logger.debug("Resolved ids", entity_type=entity_type, count=len(ids))
        return self.mapper.load_many(ids, load_terms)

    def get_all(self, entity_type: str, load_terms: bool = True) -> list[Entity]:
        return self.get_where(entity_type, load_terms=load_terms)

    def get_one_where(self, entity_type: str, **kwargs: Any) -> Entity | None:
        kwargs["limit"] = 1
        result = self.get_where(entity_type, **kwargs)
        return result[0] if result else None

    def get_by(
        self,
        entity_type: str,
        key: str,
        value: Any,
        compare: str = "=",
        order_by: str | None = None,
        order: str | None = None,
        limit: int | None = None,
        status: str | None = PUBLISHED,
        load_terms: bool = True,
    ) -> list[Entity]:
        ids = self.resolve(entity_type, Condition(key, value, compare), order_by, order, status, limit)
        return self.mapper.load_many(ids, load_terms)

    def get_one_by(self, entity_type: str, key: str, value: Any, compare: str = "=", **kwargs: Any) -> Entity | None:
        kwargs["limit"] = 1
        result = self.get_by(entity_type, key, value, compare, **kwargs)
        return result[0] if result else None

    def get_by_multiple(
        self,
        entity_type: str,
        conditions: Iterable[ConditionLike],
        order_by: str | None = None,
        order: str | None = None,
        limit: int | None = None,
        status: str | None = PUBLISHED,
        load_terms: bool = True,
    ) -> list[Entity]:
        """Entities matching every condition, ordered like any other listing."""
        conditions = list(conditions)
        if not conditions:
            return self.get_where(entity_type, order_by, order, limit, status=status, load_terms=load_terms)

        # The limit applies after intersection so it does not cut candidates early.
        ids = self.resolve_all(entity_type, conditions, status=status)
        if not ids:
            return []
        return self.get_where(
            entity_type, order_by, order, limit, include_ids=ids, status=status, load_terms=load_terms
        )

    def get_one_by_multiple(
        self, entity_type: str, conditions: Iterable[ConditionLike], **kwargs: Any
    ) -> Entity | None:
        kwargs["limit"] = 1
        result = self.get_by_multiple(entity_type, conditions, **kwargs)
        return result[0] if result else None

    def get_by_term(
        self,
        entity_type: str,
        taxonomy: str,
        terms: Any,
        field: str = "slug",
        order_by: str | None = None,
        order: str | None = None,
        limit: int | None = None,
        load_terms: bool = True,
    ) -> list[Entity]:
        if not isinstance(terms, (list, tuple, set)):
            terms = [terms]
        term_filter = TermFilter(taxonomy, tuple(terms), field)
        return self.get_where(entity_type, order_by, order, limit, term_filter=term_filter, load_terms=load_terms)

    def get_one_by_term(self, entity_type: str, taxonomy: str, terms: Any, field: str = "slug") -> Entity | None:
        result = self.get_by_term(entity_type, taxonomy, terms, field, limit=1)
        return result[0] if result else None

    def _page_size(self, definition: EntityType, page_size: int | None) -> int:
        size = definition.posts_per_page if page_size is None else page_size
        if size <= 0:
            raise ValueError(f"Page size must be positive: {size}")
        return size

    def get_page(
        self,
        entity_type: str,
        page: int = 1,
        page_size: int | None = None,
        order_by: str = "post_date",
        order: str = "DESC",
        load_terms: bool = True,
    ) -> list[Entity]:
        """One page of entities, newest first by default. Pages start at 1."""
        definition = self._type(entity_type)
        if definition is None:
            return []
        size = self._page_size(definition, page_size)
        offset = (max(page, 1) - 1) * size
        return self.get_where(entity_type, order_by, order, limit=size, offset=offset, load_terms=load_terms)

    def count(self, entity_type: str, status: str | None = PUBLISHED) -> int:
        if self._type(entity_type) is None:
            return 0
        return len(self.gateway.query_ids(entity_type, status=status))

    def page_count(self, entity_type: str, page_size: int | None = None, status: str | None = PUBLISHED) -> int:
        definition = self._type(entity_type)
        if definition is None:
            return 0
        size = self._page_size(definition, page_size)
        return math.ceil(self.count(entity_type, status) / size)

    def delete_all(self, entity_type: str, bypass_trash: bool = False, status: str | None = PUBLISHED) -> int:
        """Delete every entity of a type and return how many were deleted."""
        if self._type(entity_type) is None:
            return 0
        ids = self.gateway.query_ids(entity_type, status=status)
        deleted = sum(1 for entity_id in ids if self.mapper.delete(entity_id, bypass_trash))
        logger.info("Deleted entities", entity_type=entity_type, count=deleted, bypass_trash=bypass_trash)
        return deleted

    def _titles(self, ids: Iterable[int]) -> dict[int, str | None]:
        return {entity.id: entity.title for entity in self.mapper.load_many(ids, load_taxonomies=False)}

    def get_pairs(self, entity_type: str, status: str | None = PUBLISHED) -> dict[int, str | None]:
        """Map ids to titles, ordered by title."""
        if self._type(entity_type) is None:
            return {}
        ids = self.gateway.query_ids(entity_type, order=Order("post_title"), status=status)
        return self._titles(ids)

    def get_pairs_by(self, entity_type: str, key: str, value: Any, compare: str = "=") -> dict[int, str | None]:
        """Map ids to titles for entities matching one condition, ordered by id."""
        return self._titles(self.resolve(entity_type, Condition(key, value, compare), order_by=ID, order="ASC"))
