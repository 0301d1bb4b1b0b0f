"""In-memory gateway implementation."""

import copy
import re
from collections.abc import Sequence
from typing import Any

import structlog

from content_mapper.errors import NotFound, StoreError
from content_mapper.gateway import (
    PUBLISHED,
    TRASH,
    TRASH_STATUS_KEY,
    CoreFilter,
    MetaFilter,
    Order,
    PersistenceGateway,
    TermFilter,
    validate_compare,
)
from content_mapper.models import CORE_KEYS, ID, REVISION_TYPE, Record, TermRef
from content_mapper.text import is_numeric, machine

logger = structlog.get_logger()


def to_number(value: Any) -> float:
    """Cast stored text to a number; non-numeric text casts to zero."""
    if is_numeric(value):
        return float(value)
    return 0.0


def _like(value: Any, pattern: Any) -> bool:
    regex = "".join(
        ".*" if ch == "%" else "." if ch == "_" else re.escape(ch) for ch in str(pattern)
    )
    return re.fullmatch(regex, "" if value is None else str(value), re.IGNORECASE | re.DOTALL) is not None


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [part.strip() for part in str(value).split(",")]


def _comparable(left: Any, right: Any, numeric: bool) -> tuple[Any, Any]:
    # Stored numbers compare numerically, stored text compares as text.
    if numeric:
        return to_number(left), to_number(right)
    if isinstance(left, (int, float)) and not isinstance(left, bool) and is_numeric(right):
        return float(left), float(right)
    return "" if left is None else str(left), "" if right is None else str(right)


def compare_values(left: Any, compare: str, right: Any, numeric: bool = False) -> bool:
    """Evaluate ``left compare right`` the way the SQL store would."""
    compare = validate_compare(compare)
    if compare in ("LIKE", "NOT LIKE"):
        return _like(left, right) == (compare == "LIKE")
    if compare in ("IN", "NOT IN"):
        pairs = (_comparable(left, option, numeric) for option in _as_list(right))
        found = any(a == b for a, b in pairs)
        return found == (compare == "IN")

    a, b = _comparable(left, right, numeric)
    if compare == "=":
        return a == b
    if compare in ("!=", "<>"):
        return a != b
    if compare == "<":
        return a < b
    if compare == "<=":
        return a <= b
    if compare == ">":
        return a > b
    return a >= b


def _sort_key(value: Any, numeric: bool) -> tuple:
    if value is None:
        return (0, 0, 0.0, "")
    if numeric:
        return (1, 0, to_number(value), "")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (1, 0, float(value), "")
    return (1, 1, 0.0, str(value))


class MemoryGateway(PersistenceGateway):
    """Gateway keeping records, metadata and terms in process memory."""

    def __init__(self) -> None:
        self.records: dict[int, dict[str, Any]] = {}
        self.meta: dict[int, dict[str, list[Any]]] = {}
        self.terms: dict[int, TermRef] = {}
        self.term_meta: dict[int, dict[str, list[Any]]] = {}
        self.relationships: dict[tuple[int, str], list[int]] = {}
        self._next_id = 1
        self._next_term_id = 1
        logger.debug("Memory gateway initialized")

    def get_record(self, record_id: int) -> Record:
        try:
            fields = self.records[int(record_id)]
        except (KeyError, TypeError, ValueError):
            raise NotFound(f"Record not found: {record_id}") from None
        return Record(id=int(record_id), fields=copy.deepcopy({k: v for k, v in fields.items() if v is not None}))

    def insert_record(self, core_fields: dict[str, Any]) -> int:
        unknown = set(core_fields) - set(CORE_KEYS)
        if unknown:
            raise StoreError(f"Unknown columns: {sorted(unknown)}")

        record_id = self._next_id
        self._next_id += 1
        fields = {"post_type": "post", "post_status": "draft"}
        fields.update({k: v for k, v in core_fields.items() if k != ID})
        self.records[record_id] = copy.deepcopy(fields)
        logger.debug("Record inserted", record_id=record_id, post_type=fields["post_type"])
        return record_id

    def update_record(self, record_id: int, core_fields: dict[str, Any]) -> None:
        if int(record_id) not in self.records:
            raise StoreError(f"Cannot update missing record: {record_id}")
        unknown = set(core_fields) - set(CORE_KEYS)
        if unknown:
            raise StoreError(f"Unknown columns: {sorted(unknown)}")
        self.records[int(record_id)].update(copy.deepcopy({k: v for k, v in core_fields.items() if k != ID}))

    def delete_record(self, record_id: int, bypass_trash: bool = False) -> bool:
        record_id = int(record_id)
        fields = self.records.get(record_id)
        if fields is None:
            return False

        if not bypass_trash and fields.get("post_status") != TRASH and fields.get("post_type") != REVISION_TYPE:
            self.upsert_meta(record_id, TRASH_STATUS_KEY, fields.get("post_status"))
            fields["post_status"] = TRASH
            logger.debug("Record trashed", record_id=record_id)
            return True

        revisions = [
            rid
            for rid, f in self.records.items()
            if f.get("post_type") == REVISION_TYPE and f.get("post_parent") == record_id
        ]
        for rid in [*revisions, record_id]:
            self.records.pop(rid, None)
            self.meta.pop(rid, None)
            for key in [k for k in self.relationships if k[0] == rid]:
                del self.relationships[key]
        logger.debug("Record deleted", record_id=record_id, revisions=revisions)
        return True

    def get_meta_all(self, record_id: int) -> dict[str, list[Any]]:
        return copy.deepcopy(self.meta.get(int(record_id), {}))

    def upsert_meta(self, record_id: int, key: str, value: Any) -> None:
        self.meta.setdefault(int(record_id), {})[key] = [value]

    def delete_meta(self, record_id: int, key: str) -> None:
        self.meta.get(int(record_id), {}).pop(key, None)

    def query_ids(
        self,
        entity_type: str,
        core_filter: CoreFilter | None = None,
        meta_filter: MetaFilter | None = None,
        order: Order | None = None,
        *,
        status: str | None = PUBLISHED,
        term_filter: TermFilter | None = None,
        include_ids: Sequence[int] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[int]:
        include = {int(i) for i in include_ids} if include_ids is not None else None
        matches = []
        for record_id in sorted(self.records):
            fields = self.records[record_id]
            if fields.get("post_type") != entity_type:
                continue
            if status is not None and fields.get("post_status") != status:
                continue
            if include is not None and record_id not in include:
                continue
            if core_filter and not self._match_core(record_id, fields, core_filter):
                continue
            if meta_filter and not self._match_meta(record_id, meta_filter):
                continue
            if term_filter and not self._match_terms(record_id, term_filter):
                continue
            matches.append(record_id)

        if order:
            matches.sort(
                key=lambda rid: _sort_key(self._order_value(rid, order), order.numeric),
                reverse=order.descending,
            )

        matches = matches[offset:]
        if limit is not None and limit >= 0:
            matches = matches[:limit]
        return matches

    def _match_core(self, record_id: int, fields: dict[str, Any], core_filter: CoreFilter) -> bool:
        value = record_id if core_filter.key == ID else fields.get(core_filter.key)
        return compare_values(value, core_filter.compare, core_filter.value)

    def _match_meta(self, record_id: int, meta_filter: MetaFilter) -> bool:
        values = self.meta.get(record_id, {}).get(meta_filter.key)
        if not values:
            return False
        return any(compare_values(v, meta_filter.compare, meta_filter.value, meta_filter.numeric) for v in values)

    def _match_terms(self, record_id: int, term_filter: TermFilter) -> bool:
        wanted = {str(t) for t in term_filter.terms}
        for term_id in self.relationships.get((record_id, term_filter.taxonomy), []):
            term = self.terms[term_id]
            if term_filter.field in ("term_id", "id"):
                candidate = str(term.id)
            elif term_filter.field == "name":
                candidate = term.name
            else:
                candidate = term.slug
            if candidate in wanted:
                return True
        return False

    def _order_value(self, record_id: int, order: Order) -> Any:
        if order.source == "meta":
            values = self.meta.get(record_id, {}).get(order.key)
            return values[0] if values else None
        if order.key == ID:
            return record_id
        return self.records[record_id].get(order.key)

    def get_terms_for_entity(self, record_id: int, taxonomy: str) -> list[TermRef]:
        return [copy.copy(self.terms[t]) for t in self.relationships.get((int(record_id), taxonomy), [])]

    def set_terms_for_entity(self, record_id: int, taxonomy: str, terms: Sequence[int | str]) -> None:
        term_ids: list[int] = []
        for term in terms:
            if isinstance(term, str) and not is_numeric(term):
                try:
                    term_id = self.find_term_by_name(term, taxonomy).id
                except NotFound:
                    term_id = self.create_term(term, taxonomy).id
            else:
                term_id = int(term)
                if term_id not in self.terms:
                    logger.warning("Skipping unknown term", term_id=term_id, taxonomy=taxonomy)
                    continue
            if term_id not in term_ids:
                term_ids.append(term_id)
        self.relationships[(int(record_id), taxonomy)] = term_ids

    def find_term_by_name(self, name: str, taxonomy: str) -> TermRef:
        for term in self.terms.values():
            if term.taxonomy == taxonomy and term.name == name:
                return copy.copy(term)
        raise NotFound(f"Term not found: {taxonomy}/{name}")

    def create_term(self, name: str, taxonomy: str) -> TermRef:
        term = TermRef(id=self._next_term_id, name=name, slug=machine(name, "-"), taxonomy=taxonomy)
        self._next_term_id += 1
        self.terms[term.id] = term
        return copy.copy(term)

    def get_revision_meta(self, revision_id: int) -> dict[str, list[Any]] | None:
        record = self.records.get(int(revision_id))
        if record is None or record.get("post_type") != REVISION_TYPE:
            return None
        return self.get_meta_all(revision_id)

    def get_term_meta_all(self, term_id: int) -> dict[str, list[Any]]:
        return copy.deepcopy(self.term_meta.get(int(term_id), {}))

    def create_revision(self, owner_id: int) -> int:
        """Copy a record and its metadata into a new revision of it."""
        owner = self.get_record(owner_id)
        fields = dict(owner.fields)
        fields.update({"post_type": REVISION_TYPE, "post_status": "inherit", "post_parent": owner.id})
        revision_id = self.insert_record(fields)
        for key, values in self.get_meta_all(owner_id).items():
            self.meta.setdefault(revision_id, {})[key] = list(values)
        logger.debug("Revision created", owner_id=owner.id, revision_id=revision_id)
        return revision_id
