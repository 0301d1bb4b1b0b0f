"""SQLite gateway implementation.

Core columns, metadata and terms live in separate tables. Every gateway call
runs in autocommit mode, so a save made of several calls is not atomic.
"""

import json
import sqlite3
from collections.abc import Sequence
from pathlib import Path
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

INTEGER_COLUMNS = frozenset({"post_author", "post_parent", "menu_order", "comment_count"})
JSON_COLUMNS = frozenset({"post_category"})
COLUMNS = tuple(key for key in CORE_KEYS if key != ID)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS records (
    ID INTEGER PRIMARY KEY AUTOINCREMENT,
    {columns}
);

CREATE TABLE IF NOT EXISTS meta (
    meta_id INTEGER PRIMARY KEY AUTOINCREMENT,
    record_id INTEGER NOT NULL,
    meta_key TEXT NOT NULL,
    meta_value TEXT
);
CREATE INDEX IF NOT EXISTS meta_record_key ON meta (record_id, meta_key);

CREATE TABLE IF NOT EXISTS terms (
    term_id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    slug TEXT NOT NULL,
    taxonomy TEXT NOT NULL,
    parent INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS term_relationships (
    record_id INTEGER NOT NULL,
    term_id INTEGER NOT NULL,
    term_order INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (record_id, term_id)
);

CREATE TABLE IF NOT EXISTS term_meta (
    meta_id INTEGER PRIMARY KEY AUTOINCREMENT,
    term_id INTEGER NOT NULL,
    meta_key TEXT NOT NULL,
    meta_value TEXT
);
"""

_TERM_FIELDS = {"slug": "t.slug", "name": "t.name", "term_id": "t.term_id", "id": "t.term_id"}


def _column(key: str) -> str:
    if key not in CORE_KEYS:
        raise ValueError(f"Not a core column: {key}")
    return f"r.{key}"


def _compare_sql(expr: str, compare: str, value: Any, numeric: bool = False) -> tuple[str, list[Any]]:
    """Translate one comparison into SQL with bound parameters."""
    compare = validate_compare(compare)

    def bind(v: Any) -> Any:
        if numeric:
            return float(v) if is_numeric(v) else 0.0
        return v

    if compare in ("IN", "NOT IN"):
        options = list(value) if isinstance(value, (list, tuple, set)) else [v.strip() for v in str(value).split(",")]
        if not options:
            return ("0" if compare == "IN" else "1"), []
        placeholders = ", ".join("?" for _ in options)
        return f"{expr} {compare} ({placeholders})", [bind(v) for v in options]
    return f"{expr} {compare} ?", [bind(value)]


class SqliteGateway(PersistenceGateway):
    """Gateway backed by a SQLite database file."""

    def __init__(self, path: str | Path = ":memory:") -> None:
        self.path = str(path)
        logger.debug("Initializing SQLite gateway", path=self.path)
        self.conn = sqlite3.connect(self.path, check_same_thread=False, isolation_level=None)
        self.conn.row_factory = sqlite3.Row
        self._init_schema()
        logger.info("SQLite gateway initialized", path=self.path)

    def _init_schema(self) -> None:
        columns = ",\n    ".join(f"{c} {'INTEGER' if c in INTEGER_COLUMNS else 'TEXT'}" for c in COLUMNS)
        self.conn.executescript(_SCHEMA.format(columns=columns))

    def close(self) -> None:
        self.conn.close()

    def _encode(self, key: str, value: Any) -> Any:
        if key in JSON_COLUMNS and value is not None:
            return json.dumps(value)
        return value

    def _decode(self, key: str, value: Any) -> Any:
        if key in JSON_COLUMNS and isinstance(value, str):
            try:
                return json.loads(value)
            except ValueError:
                return value
        return value

    def _check_columns(self, core_fields: dict[str, Any]) -> dict[str, Any]:
        unknown = set(core_fields) - set(CORE_KEYS)
        if unknown:
            raise StoreError(f"Unknown columns: {sorted(unknown)}")
        return {k: self._encode(k, v) for k, v in core_fields.items() if k != ID}

    def get_record(self, record_id: int) -> Record:
        try:
            row = self.conn.execute("SELECT * FROM records WHERE ID = ?", (int(record_id),)).fetchone()
        except (TypeError, ValueError):
            row = None
        if row is None:
            raise NotFound(f"Record not found: {record_id}")
        fields = {key: self._decode(key, row[key]) for key in COLUMNS if row[key] is not None}
        return Record(id=row[ID], fields=fields)

    def insert_record(self, core_fields: dict[str, Any]) -> int:
        fields = {"post_type": "post", "post_status": "draft"}
        fields.update(self._check_columns(core_fields))
        names = ", ".join(fields)
        placeholders = ", ".join("?" for _ in fields)
        try:
            cursor = self.conn.execute(f"INSERT INTO records ({names}) VALUES ({placeholders})", list(fields.values()))
        except sqlite3.Error as e:
            logger.error("Record insert failed", error=str(e))
            raise StoreError(f"Record insert failed: {e}") from e
        logger.debug("Record inserted", record_id=cursor.lastrowid, post_type=fields["post_type"])
        return cursor.lastrowid

    def update_record(self, record_id: int, core_fields: dict[str, Any]) -> None:
        fields = self._check_columns(core_fields)
        if not fields:
            return
        assignments = ", ".join(f"{k} = ?" for k in fields)
        try:
            cursor = self.conn.execute(
                f"UPDATE records SET {assignments} WHERE ID = ?", [*fields.values(), int(record_id)]
            )
        except sqlite3.Error as e:
            logger.error("Record update failed", record_id=record_id, error=str(e))
            raise StoreError(f"Record update failed: {e}") from e
        if cursor.rowcount == 0:
            raise StoreError(f"Cannot update missing record: {record_id}")

    def delete_record(self, record_id: int, bypass_trash: bool = False) -> bool:
        try:
            record = self.get_record(record_id)
        except NotFound:
            return False

        status = record.fields.get("post_status")
        if not bypass_trash and status != TRASH and record.post_type != REVISION_TYPE:
            self.upsert_meta(record.id, TRASH_STATUS_KEY, status)
            self.update_record(record.id, {"post_status": TRASH})
            logger.debug("Record trashed", record_id=record.id)
            return True

        revisions = [
            row[0]
            for row in self.conn.execute(
                "SELECT ID FROM records WHERE post_type = ? AND post_parent = ?", (REVISION_TYPE, record.id)
            )
        ]
        try:
            for rid in [*revisions, record.id]:
                self.conn.execute("DELETE FROM term_relationships WHERE record_id = ?", (rid,))
                self.conn.execute("DELETE FROM meta WHERE record_id = ?", (rid,))
                self.conn.execute("DELETE FROM records WHERE ID = ?", (rid,))
        except sqlite3.Error as e:
            logger.error("Record delete failed", record_id=record.id, error=str(e))
            raise StoreError(f"Record delete failed: {e}") from e
        logger.debug("Record deleted", record_id=record.id, revisions=revisions)
        return True

    def _meta_rows(self, table: str, id_column: str, owner_id: int) -> dict[str, list[Any]]:
        meta: dict[str, list[Any]] = {}
        rows = self.conn.execute(
            f"SELECT meta_key, meta_value FROM {table} WHERE {id_column} = ? ORDER BY meta_id", (int(owner_id),)
        )
        for row in rows:
            meta.setdefault(row["meta_key"], []).append(row["meta_value"])
        return meta

    def get_meta_all(self, record_id: int) -> dict[str, list[Any]]:
        return self._meta_rows("meta", "record_id", record_id)

    def upsert_meta(self, record_id: int, key: str, value: Any) -> None:
        cursor = self.conn.execute(
            "UPDATE meta SET meta_value = ? WHERE record_id = ? AND meta_key = ?", (value, int(record_id), key)
        )
        if cursor.rowcount == 0:
            self.conn.execute(
                "INSERT INTO meta (record_id, meta_key, meta_value) VALUES (?, ?, ?)", (int(record_id), key, value)
            )

    def delete_meta(self, record_id: int, key: str) -> None:
        self.conn.execute("DELETE FROM meta WHERE record_id = ? AND meta_key = ?", (int(record_id), key))

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
        where = ["r.post_type = ?"]
        params: list[Any] = [entity_type]

        if status is not None:
            where.append("r.post_status = ?")
            params.append(status)

        if include_ids is not None:
            if not include_ids:
                return []
            where.append(f"r.ID IN ({', '.join('?' for _ in include_ids)})")
            params.extend(int(i) for i in include_ids)

        if core_filter:
            clause, clause_params = _compare_sql(_column(core_filter.key), core_filter.compare, core_filter.value)
            where.append(clause)
            params.extend(clause_params)

        if meta_filter:
            value_expr = "CAST(m.meta_value AS REAL)" if meta_filter.numeric else "m.meta_value"
            clause, clause_params = _compare_sql(
                value_expr, meta_filter.compare, meta_filter.value, numeric=meta_filter.numeric
            )
            where.append(f"EXISTS (SELECT 1 FROM meta m WHERE m.record_id = r.ID AND m.meta_key = ? AND {clause})")
            params.extend([meta_filter.key, *clause_params])

        if term_filter:
            field = _TERM_FIELDS.get(term_filter.field)
            if field is None:
                raise ValueError(f"Unsupported term field: {term_filter.field}")
            if not term_filter.terms:
                return []
            placeholders = ", ".join("?" for _ in term_filter.terms)
            where.append(
                "EXISTS (SELECT 1 FROM term_relationships tr JOIN terms t ON t.term_id = tr.term_id "
                f"WHERE tr.record_id = r.ID AND t.taxonomy = ? AND {field} IN ({placeholders}))"
            )
            params.extend([term_filter.taxonomy, *term_filter.terms])

        sql = f"SELECT r.ID FROM records r WHERE {' AND '.join(where)}"

        order_params: list[Any] = []
        if order:
            if order.source == "meta":
                expr = (
                    "(SELECT m.meta_value FROM meta m WHERE m.record_id = r.ID AND m.meta_key = ? "
                    "ORDER BY m.meta_id LIMIT 1)"
                )
                order_params.append(order.key)
            else:
                expr = _column(order.key)
            if order.numeric:
                expr = f"CAST({expr} AS REAL)"
            sql += f" ORDER BY {expr} {order.direction}, r.ID ASC"
        else:
            sql += " ORDER BY r.ID ASC"

        if limit is not None and limit >= 0:
            sql += " LIMIT ? OFFSET ?"
            order_params.extend([limit, offset])
        elif offset:
            sql += " LIMIT -1 OFFSET ?"
            order_params.append(offset)

        logger.debug("Querying ids", entity_type=entity_type, sql=sql)
        return [row[0] for row in self.conn.execute(sql, params + order_params)]

    def _term(self, row: sqlite3.Row) -> TermRef:
        return TermRef(id=row["term_id"], name=row["name"], slug=row["slug"], taxonomy=row["taxonomy"], parent=row["parent"])

    def get_terms_for_entity(self, record_id: int, taxonomy: str) -> list[TermRef]:
        rows = self.conn.execute(
            "SELECT t.* FROM terms t JOIN term_relationships tr ON tr.term_id = t.term_id "
            "WHERE tr.record_id = ? AND t.taxonomy = ? ORDER BY tr.term_order, t.term_id",
            (int(record_id), taxonomy),
        )
        return [self._term(row) for row in rows]

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
            if term_id not in term_ids:
                term_ids.append(term_id)

        self.conn.execute(
            "DELETE FROM term_relationships WHERE record_id = ? "
            "AND term_id IN (SELECT term_id FROM terms WHERE taxonomy = ?)",
            (int(record_id), taxonomy),
        )
        for position, term_id in enumerate(term_ids):
            exists = self.conn.execute(
                "SELECT 1 FROM terms WHERE term_id = ? AND taxonomy = ?", (term_id, taxonomy)
            ).fetchone()
            if exists is None:
                logger.warning("Skipping unknown term", term_id=term_id, taxonomy=taxonomy)
                continue
            self.conn.execute(
                "INSERT OR REPLACE INTO term_relationships (record_id, term_id, term_order) VALUES (?, ?, ?)",
                (int(record_id), term_id, position),
            )

    def find_term_by_name(self, name: str, taxonomy: str) -> TermRef:
        row = self.conn.execute(
            "SELECT * FROM terms WHERE name = ? AND taxonomy = ? ORDER BY term_id LIMIT 1", (name, taxonomy)
        ).fetchone()
        if row is None:
            raise NotFound(f"Term not found: {taxonomy}/{name}")
        return self._term(row)

    def create_term(self, name: str, taxonomy: str) -> TermRef:
        cursor = self.conn.execute(
            "INSERT INTO terms (name, slug, taxonomy) VALUES (?, ?, ?)", (name, machine(name, "-"), taxonomy)
        )
        return TermRef(id=cursor.lastrowid, name=name, slug=machine(name, "-"), taxonomy=taxonomy)

    def get_revision_meta(self, revision_id: int) -> dict[str, list[Any]] | None:
        try:
            record = self.get_record(revision_id)
        except NotFound:
            return None
        if record.post_type != REVISION_TYPE:
            return None
        return self.get_meta_all(revision_id)

    def get_term_meta_all(self, term_id: int) -> dict[str, list[Any]]:
        return self._meta_rows("term_meta", "term_id", term_id)

    def create_revision(self, owner_id: int) -> int:
        """Copy a record and its metadata into a new revision of it."""
        owner = self.get_record(owner_id)
        fields = dict(owner.fields)
        fields.update({"post_type": REVISION_TYPE, "post_status": "inherit", "post_parent": owner.id})
        revision_id = self.insert_record(fields)
        self.conn.execute(
            "INSERT INTO meta (record_id, meta_key, meta_value) "
            "SELECT ?, meta_key, meta_value FROM meta WHERE record_id = ? ORDER BY meta_id",
            (revision_id, owner.id),
        )
        logger.debug("Revision created", owner_id=owner.id, revision_id=revision_id)
        return revision_id
