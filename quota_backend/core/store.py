"""
Generic query interface over the relational store.

Services talk to tables through ``QueryStore`` rather than building SQL at each
call site. Every method returns a ``StoreResult(data, error)`` pair instead of
raising, and every row read back is passed through ``normalize_record`` so
callers always see canonical snake_case keys.

Filters are a mapping of column name to value. A ``__op`` suffix selects a
comparison other than equality::

    {"organization_id": org_id, "is_active": True}
    {"created_at__gte": since, "role__in": ["owner", "admin"]}

``order_by`` takes column names; a leading ``-`` sorts descending.
"""
import logging
import uuid
from typing import Any, Callable, Dict, Iterable, List, Mapping, NamedTuple, Optional, Sequence, Union

from sqlalchemy import Table, and_, func, select, insert, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from quota_backend.core.database import get_db_session, metadata
from quota_backend.core.errors import PersistenceError
from quota_backend.core.records import normalize_record, to_snake


logger = logging.getLogger(__name__)

TableRef = Union[str, Table]

_OPERATORS: Dict[str, Callable[[Any, Any], Any]] = {
    "eq": lambda col, value: col.is_(None) if value is None else col == value,
    "ne": lambda col, value: col.is_not(None) if value is None else col != value,
    "gt": lambda col, value: col > value,
    "gte": lambda col, value: col >= value,
    "lt": lambda col, value: col < value,
    "lte": lambda col, value: col <= value,
    "in": lambda col, value: col.in_(list(value)),
}


class StoreResult(NamedTuple):
    data: Any
    error: Optional[PersistenceError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Any:
        """Return ``data`` or raise the stored ``PersistenceError``."""
        if self.error is not None:
            raise self.error
        return self.data


class QueryStore:
    """select/insert/update/count over SQLAlchemy Core tables."""

    def __init__(self, session_scope: Optional[Callable] = None):
        self._session_scope = session_scope or get_db_session

    # -- helpers -----------------------------------------------------------

    @staticmethod
    def _table(ref: TableRef) -> Table:
        if isinstance(ref, Table):
            return ref
        return metadata.tables[ref]

    @staticmethod
    def _values(table: Table, values: Mapping[str, Any]) -> Dict[str, Any]:
        canonical = normalize_record(values) or {}
        unknown = set(canonical) - set(table.c.keys())
        if unknown:
            raise PersistenceError(f"Unknown column(s) for {table.name}: {', '.join(sorted(unknown))}")
        return canonical

    @staticmethod
    def _conditions(table: Table, filters: Optional[Mapping[str, Any]]) -> List[Any]:
        conditions = []
        for key, value in (filters or {}).items():
            name, _, op = key.partition("__")
            column = table.c.get(to_snake(name))
            if column is None:
                raise PersistenceError(f"Unknown filter column {name!r} for {table.name}")
            operator = _OPERATORS.get(op or "eq")
            if operator is None:
                raise PersistenceError(f"Unsupported filter operator {op!r}")
            conditions.append(operator(column, value))
        return conditions

    @staticmethod
    def _ordering(table: Table, order_by: Optional[Sequence[str]]) -> List[Any]:
        clauses = []
        for term in order_by or ():
            descending = term.startswith("-")
            column = table.c[to_snake(term.lstrip("-"))]
            clauses.append(column.desc() if descending else column.asc())
        return clauses

    @staticmethod
    def _rows(result) -> List[Dict[str, Any]]:
        return [normalize_record(dict(row._mapping)) for row in result]

    def _failure(self, operation: str, table: Table, exc: Exception) -> StoreResult:
        if isinstance(exc, PersistenceError):
            error = exc
        else:
            error = PersistenceError(
                f"{operation} on {table.name} failed: {exc}",
                conflict=isinstance(exc, IntegrityError),
            )
        logger.warning(
            "store.error",
            extra={"error_code": error.code, "table": table.name, "operation": operation, "conflict": error.conflict},
        )
        return StoreResult(None, error)

    # -- queries -----------------------------------------------------------

    def select(
        self,
        table: TableRef,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        columns: Optional[Iterable[str]] = None,
        order_by: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> StoreResult:
        tbl = self._table(table)
        try:
            cols = [tbl.c[to_snake(c)] for c in columns] if columns else [tbl]
            stmt = select(*cols)
            conditions = self._conditions(tbl, filters)
            if conditions:
                stmt = stmt.where(and_(*conditions))
            ordering = self._ordering(tbl, order_by)
            if ordering:
                stmt = stmt.order_by(*ordering)
            if limit is not None:
                stmt = stmt.limit(limit)
            if offset:
                stmt = stmt.offset(offset)
            with self._session_scope() as session:
                return StoreResult(self._rows(session.execute(stmt)))
        except (SQLAlchemyError, PersistenceError, KeyError) as exc:
            return self._failure("select", tbl, exc)

    def select_one(
        self,
        table: TableRef,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        columns: Optional[Iterable[str]] = None,
        order_by: Optional[Sequence[str]] = None,
    ) -> StoreResult:
        """Like ``select`` but returns the first row or ``None``."""
        rows, error = self.select(table, filters, columns=columns, order_by=order_by, limit=1)
        if error:
            return StoreResult(None, error)
        return StoreResult(rows[0] if rows else None)

    def insert(self, table: TableRef, values: Mapping[str, Any]) -> StoreResult:
        """Insert one row and return it as stored (server defaults included)."""
        tbl = self._table(table)
        try:
            row_values = self._values(tbl, values)
            if "id" in tbl.c and not row_values.get("id"):
                row_values["id"] = str(uuid.uuid4())
            with self._session_scope() as session:
                session.execute(insert(tbl).values(**row_values))
                if "id" not in tbl.c:
                    return StoreResult(row_values)
                stored = session.execute(select(tbl).where(tbl.c.id == row_values["id"]))
                return StoreResult(self._rows(stored)[0])
        except (SQLAlchemyError, PersistenceError) as exc:
            return self._failure("insert", tbl, exc)

    def update(self, table: TableRef, filters: Mapping[str, Any], values: Mapping[str, Any]) -> StoreResult:
        """Update matching rows and return them as stored after the update."""
        tbl = self._table(table)
        try:
            conditions = self._conditions(tbl, filters)
            if not conditions:
                raise PersistenceError(f"Refusing unfiltered update on {tbl.name}")
            row_values = self._values(tbl, values)
            with self._session_scope() as session:
                ids = [r[0] for r in session.execute(select(tbl.c.id).where(and_(*conditions)))]
                if not ids:
                    return StoreResult([])
                session.execute(update(tbl).where(tbl.c.id.in_(ids)).values(**row_values))
                stored = session.execute(select(tbl).where(tbl.c.id.in_(ids)))
                return StoreResult(self._rows(stored))
        except (SQLAlchemyError, PersistenceError) as exc:
            return self._failure("update", tbl, exc)

    def count(self, table: TableRef, filters: Optional[Mapping[str, Any]] = None) -> StoreResult:
        tbl = self._table(table)
        try:
            stmt = select(func.count()).select_from(tbl)
            conditions = self._conditions(tbl, filters)
            if conditions:
                stmt = stmt.where(and_(*conditions))
            with self._session_scope() as session:
                return StoreResult(int(session.execute(stmt).scalar() or 0))
        except (SQLAlchemyError, PersistenceError) as exc:
            return self._failure("count", tbl, exc)

    def sum(self, table: TableRef, column: str, filters: Optional[Mapping[str, Any]] = None) -> StoreResult:
        tbl = self._table(table)
        try:
            stmt = select(func.coalesce(func.sum(tbl.c[to_snake(column)]), 0))
            conditions = self._conditions(tbl, filters)
            if conditions:
                stmt = stmt.where(and_(*conditions))
            with self._session_scope() as session:
                return StoreResult(int(session.execute(stmt).scalar() or 0))
        except (SQLAlchemyError, PersistenceError, KeyError) as exc:
            return self._failure("sum", tbl, exc)


_store: Optional[QueryStore] = None


def get_store() -> QueryStore:
    """Process-wide default store."""
    global _store
    if _store is None:
        _store = QueryStore()
    return _store


def set_store(store: Optional[QueryStore]) -> None:
    """Swap the default store (tests inject failing stores through this)."""
    global _store
    _store = store
