"""
Row Store

Generic select/insert/update by table name and filter, over rows shaped as
plain dicts. The engine never assumes a fixed schema beyond the fields it
reads and writes, which is what lets the telemetry layer check for tables and
columns that may not exist in a given environment.

Filters are {column: value} for equality, {column: (op, value)} with op in
eq, neq, lt, lte, gt, gte, in, is, or {column: [(op, value), ...]} when one
column carries several conditions (a date range).

Implementations:
- SqlDataStore: SQLAlchemy Core on the app engine (this module)
- SupabaseRestStore: PostgREST over httpx (supabase_rest.py)
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import MetaData, Table, and_, inspect, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, NoSuchTableError, OperationalError, SQLAlchemyError

from ..utils.db_helpers import looks_like_missing_table, looks_like_unique_violation

logger = logging.getLogger(__name__)

Row = Dict[str, Any]
Filters = Dict[str, Any]

FILTER_OPERATORS = ("eq", "neq", "lt", "lte", "gt", "gte", "in", "is")


class StoreError(Exception):
    """Any failure talking to the row store."""

    def __init__(self, message: str, table: Optional[str] = None):
        super().__init__(message)
        self.table = table


class StoreNotConfigured(StoreError):
    """The store has no credentials/URL in this environment."""


class StoreUnavailable(StoreError):
    """Network/connection level failure or timeout."""


class TableMissing(StoreError):
    """The table does not exist in this environment."""


class ColumnMissing(StoreError):
    """The row carries a column the table does not have."""


class UniqueViolation(StoreError):
    """Insert collided with a unique constraint."""


def split_filter(value: Any) -> Tuple[str, Any]:
    """Normalize a filter value into (operator, operand)."""
    if isinstance(value, tuple) and len(value) == 2 and value[0] in FILTER_OPERATORS:
        return value[0], value[1]
    if value is None:
        return "is", None
    return "eq", value


def iter_conditions(value: Any) -> List[Tuple[str, Any]]:
    """Every (operator, operand) pair a filter value stands for."""
    if isinstance(value, list) and value and all(
        isinstance(item, tuple) and len(item) == 2 and item[0] in FILTER_OPERATORS for item in value
    ):
        return list(value)
    return [split_filter(value)]


class DataStore(ABC):
    """Async row store interface."""

    @abstractmethod
    async def select_many(
        self,
        table: str,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Row]:
        ...

    async def select_single(self, table: str, filters: Optional[Filters] = None) -> Optional[Row]:
        rows = await self.select_many(table, filters, limit=1)
        return rows[0] if rows else None

    @abstractmethod
    async def insert_single(self, table: str, row: Row) -> Row:
        ...

    @abstractmethod
    async def update_single(self, table: str, filters: Filters, patch: Row) -> Optional[Row]:
        """Patch the first row matching filters. Returns None when nothing matched."""
        ...

    async def close(self) -> None:
        return None


class SqlDataStore(DataStore):
    """
    Row store on a SQLAlchemy engine.

    Declared models (yono.models) are used when the table is known so that
    column defaults (ids, timestamps) apply; anything else is reflected.
    A table counts as present only if it physically exists in the database.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self._present: Dict[str, Table] = {}
        self._reflected = MetaData()

    def _table(self, name: str) -> Table:
        table = self._present.get(name)
        if table is not None:
            return table

        try:
            exists = inspect(self.engine).has_table(name)
        except SQLAlchemyError as e:
            raise StoreUnavailable(str(e), table=name)
        if not exists:
            raise TableMissing(f"relation \"{name}\" does not exist", table=name)

        from ..database import Base
        from .. import models  # noqa: F401

        table = Base.metadata.tables.get(name)
        if table is None:
            try:
                table = Table(name, self._reflected, autoload_with=self.engine)
            except NoSuchTableError:
                raise TableMissing(f"relation \"{name}\" does not exist", table=name)

        self._present[name] = table
        return table

    def _where(self, table: Table, filters: Optional[Filters]):
        clauses = []
        for column_name, raw in (filters or {}).items():
            if column_name not in table.c:
                raise ColumnMissing(f"column {table.name}.{column_name} does not exist", table=table.name)
            column = table.c[column_name]
            for op, value in iter_conditions(raw):
                if op == "eq":
                    clauses.append(column == value)
                elif op == "neq":
                    clauses.append(column != value)
                elif op == "lt":
                    clauses.append(column < value)
                elif op == "lte":
                    clauses.append(column <= value)
                elif op == "gt":
                    clauses.append(column > value)
                elif op == "gte":
                    clauses.append(column >= value)
                elif op == "in":
                    clauses.append(column.in_(list(value)))
                elif op == "is":
                    clauses.append(column.is_(value))
        return and_(*clauses) if clauses else None

    def _translate(self, table_name: str, exc: SQLAlchemyError) -> StoreError:
        message = str(exc.orig) if getattr(exc, "orig", None) is not None else str(exc)
        if isinstance(exc, IntegrityError) and looks_like_unique_violation(message):
            return UniqueViolation(message, table=table_name)
        if looks_like_missing_table(message):
            self._present.pop(table_name, None)
            return TableMissing(message, table=table_name)
        if isinstance(exc, OperationalError):
            return StoreUnavailable(message, table=table_name)
        return StoreError(message, table=table_name)

    # ---- sync bodies (run in the threadpool) ----

    def _select_many_sync(self, table_name, filters, order_by, descending, limit, offset) -> List[Row]:
        table = self._table(table_name)
        stmt = select(table)
        where = self._where(table, filters)
        if where is not None:
            stmt = stmt.where(where)
        if order_by:
            if order_by not in table.c:
                raise ColumnMissing(f"column {table_name}.{order_by} does not exist", table=table_name)
            stmt = stmt.order_by(table.c[order_by].desc() if descending else table.c[order_by].asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)
        try:
            with self.engine.connect() as conn:
                return [dict(r._mapping) for r in conn.execute(stmt)]
        except SQLAlchemyError as e:
            raise self._translate(table_name, e)

    def _insert_single_sync(self, table_name: str, row: Row) -> Row:
        table = self._table(table_name)
        unknown = [key for key in row if key not in table.c]
        if unknown:
            raise ColumnMissing(
                f"column {table_name}.{unknown[0]} does not exist", table=table_name
            )
        try:
            with self.engine.begin() as conn:
                result = conn.execute(table.insert().values(**row))
                pk = result.inserted_primary_key
                pk_filter = and_(*[col == value for col, value in zip(table.primary_key.columns, pk)])
                inserted = conn.execute(select(table).where(pk_filter)).first()
                return dict(inserted._mapping) if inserted is not None else dict(row)
        except SQLAlchemyError as e:
            raise self._translate(table_name, e)

    def _update_single_sync(self, table_name: str, filters: Filters, patch: Row) -> Optional[Row]:
        table = self._table(table_name)
        unknown = [key for key in patch if key not in table.c]
        if unknown:
            raise ColumnMissing(
                f"column {table_name}.{unknown[0]} does not exist", table=table_name
            )
        where = self._where(table, filters)
        pk_columns = list(table.primary_key.columns)
        try:
            with self.engine.begin() as conn:
                stmt = select(*pk_columns)
                if where is not None:
                    stmt = stmt.where(where)
                target = conn.execute(stmt.limit(1)).first()
                if target is None:
                    return None
                pk_filter = and_(*[col == value for col, value in zip(pk_columns, target)])
                # Re-apply the filters so a conditional update is a compare-and-set
                condition = and_(pk_filter, where) if where is not None else pk_filter
                result = conn.execute(update(table).where(condition).values(**patch))
                if result.rowcount == 0:
                    return None
                updated = conn.execute(select(table).where(pk_filter)).first()
                return dict(updated._mapping) if updated is not None else None
        except SQLAlchemyError as e:
            raise self._translate(table_name, e)

    # ---- async interface ----

    async def select_many(
        self,
        table: str,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Row]:
        return await run_in_threadpool(
            self._select_many_sync, table, filters, order_by, descending, limit, offset
        )

    async def insert_single(self, table: str, row: Row) -> Row:
        return await run_in_threadpool(self._insert_single_sync, table, row)

    async def update_single(self, table: str, filters: Filters, patch: Row) -> Optional[Row]:
        return await run_in_threadpool(self._update_single_sync, table, filters, patch)

    async def close(self) -> None:
        self._present.clear()
