"""
Record store for the LabFlow workflow

The workflow talks to persistence only through a generic record store that
reads and writes rows by table name and a filter mapping. Rows come back as
plain dicts so the pure workflow code never touches ORM objects.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Optional, Protocol, Sequence, Type

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError, StatementError
from sqlalchemy.orm import Session

from ..core.database import Base
from ..core.exceptions import ConcurrencyConflict, DatabaseException, RecordNotFound, ValidationException
from ..models import Analyte, Order, OrderTest, Patient, Report, Result, ResultValueRecord, TestGroup

logger = logging.getLogger(__name__)

Row = Dict[str, Any]
Filters = Optional[Mapping[str, Any]]


class RecordStore(Protocol):
    """Generic get/insert/update/delete/count interface the workflow depends on"""

    def get(self, table: str, filters: Filters = None, order_by: Optional[Sequence[str]] = None,
            limit: Optional[int] = None) -> List[Row]: ...

    def get_one(self, table: str, filters: Filters) -> Row: ...

    def insert(self, table: str, values: Mapping[str, Any]) -> Row: ...

    def update(self, table: str, filters: Filters, values: Mapping[str, Any]) -> List[Row]: ...

    def delete(self, table: str, filters: Filters) -> int: ...

    def count(self, table: str, filters: Filters = None) -> int: ...

    def transaction(self): ...


TABLES: Dict[str, Type[Base]] = {
    model.__tablename__: model
    for model in (Patient, Order, OrderTest, Result, ResultValueRecord, Report, Analyte, TestGroup)
}

# Unique columns whose collisions mean a concurrent writer got there first
_CONFLICT_COLUMNS = ("sample_id", "results.test_name", "uq_result_order_test")


class SQLAlchemyRecordStore:
    """
    RecordStore backed by a SQLAlchemy session.

    Each write commits on its own unless it runs inside transaction(), in
    which case everything commits together or not at all.
    """

    def __init__(self, session: Session):
        self.session = session
        self._transaction_depth = 0

    def _model(self, table: str) -> Type[Base]:
        try:
            return TABLES[table]
        except KeyError:
            raise ValidationException(f"Unknown table '{table}'")

    def _query(self, model: Type[Base], filters: Filters, statement=None):
        statement = select(model) if statement is None else statement
        for column, value in (filters or {}).items():
            attribute = getattr(model, column, None)
            if attribute is None:
                raise ValidationException(f"Unknown column '{column}' on {model.__tablename__}")
            if isinstance(value, (list, tuple, set, frozenset)):
                statement = statement.where(attribute.in_(list(value)))
            elif value is None:
                statement = statement.where(attribute.is_(None))
            else:
                statement = statement.where(attribute == value)
        return statement

    def _commit(self):
        if self._transaction_depth:
            self.session.flush()
            return
        self.session.commit()

    def _translate_error(self, table: str, error: SQLAlchemyError) -> Exception:
        if isinstance(error, IntegrityError):
            detail = str(error.orig)
            if any(column in detail for column in _CONFLICT_COLUMNS):
                logger.warning(f"Concurrent write detected on {table}: {detail}")
                return ConcurrencyConflict(
                    f"A concurrent write collided on {table} ({detail}); retry the operation"
                )
            return DatabaseException(f"Integrity error on {table}: {detail}", "INTEGRITY_ERROR")
        if isinstance(error, StatementError) and isinstance(error.orig, LookupError):
            return ValidationException(f"Invalid value for {table}: {error.orig}")
        logger.error(f"Database error on {table}: {str(error)}")
        return DatabaseException(f"Database error on {table}: {str(error)}")

    @contextmanager
    def transaction(self) -> Iterator["SQLAlchemyRecordStore"]:
        """Group several writes into a single commit"""
        self._transaction_depth += 1
        try:
            yield self
        except Exception:
            self._transaction_depth -= 1
            if not self._transaction_depth:
                self.session.rollback()
            raise
        self._transaction_depth -= 1
        if not self._transaction_depth:
            try:
                self.session.commit()
            except SQLAlchemyError as e:
                self.session.rollback()
                raise self._translate_error("transaction", e)

    def get(self, table: str, filters: Filters = None, order_by: Optional[Sequence[str]] = None,
            limit: Optional[int] = None) -> List[Row]:
        """Rows of table matching filters; list/tuple filter values match any of them"""
        model = self._model(table)
        statement = self._query(model, filters)
        for column in order_by or ():
            descending = column.startswith("-")
            attribute = getattr(model, column.lstrip("-"))
            statement = statement.order_by(attribute.desc() if descending else attribute)
        if limit:
            statement = statement.limit(limit)
        try:
            return [row.to_dict() for row in self.session.scalars(statement)]
        except SQLAlchemyError as e:
            raise self._translate_error(table, e)

    def get_one(self, table: str, filters: Filters) -> Row:
        rows = self.get(table, filters, limit=1)
        if not rows:
            raise RecordNotFound(table, ", ".join(f"{k}={v}" for k, v in (filters or {}).items()))
        return rows[0]

    def insert(self, table: str, values: Mapping[str, Any]) -> Row:
        model = self._model(table)
        row = model(**dict(values))
        try:
            self.session.add(row)
            self._commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise self._translate_error(table, e)
        logger.debug(f"Inserted into {table}: {row.id}")
        return row.to_dict()

    def update(self, table: str, filters: Filters, values: Mapping[str, Any]) -> List[Row]:
        """Apply values to every matching row and return the updated rows"""
        model = self._model(table)
        try:
            rows = list(self.session.scalars(self._query(model, filters)))
            for row in rows:
                for column, value in values.items():
                    setattr(row, column, value)
            self._commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise self._translate_error(table, e)
        return [row.to_dict() for row in rows]

    def delete(self, table: str, filters: Filters) -> int:
        model = self._model(table)
        try:
            rows = list(self.session.scalars(self._query(model, filters)))
            for row in rows:
                self.session.delete(row)
            self._commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise self._translate_error(table, e)
        return len(rows)

    def count(self, table: str, filters: Filters = None) -> int:
        model = self._model(table)
        statement = self._query(model, filters, select(func.count()).select_from(model))
        try:
            return self.session.scalar(statement) or 0
        except SQLAlchemyError as e:
            raise self._translate_error(table, e)
