"""Data-store collaborator for plan execution.

The executor depends only on the DataStore protocol: typed insert, update,
delete and select scoped by table, predicate and acting user. Predicates are
column equalities; select also accepts ``"<column>__ilike"`` keys, which match
rows whose column contains the value, ignoring case.

SqlAlchemyDataStore implements it over the CRM ORM models. Every operation is
tenant-scoped: the supplied predicate is always conjoined with an ownership
predicate (``user_id`` for user-owned tables, ``client_id`` in the user's
clients for client-owned tables), and inserts get their ownership from the
acting user, never from the supplied values.

Each call commits on its own. Plans are made atomic-in-effect by compensation
(see rollback.py), not by one database transaction spanning all steps.
"""

from __future__ import annotations

from typing import Any, Protocol

from loguru import logger
from sqlalchemy import and_, inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from salesdesk.actions.constants import CLIENT_OWNED_TABLES, USER_OWNED_TABLES
from salesdesk.actions.errors import DataStoreError
from salesdesk.db.models import TABLE_MODELS, Base, Client

Row = dict[str, Any]

CONTAINS_SUFFIX = "__ilike"


class DataStore(Protocol):
    """Narrow contract the executor and duplicate detector rely on."""

    def insert(self, table: str, values: dict[str, Any], *, user_id: str) -> list[Row]: ...

    def update(self, table: str, where: dict[str, Any], values: dict[str, Any], *, user_id: str) -> list[Row]: ...

    def delete(self, table: str, where: dict[str, Any], *, user_id: str) -> list[Row]: ...

    def select(self, table: str, where: dict[str, Any], *, user_id: str) -> list[Row]: ...


def row_to_dict(obj: Base) -> Row:
    """Convert an ORM instance to a plain column -> value dict."""
    return {attr.key: getattr(obj, attr.key) for attr in inspect(obj).mapper.column_attrs}


class SqlAlchemyDataStore:
    """DataStore backed by a SQLAlchemy session."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def _model(self, table: str) -> type[Base]:
        model = TABLE_MODELS.get(table)
        if model is None:
            raise DataStoreError(f"Unknown table: {table}")
        return model

    def _check_columns(self, model: type[Base], table: str, columns: Any) -> None:
        known = {attr.key for attr in inspect(model).column_attrs}
        unknown = sorted(set(columns) - known)
        if unknown:
            raise DataStoreError(f"Unknown column(s) for {table}: {', '.join(unknown)}")

    def _ownership_clause(self, model: type[Base], table: str, user_id: str):
        if table in USER_OWNED_TABLES:
            return model.user_id == user_id
        if table in CLIENT_OWNED_TABLES:
            owned_clients = select(Client.id).where(Client.user_id == user_id)
            return model.client_id.in_(owned_clients)
        raise DataStoreError(f"Table {table} has no ownership rule")

    def _condition(self, model: type[Base], column: str, value: Any):
        if column.endswith(CONTAINS_SUFFIX):
            pattern = str(value).replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            return getattr(model, column.removesuffix(CONTAINS_SUFFIX)).ilike(f"%{pattern}%", escape="\\")
        return getattr(model, column) == value

    def _scoped_query(self, table: str, where: dict[str, Any], user_id: str):
        model = self._model(table)
        self._check_columns(model, table, [column.removesuffix(CONTAINS_SUFFIX) for column in where])
        conditions = [self._condition(model, column, value) for column, value in where.items()]
        conditions.append(self._ownership_clause(model, table, user_id))
        return model, select(model).where(and_(*conditions))

    def _assert_client_owned(self, client_id: Any, user_id: str) -> None:
        owner = self.session.execute(
            select(Client.user_id).where(Client.id == client_id)
        ).scalar_one_or_none()
        if owner != user_id:
            raise DataStoreError(f"Client {client_id} not found")

    def _commit(self, operation: str, table: str) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Data store {operation} on {table} failed: {e}")
            raise DataStoreError(f"{operation} on {table} failed: {e}") from e

    def select(self, table: str, where: dict[str, Any], *, user_id: str) -> list[Row]:
        _, query = self._scoped_query(table, where, user_id)
        try:
            objects = self.session.execute(query).scalars().all()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise DataStoreError(f"select on {table} failed: {e}") from e
        return [row_to_dict(obj) for obj in objects]

    def insert(self, table: str, values: dict[str, Any], *, user_id: str) -> list[Row]:
        model = self._model(table)
        self._check_columns(model, table, values)
        payload = dict(values)
        if table in USER_OWNED_TABLES:
            payload["user_id"] = user_id
        if table == "clients":
            payload.pop("client_id", None)
        elif payload.get("client_id") is not None or table in CLIENT_OWNED_TABLES:
            self._assert_client_owned(payload.get("client_id"), user_id)

        obj = model(**payload)
        try:
            self.session.add(obj)
            self.session.flush()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise DataStoreError(f"insert on {table} failed: {e}") from e
        row = row_to_dict(obj)
        self._commit("insert", table)
        logger.debug(f"Inserted {table} row", table=table, row_id=row.get("id"))
        return [row]

    def update(self, table: str, where: dict[str, Any], values: dict[str, Any], *, user_id: str) -> list[Row]:
        model, query = self._scoped_query(table, where, user_id)
        self._check_columns(model, table, values)
        if "user_id" in values:
            raise DataStoreError("Ownership columns cannot be updated")
        if values.get("client_id") is not None:
            self._assert_client_owned(values["client_id"], user_id)
        try:
            objects = self.session.execute(query).scalars().all()
            for obj in objects:
                for column, value in values.items():
                    setattr(obj, column, value)
            self.session.flush()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise DataStoreError(f"update on {table} failed: {e}") from e
        rows = [row_to_dict(obj) for obj in objects]
        self._commit("update", table)
        return rows

    def delete(self, table: str, where: dict[str, Any], *, user_id: str) -> list[Row]:
        _, query = self._scoped_query(table, where, user_id)
        try:
            objects = self.session.execute(query).scalars().all()
            rows = [row_to_dict(obj) for obj in objects]
            for obj in objects:
                self.session.delete(obj)
            self.session.flush()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise DataStoreError(f"delete on {table} failed: {e}") from e
        self._commit("delete", table)
        return rows
