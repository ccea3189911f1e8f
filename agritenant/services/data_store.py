"""
Relational data store

Generic select/insert/update/delete on named collections with equality
filtering. The scoped gateway and the security validator are policy layers on
top of this; nothing here knows about tenants.
"""

from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Type

from sqlalchemy.exc import DisconnectionError, OperationalError, SQLAlchemyError
from sqlmodel import Session, SQLModel, select
import structlog

from agritenant.core.errors import BackendError, InvalidRequestError, TransientBackendError
from agritenant.core.events import utcnow
from agritenant.models import COLLECTIONS

logger = structlog.get_logger(__name__)

Record = Dict[str, Any]
Filters = Mapping[str, Any]


class DataStore(Protocol):
    async def select(
        self,
        collection: str,
        columns: Optional[Sequence[str]] = None,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
    ) -> List[Record]:
        ...

    async def insert(self, collection: str, records: List[Record]) -> List[Record]:
        ...

    async def update(self, collection: str, values: Record, filters: Filters) -> List[Record]:
        ...

    async def delete(self, collection: str, filters: Filters) -> int:
        ...


class SQLModelDataStore:
    """DataStore backed by a SQLModel session"""

    def __init__(self, session: Session, collections: Optional[Mapping[str, Type[SQLModel]]] = None):
        self.session = session
        self.collections = dict(collections or COLLECTIONS)

    def _model(self, collection: str) -> Type[SQLModel]:
        model = self.collections.get(collection)
        if model is None:
            raise InvalidRequestError(f"Unknown collection: {collection}")
        return model

    def _check_columns(self, model: Type[SQLModel], columns) -> None:
        unknown = [c for c in columns if c not in model.model_fields]
        if unknown:
            raise InvalidRequestError(
                f"Unknown column(s) for {model.__tablename__}: {', '.join(sorted(unknown))}"
            )

    def _where(self, model: Type[SQLModel], stmt, filters: Optional[Filters]):
        if not filters:
            return stmt
        self._check_columns(model, filters.keys())
        for column, value in filters.items():
            attr = getattr(model, column)
            if isinstance(value, (list, tuple, set, frozenset)):
                stmt = stmt.where(attr.in_(list(value)))
            else:
                stmt = stmt.where(attr == value)
        return stmt

    @staticmethod
    def _to_record(row: SQLModel, columns: Optional[Sequence[str]] = None) -> Record:
        data = row.model_dump()
        if columns:
            return {c: data.get(c) for c in columns}
        return data

    def _fail(self, operation: str, collection: str, error: SQLAlchemyError):
        self.session.rollback()
        logger.error(f"Data store {operation} failed on {collection}: {error}")
        if isinstance(error, (OperationalError, DisconnectionError)):
            raise TransientBackendError(f"network error during {operation} on {collection}") from error
        raise BackendError(f"{operation} on {collection} failed: {error}") from error

    async def select(
        self,
        collection: str,
        columns: Optional[Sequence[str]] = None,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
    ) -> List[Record]:
        model = self._model(collection)
        if columns:
            self._check_columns(model, columns)
        stmt = self._where(model, select(model), filters)
        if order_by:
            self._check_columns(model, [order_by])
            stmt = stmt.order_by(getattr(model, order_by))
        try:
            rows = self.session.exec(stmt).all()
        except SQLAlchemyError as e:
            self._fail("select", collection, e)
        return [self._to_record(row, columns) for row in rows]

    async def insert(self, collection: str, records: List[Record]) -> List[Record]:
        model = self._model(collection)
        objects = []
        for record in records:
            self._check_columns(model, record.keys())
            objects.append(model(**record))
        try:
            self.session.add_all(objects)
            self.session.commit()
            for obj in objects:
                self.session.refresh(obj)
        except SQLAlchemyError as e:
            self._fail("insert", collection, e)
        return [self._to_record(obj) for obj in objects]

    async def update(self, collection: str, values: Record, filters: Filters) -> List[Record]:
        model = self._model(collection)
        self._check_columns(model, values.keys())
        stmt = self._where(model, select(model), filters)
        try:
            rows = self.session.exec(stmt).all()
            for row in rows:
                for key, value in values.items():
                    setattr(row, key, value)
                if "updated_at" in model.model_fields and "updated_at" not in values:
                    row.updated_at = utcnow()
                self.session.add(row)
            self.session.commit()
            for row in rows:
                self.session.refresh(row)
        except SQLAlchemyError as e:
            self._fail("update", collection, e)
        return [self._to_record(row) for row in rows]

    async def delete(self, collection: str, filters: Filters) -> int:
        model = self._model(collection)
        stmt = self._where(model, select(model), filters)
        try:
            rows = self.session.exec(stmt).all()
            for row in rows:
                self.session.delete(row)
            self.session.commit()
        except SQLAlchemyError as e:
            self._fail("delete", collection, e)
        return len(rows)
