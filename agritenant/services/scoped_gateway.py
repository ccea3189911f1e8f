"""
Tenant-scoped data access gateway

Table-like reads and writes bound to one tenant. Reads and mutations are
filtered by tenant_id, inserts are stamped with it, and every call is
validated before it reaches the data store and audited after.
"""

from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Union

import structlog

from agritenant.core.errors import AccessDeniedError, AuthenticationRequiredError, InvalidRequestError
from agritenant.core.events import SecurityEventType
from agritenant.models import TENANT_EXEMPT_COLLECTIONS
from agritenant.services.data_store import DataStore, Record
from agritenant.services.security_validator import SecurityValidator

logger = structlog.get_logger(__name__)

TENANT_COLUMN = "tenant_id"


class TenantScopedTable:
    """One collection seen through a TenantScopedGateway"""

    def __init__(self, gateway: "TenantScopedGateway", collection: str):
        self.gateway = gateway
        self.collection = collection

    async def select(self, columns: Optional[Sequence[str]] = None, filters: Optional[Mapping[str, Any]] = None,
                     order_by: Optional[str] = None) -> List[Record]:
        return await self.gateway.select(self.collection, columns, filters, order_by)

    async def insert(self, values: Union[Record, List[Record]]) -> List[Record]:
        return await self.gateway.insert(self.collection, values)

    async def update(self, values: Record, filters: Optional[Mapping[str, Any]] = None) -> List[Record]:
        return await self.gateway.update(self.collection, values, filters)

    async def delete(self, filters: Optional[Mapping[str, Any]] = None) -> int:
        return await self.gateway.delete(self.collection, filters)


class TenantScopedGateway:
    """Data store access constrained to a single tenant"""

    def __init__(
        self,
        tenant_id: str,
        store: DataStore,
        validator: SecurityValidator,
        user_id: Optional[str] = None,
        exempt_collections: Iterable[str] = TENANT_EXEMPT_COLLECTIONS,
    ):
        if not tenant_id:
            raise InvalidRequestError("No tenant context available")
        self.tenant_id = tenant_id
        self.store = store
        self.validator = validator
        self.user_id = user_id
        self.exempt_collections: FrozenSet[str] = frozenset(exempt_collections)

    def table(self, collection: str) -> TenantScopedTable:
        return TenantScopedTable(self, collection)

    def is_exempt(self, collection: str) -> bool:
        return collection in self.exempt_collections

    async def _acting_user_id(self) -> Optional[str]:
        if self.user_id:
            return self.user_id
        user = await self.validator.auth.get_current_user()
        return user.id if user else None

    async def _audit(self, user_id: Optional[str], operation: str, collection: str,
                     error: Optional[str] = None, **details):
        metadata = {"operation": operation, "collection": collection, **details}
        if error is None:
            event_type = SecurityEventType.TENANT_DATA_ACCESS
        else:
            event_type = SecurityEventType.TENANT_DATA_ACCESS_FAILED
            metadata["error"] = error
        await self.validator.log_security_event(
            event_type, user_id=user_id, tenant_id=self.tenant_id, metadata=metadata
        )

    async def _preflight(self, operation: str, collection: str) -> Optional[str]:
        """Validate tenant access before any data store call; returns the acting user id"""
        user_id = await self._acting_user_id()
        check = await self.validator.validate_tenant_access(self.tenant_id, user_id)
        if not check.is_valid and user_id is None:
            # Expired or missing session, refreshable by the caller
            await self._audit(None, operation, collection, error=check.error or "Authentication required")
            logger.warning(f"Gateway {operation} on {collection} has no authenticated user")
            raise AuthenticationRequiredError(check.error or "Authentication required")
        if not check.is_valid:
            await self._audit(user_id, operation, collection, error=check.error or "Access denied")
            logger.warning(f"Gateway {operation} on {collection} denied for tenant {self.tenant_id}")
            raise AccessDeniedError(
                check.error or "Access denied to tenant",
                tenant_id=self.tenant_id,
                user_id=user_id,
            )
        return user_id

    async def _scoped_filters(self, user_id: Optional[str], operation: str, collection: str,
                              filters: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        scoped = dict(filters or {})
        requested = scoped.get(TENANT_COLUMN)
        if requested is not None and requested != self.tenant_id:
            await self.validator.log_security_event(
                SecurityEventType.TENANT_MISMATCH,
                user_id=user_id,
                tenant_id=self.tenant_id,
                metadata={"operation": operation, "collection": collection, "requested_tenant_id": requested},
            )
            await self._audit(user_id, operation, collection, error="Tenant mismatch")
            raise AccessDeniedError(
                "Tenant mismatch", tenant_id=self.tenant_id, user_id=user_id, reason="tenant_mismatch"
            )
        scoped[TENANT_COLUMN] = self.tenant_id
        return scoped

    async def _refuse_exempt_write(self, user_id: Optional[str], operation: str, collection: str):
        if self.is_exempt(collection):
            await self._audit(user_id, operation, collection, error="Shared collection is read-only")
            raise AccessDeniedError(
                f"{collection} is shared across tenants and cannot be modified here",
                tenant_id=self.tenant_id,
                user_id=user_id,
                reason="shared_collection",
            )

    async def select(self, collection: str, columns: Optional[Sequence[str]] = None,
                     filters: Optional[Mapping[str, Any]] = None, order_by: Optional[str] = None) -> List[Record]:
        user_id = await self._preflight("select", collection)
        if self.is_exempt(collection):
            scoped = dict(filters or {})
        else:
            scoped = await self._scoped_filters(user_id, "select", collection, filters)
        try:
            rows = await self.store.select(collection, columns=columns, filters=scoped, order_by=order_by)
        except Exception as e:
            await self._audit(user_id, "select", collection, error=str(e))
            raise
        await self._audit(user_id, "select", collection, row_count=len(rows))
        return rows

    async def insert(self, collection: str, values: Union[Record, List[Record]]) -> List[Record]:
        records = [values] if isinstance(values, Mapping) else list(values or [])
        if not records or not all(isinstance(r, Mapping) for r in records):
            raise InvalidRequestError("Insert requires a record or a list of records")

        user_id = await self._preflight("insert", collection)
        await self._refuse_exempt_write(user_id, "insert", collection)

        stamped = []
        for record in records:
            requested = record.get(TENANT_COLUMN)
            if requested is not None and requested != self.tenant_id:
                logger.warning(f"Overriding tenant_id {requested} on insert into {collection}")
            stamped.append({**record, TENANT_COLUMN: self.tenant_id})

        try:
            rows = await self.store.insert(collection, stamped)
        except Exception as e:
            await self._audit(user_id, "insert", collection, error=str(e))
            raise
        await self._audit(user_id, "insert", collection, row_count=len(rows))
        logger.info(f"Inserted {len(rows)} row(s) into {collection} for tenant {self.tenant_id}")
        return rows

    async def update(self, collection: str, values: Record,
                     filters: Optional[Mapping[str, Any]] = None) -> List[Record]:
        if not isinstance(values, Mapping) or not values:
            raise InvalidRequestError("Update requires at least one value")
        if TENANT_COLUMN in values and values[TENANT_COLUMN] != self.tenant_id:
            raise InvalidRequestError("tenant_id cannot be changed through an update")

        user_id = await self._preflight("update", collection)
        await self._refuse_exempt_write(user_id, "update", collection)
        scoped = await self._scoped_filters(user_id, "update", collection, filters)

        try:
            rows = await self.store.update(collection, dict(values), scoped)
        except Exception as e:
            await self._audit(user_id, "update", collection, error=str(e))
            raise
        await self._audit(user_id, "update", collection, row_count=len(rows))
        logger.info(f"Updated {len(rows)} row(s) in {collection} for tenant {self.tenant_id}")
        return rows

    async def delete(self, collection: str, filters: Optional[Mapping[str, Any]] = None) -> int:
        user_id = await self._preflight("delete", collection)
        await self._refuse_exempt_write(user_id, "delete", collection)
        scoped = await self._scoped_filters(user_id, "delete", collection, filters)

        try:
            count = await self.store.delete(collection, scoped)
        except Exception as e:
            await self._audit(user_id, "delete", collection, error=str(e))
            raise
        await self._audit(user_id, "delete", collection, row_count=count)
        logger.info(f"Deleted {count} row(s) from {collection} for tenant {self.tenant_id}")
        return count
