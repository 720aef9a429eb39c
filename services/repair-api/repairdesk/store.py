"""Entity Store: keyed, tenant-tagged reads over the relational backend.

Every lookup is a fresh query in its own session, so independent lookups can be
awaited concurrently. Nothing is cached.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict
from sqlalchemy import exc as sa_exc
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import models, schemas
from .barcodes import EntityKind

logger = logging.getLogger(__name__)

MODEL_BY_KIND: dict[EntityKind, tuple[type[models.Base], type[BaseModel]]] = {
    EntityKind.REPAIR: (models.Repair, schemas.RepairOut),
    EntityKind.PART: (models.Part, schemas.PartOut),
    EntityKind.EQUIPMENT: (models.Equipment, schemas.EquipmentOut),
}

_BACKEND_ERRORS = (
    sa_exc.OperationalError,
    sa_exc.InterfaceError,
    sa_exc.TimeoutError,
    OSError,
    asyncio.TimeoutError,
)


class StoreUnavailable(RuntimeError):
    """The backend could not answer (network, pool or timeout failure)."""


class EntityRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    tenant_id: str
    fields: dict[str, Any]


@runtime_checkable
class EntityStore(Protocol):
    async def get_by_id(self, kind: EntityKind, entity_id: str) -> EntityRecord | None:
        ...

    async def get_customer(self, customer_id: str) -> EntityRecord | None:
        ...


class SqlEntityStore:
    def __init__(self, maker: async_sessionmaker[AsyncSession], timeout: float | None = 10.0) -> None:
        self._maker = maker
        self._timeout = timeout

    async def get_by_id(self, kind: EntityKind, entity_id: str) -> EntityRecord | None:
        model, schema = MODEL_BY_KIND[EntityKind(kind)]
        return await self._fetch(model, schema, entity_id)

    async def get_customer(self, customer_id: str) -> EntityRecord | None:
        return await self._fetch(models.Customer, schemas.CustomerOut, customer_id)

    async def _fetch(self, model: type[models.Base], schema: type[BaseModel], entity_id: str) -> EntityRecord | None:
        try:
            obj = await asyncio.wait_for(self._get(model, entity_id), self._timeout)
        except _BACKEND_ERRORS as exc:
            logger.warning("Store lookup %s/%s failed: %s", model.__tablename__, entity_id, exc)
            raise StoreUnavailable(str(exc) or type(exc).__name__) from exc
        if obj is None:
            return None
        return EntityRecord(
            id=obj.id,
            tenant_id=obj.tenant_id,
            fields=schema.model_validate(obj).model_dump(mode="json"),
        )

    async def _get(self, model: type[models.Base], entity_id: str) -> Any:
        async with self._maker() as session:
            return await session.get(model, entity_id)
