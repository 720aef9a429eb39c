from __future__ import annotations

import asyncio
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict

from .barcodes import EntityKind, EntityReference, coerce_kind, decode
from .errors import CrossTenantAccess, NotFound, ScanError, TransientError
from .store import EntityRecord, EntityStore, StoreUnavailable

logger = logging.getLogger(__name__)

SCREEN_BY_KIND = {
    EntityKind.REPAIR: "RepairDetail",
    EntityKind.PART: "PartDetail",
    EntityKind.EQUIPMENT: "EquipmentDetail",
}


class NavigationTarget(BaseModel):
    model_config = ConfigDict(frozen=True)

    screen: str
    reference: EntityReference

    @property
    def payload(self) -> dict[str, Any]:
        return self.reference.model_dump(mode="json")


class ScanOutcome(BaseModel):
    """Result handed to the presentation layer: a target to open, or an error to show."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    target: NavigationTarget | None = None
    error: ScanError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class EntityResolver:
    """Turns scanned codes into tenant-checked entity references.

    The caller's tenant is always passed in explicitly. Backend failures are
    retried ``transient_retries`` times before surfacing as TransientError.
    """

    def __init__(self, store: EntityStore, *, transient_retries: int = 1, retry_delay: float = 0.0) -> None:
        self._store = store
        self._transient_retries = max(0, transient_retries)
        self._retry_delay = retry_delay

    async def resolve_and_authorize(
        self, kind: EntityKind | str, entity_id: str, caller_tenant_id: str, *, hydrate: bool = True
    ) -> EntityReference:
        """Ownership-checked reference. ``hydrate=False`` skips the related records of a repair."""
        kind = coerce_kind(kind)
        attempts = self._transient_retries + 1
        last_error: StoreUnavailable | None = None
        for attempt in range(1, attempts + 1):
            try:
                return await self._resolve(kind, entity_id, caller_tenant_id, hydrate)
            except StoreUnavailable as exc:
                last_error = exc
                if attempt < attempts:
                    logger.warning("Store unavailable resolving %s:%s, retrying (%s/%s)", kind.value, entity_id, attempt, attempts)
                    if self._retry_delay:
                        await asyncio.sleep(self._retry_delay)
        logger.error("Giving up resolving %s:%s: %s", kind.value, entity_id, last_error)
        raise TransientError(context={"kind": kind.value, "id": entity_id, "cause": str(last_error)}) from last_error

    async def decode_and_resolve(self, raw: str, caller_tenant_id: str) -> NavigationTarget:
        ref = decode(raw)
        resolved = await self.resolve_and_authorize(ref.kind, ref.id, caller_tenant_id)
        return NavigationTarget(screen=SCREEN_BY_KIND[resolved.kind], reference=resolved)

    async def scan(self, raw: str, caller_tenant_id: str) -> ScanOutcome:
        try:
            target = await self.decode_and_resolve(raw, caller_tenant_id)
        except ScanError as exc:
            logger.info("Scan rejected (%s) for tenant %s", exc.code, caller_tenant_id)
            return ScanOutcome(error=exc)
        logger.info("Scan resolved %s:%s for tenant %s", target.reference.kind.value, target.reference.id, caller_tenant_id)
        return ScanOutcome(target=target)

    async def _resolve(self, kind: EntityKind, entity_id: str, caller_tenant_id: str, hydrate: bool) -> EntityReference:
        record = await self._store.get_by_id(kind, entity_id)
        if record is None:
            raise NotFound(context={"kind": kind.value, "id": entity_id})
        if record.tenant_id != caller_tenant_id:
            logger.warning(
                "Cross-tenant scan of %s:%s (owner=%s caller=%s)", kind.value, entity_id, record.tenant_id, caller_tenant_id
            )
            raise CrossTenantAccess(
                context={"kind": kind.value, "id": entity_id, "owner": record.tenant_id, "caller": caller_tenant_id}
            )
        related: dict[str, dict[str, Any] | None] = {}
        if hydrate and kind is EntityKind.REPAIR:
            related = await self._hydrate_repair(record, caller_tenant_id)
        return EntityReference(
            kind=kind,
            id=record.id,
            tenant_id=record.tenant_id,
            record=record.fields,
            related=related,
        )

    async def _hydrate_repair(self, repair: EntityRecord, caller_tenant_id: str) -> dict[str, dict[str, Any] | None]:
        lookups = [
            asyncio.ensure_future(self._store.get_customer(repair.fields["customer_id"])),
            asyncio.ensure_future(self._store.get_by_id(EntityKind.EQUIPMENT, repair.fields["equipment_id"])),
        ]
        try:
            customer, equipment = await asyncio.gather(*lookups)
        except BaseException:
            # One lookup failed (or we were cancelled): stop the other before retrying.
            for lookup in lookups:
                lookup.cancel()
            await asyncio.gather(*lookups, return_exceptions=True)
            raise
        return {
            "customer": self._owned(customer, "customer", repair, caller_tenant_id),
            "equipment": self._owned(equipment, "equipment", repair, caller_tenant_id),
        }

    @staticmethod
    def _owned(record: EntityRecord | None, name: str, repair: EntityRecord, caller_tenant_id: str) -> dict[str, Any] | None:
        if record is None:
            logger.warning("Repair %s references missing %s", repair.id, name)
            return None
        if record.tenant_id != caller_tenant_id:
            logger.warning("Repair %s references %s %s of another tenant", repair.id, name, record.id)
            return None
        return record.fields
