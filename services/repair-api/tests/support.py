import asyncio
import datetime as dt
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from repairdesk import models
from repairdesk.barcodes import EntityKind
from repairdesk.store import EntityRecord, StoreUnavailable


class FakeStore:
    """In-memory EntityStore with knobs for failures and slow lookups."""

    def __init__(self) -> None:
        self.records: dict[tuple[EntityKind, str], EntityRecord] = {}
        self.customers: dict[str, EntityRecord] = {}
        self.calls: list[tuple[str, str]] = []
        self.failures = 0
        self.failing_ids: set[str] = set()
        self.gates: dict[str, asyncio.Event] = {}
        self.in_flight = 0
        self.max_in_flight = 0

    def add(self, kind: EntityKind, entity_id: str, tenant_id: str, **fields) -> EntityRecord:
        record = EntityRecord(id=entity_id, tenant_id=tenant_id, fields={"id": entity_id, "tenant_id": tenant_id, **fields})
        self.records[(EntityKind(kind), entity_id)] = record
        return record

    def add_customer(self, customer_id: str, tenant_id: str, **fields) -> EntityRecord:
        record = EntityRecord(
            id=customer_id, tenant_id=tenant_id, fields={"id": customer_id, "tenant_id": tenant_id, **fields}
        )
        self.customers[customer_id] = record
        return record

    def add_repair(self, repair_id: str, tenant_id: str, customer_id: str, equipment_id: str) -> EntityRecord:
        return self.add(
            EntityKind.REPAIR,
            repair_id,
            tenant_id,
            customer_id=customer_id,
            equipment_id=equipment_id,
            title="Pantalla rota",
        )

    def block(self, entity_id: str) -> asyncio.Event:
        gate = asyncio.Event()
        self.gates[entity_id] = gate
        return gate

    async def get_by_id(self, kind: EntityKind, entity_id: str) -> EntityRecord | None:
        self.calls.append((EntityKind(kind).value, entity_id))
        await self._lookup(entity_id)
        return self.records.get((EntityKind(kind), entity_id))

    async def get_customer(self, customer_id: str) -> EntityRecord | None:
        self.calls.append(("customer", customer_id))
        await self._lookup(customer_id)
        return self.customers.get(customer_id)

    async def _lookup(self, entity_id: str) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            gate = self.gates.get(entity_id)
            if gate is not None:
                await gate.wait()
            else:
                await asyncio.sleep(0)
            if entity_id in self.failing_ids:
                raise StoreUnavailable(f"lookup of {entity_id} failed")
            if self.failures > 0:
                self.failures -= 1
                raise StoreUnavailable("backend down")
        finally:
            self.in_flight -= 1


class RecordingDevice:
    def __init__(self) -> None:
        self.held = False
        self.acquired = 0
        self.released = 0

    async def acquire(self) -> None:
        self.held = True
        self.acquired += 1

    async def release(self) -> None:
        self.held = False
        self.released += 1


def sqlite_engine(directory: str) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    path = Path(directory) / "repairdesk-test.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{path}", poolclass=NullPool)
    return engine, async_sessionmaker(engine, expire_on_commit=False)


async def create_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)


async def seed_shop(maker: async_sessionmaker[AsyncSession]) -> dict[str, str]:
    """Two tenants; tenant A owns two users, a customer, equipment, a repair and a part."""
    async with maker() as session:
        tenant_a = models.Tenant(id="tenant-a", name="Taller A")
        tenant_b = models.Tenant(id="tenant-b", name="Taller B")
        session.add_all([tenant_a, tenant_b])
        session.add_all(
            [
                models.User(id="u1", tenant_id="tenant-a", username="admin@a", name="Admin A", password_hash="x", role="admin"),
                models.User(id="u2", tenant_id="tenant-a", username="tecnico@a", name="Técnico A", password_hash="x", role="worker"),
                models.User(id="u9", tenant_id="tenant-b", username="admin@b", name="Admin B", password_hash="x", role="admin"),
            ]
        )
        await session.flush()
        session.add(models.Audit(entity="auth", entity_id="tecnico@a", action="login_success", payload_json={}, user_id="u2"))
        customer = models.Customer(id="cust1", tenant_id="tenant-a", name="Ana Pérez", phone="555-0101")
        foreign_customer = models.Customer(id="cust9", tenant_id="tenant-b", name="Otro", phone="")
        session.add_all([customer, foreign_customer])
        equipment = models.Equipment(
            id="eq1", tenant_id="tenant-a", customer_id="cust1", brand="Lenovo", model="T480", serial_number="SN123"
        )
        session.add(equipment)
        repair = models.Repair(
            id="rep1",
            tenant_id="tenant-a",
            customer_id="cust1",
            equipment_id="eq1",
            title="Cambio de pantalla",
            description="Pantalla rota",
            entry_date=dt.datetime(2025, 1, 10, 9, 30),
        )
        part = models.Part(
            id="abc123",
            tenant_id="tenant-a",
            name="Pantalla 14",
            brand="AUO",
            category="pantallas",
            compatibility=["T480", "T490"],
            quantity=3,
        )
        foreign_part = models.Part(id="part9", tenant_id="tenant-b", name="Teclado", category="teclados")
        session.add_all([repair, part, foreign_part])
        await session.commit()
    return {
        "tenant_a": "tenant-a",
        "tenant_b": "tenant-b",
        "customer": "cust1",
        "equipment": "eq1",
        "repair": "rep1",
        "part": "abc123",
        "foreign_part": "part9",
    }
