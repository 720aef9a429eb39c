from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .. import models, schemas
from ..auth import get_current_user
from ..deps import get_session
from ..rbac import require_role
from ..records import get_owned, text_filter

router = APIRouter(prefix="/customers", tags=["customers"])

NOT_FOUND = "Cliente no encontrado"


@router.get("", response_model=list[schemas.CustomerStats])
async def list_customers(
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
    q: str | None = Query(default=None, max_length=64),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    stmt = select(models.Customer).where(models.Customer.tenant_id == user.tenant_id)
    cond = text_filter(q, models.Customer.name, models.Customer.phone, models.Customer.email)
    if cond is not None:
        stmt = stmt.where(cond)
    stmt = stmt.order_by(models.Customer.name.asc()).limit(limit).offset(offset)
    customers = (await session.execute(stmt)).scalars().all()
    if not customers:
        return []
    ids = [c.id for c in customers]

    eq_rows = await session.execute(
        select(models.Equipment.customer_id, func.count())
        .where(models.Equipment.tenant_id == user.tenant_id, models.Equipment.customer_id.in_(ids))
        .group_by(models.Equipment.customer_id)
    )
    equipment_count = dict(eq_rows.all())

    rep_rows = await session.execute(
        select(models.Repair.customer_id, models.Repair.status, func.count())
        .where(models.Repair.tenant_id == user.tenant_id, models.Repair.customer_id.in_(ids))
        .group_by(models.Repair.customer_id, models.Repair.status)
    )
    repair_count: dict[str, int] = {}
    active: dict[str, int] = {}
    for customer_id, repair_status, count in rep_rows.all():
        repair_count[customer_id] = repair_count.get(customer_id, 0) + count
        if repair_status in models.ACTIVE_REPAIR_STATUSES:
            active[customer_id] = active.get(customer_id, 0) + count

    return [
        schemas.CustomerStats(
            **schemas.CustomerOut.model_validate(c).model_dump(),
            equipment_count=equipment_count.get(c.id, 0),
            repair_count=repair_count.get(c.id, 0),
            active_repairs=active.get(c.id, 0),
        )
        for c in customers
    ]


@router.post("", response_model=schemas.CustomerOut, status_code=201)
async def create_customer(
    payload: schemas.CustomerIn,
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
):
    require_role(user, "worker")
    customer = models.Customer(tenant_id=user.tenant_id, registered_by=user.id, **payload.model_dump())
    session.add(customer)
    await session.commit()
    await session.refresh(customer)
    return customer


@router.get("/{customer_id}", response_model=schemas.CustomerOut)
async def get_customer(
    customer_id: str,
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
):
    return await get_owned(session, models.Customer, customer_id, user.tenant_id, NOT_FOUND)


@router.get("/{customer_id}/equipment", response_model=list[schemas.EquipmentOut])
async def list_customer_equipment(
    customer_id: str,
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
):
    await get_owned(session, models.Customer, customer_id, user.tenant_id, NOT_FOUND)
    rows = await session.execute(
        select(models.Equipment)
        .where(models.Equipment.tenant_id == user.tenant_id, models.Equipment.customer_id == customer_id)
        .order_by(models.Equipment.created_at.desc())
    )
    return rows.scalars().all()
