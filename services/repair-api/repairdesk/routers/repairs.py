from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .. import models, schemas
from ..auth import get_current_user
from ..barcodes import EntityKind, encode
from ..deps import get_session
from ..rbac import require_role
from ..records import get_owned, text_filter

router = APIRouter(prefix="/repairs", tags=["repairs"])

NOT_FOUND = "Reparación no encontrada"
CLOSED_STATUSES = {models.RepairStatus.COMPLETED.value, models.RepairStatus.DELIVERED.value}


async def _detail(session: AsyncSession, repair: models.Repair) -> schemas.RepairDetail:
    customer = await session.get(models.Customer, repair.customer_id)
    equipment = await session.get(models.Equipment, repair.equipment_id)
    return schemas.RepairDetail(
        **schemas.RepairOut.model_validate(repair).model_dump(),
        qr_code=encode(EntityKind.REPAIR, repair.id),
        customer=schemas.CustomerOut.model_validate(customer) if customer is not None else None,
        equipment=schemas.EquipmentOut.model_validate(equipment) if equipment is not None else None,
    )


@router.get("", response_model=list[schemas.RepairOut])
async def list_repairs(
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
    q: str | None = Query(default=None, max_length=64),
    status: models.RepairStatus | None = None,
    equipment_id: str | None = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    stmt = select(models.Repair).where(models.Repair.tenant_id == user.tenant_id)
    if status is not None:
        stmt = stmt.where(models.Repair.status == status.value)
    if equipment_id:
        stmt = stmt.where(models.Repair.equipment_id == equipment_id)
    cond = text_filter(q, models.Repair.title, models.Repair.description)
    if cond is not None:
        stmt = stmt.where(cond)
    stmt = stmt.order_by(models.Repair.created_at.desc()).limit(limit).offset(offset)
    return (await session.execute(stmt)).scalars().all()


@router.post("", response_model=schemas.RepairDetail, status_code=201)
async def create_repair(
    payload: schemas.RepairIn,
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
):
    require_role(user, "worker")
    equipment = await get_owned(session, models.Equipment, payload.equipment_id, user.tenant_id, "Equipo no encontrado")
    repair = models.Repair(
        tenant_id=user.tenant_id,
        customer_id=equipment.customer_id,
        registered_by=user.id,
        **payload.model_dump(),
    )
    session.add(repair)
    await session.commit()
    await session.refresh(repair)
    return await _detail(session, repair)


@router.get("/{repair_id}", response_model=schemas.RepairDetail)
async def get_repair(
    repair_id: str,
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
):
    repair = await get_owned(session, models.Repair, repair_id, user.tenant_id, NOT_FOUND)
    return await _detail(session, repair)


@router.patch("/{repair_id}", response_model=schemas.RepairDetail)
async def update_repair(
    repair_id: str,
    payload: schemas.RepairUpdate,
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
):
    require_role(user, "worker")
    repair = await get_owned(session, models.Repair, repair_id, user.tenant_id, NOT_FOUND)
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    for field, value in changes.items():
        setattr(repair, field, value)
    now = models.utcnow()
    if "status" in changes:
        repair.completion_date = now if repair.status in CLOSED_STATUSES else None
    repair.updated_at = now
    await session.commit()
    await session.refresh(repair)
    return await _detail(session, repair)
