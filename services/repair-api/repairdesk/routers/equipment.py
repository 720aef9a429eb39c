from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .. import models, schemas
from ..auth import get_current_user
from ..barcodes import EntityKind, encode
from ..deps import get_session
from ..rbac import require_role
from ..records import get_owned, text_filter

router = APIRouter(prefix="/equipment", tags=["equipment"])

NOT_FOUND = "Equipo no encontrado"


@router.get("", response_model=list[schemas.EquipmentOut])
async def list_equipment(
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
    q: str | None = Query(default=None, max_length=64),
    customer_id: str | None = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    stmt = select(models.Equipment).where(models.Equipment.tenant_id == user.tenant_id)
    if customer_id:
        stmt = stmt.where(models.Equipment.customer_id == customer_id)
    cond = text_filter(q, models.Equipment.brand, models.Equipment.model, models.Equipment.serial_number)
    if cond is not None:
        stmt = stmt.where(cond)
    stmt = stmt.order_by(models.Equipment.created_at.desc()).limit(limit).offset(offset)
    return (await session.execute(stmt)).scalars().all()


@router.post("", response_model=schemas.EquipmentOut, status_code=201)
async def create_equipment(
    payload: schemas.EquipmentIn,
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
):
    require_role(user, "worker")
    await get_owned(session, models.Customer, payload.customer_id, user.tenant_id, "Cliente no encontrado")
    equipment = models.Equipment(tenant_id=user.tenant_id, registered_by=user.id, **payload.model_dump())
    session.add(equipment)
    await session.commit()
    await session.refresh(equipment)
    return equipment


@router.get("/{equipment_id}", response_model=schemas.EquipmentDetail)
async def get_equipment(
    equipment_id: str,
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
):
    equipment = await get_owned(session, models.Equipment, equipment_id, user.tenant_id, NOT_FOUND)
    customer = await session.get(models.Customer, equipment.customer_id)
    rows = await session.execute(
        select(models.Repair)
        .where(models.Repair.tenant_id == user.tenant_id, models.Repair.equipment_id == equipment.id)
        .order_by(models.Repair.created_at.desc())
    )
    repairs = rows.scalars().all()
    return schemas.EquipmentDetail(
        **schemas.EquipmentOut.model_validate(equipment).model_dump(),
        qr_code=encode(EntityKind.EQUIPMENT, equipment.id),
        customer=schemas.CustomerOut.model_validate(customer) if customer is not None else None,
        repairs=[schemas.RepairOut.model_validate(r) for r in repairs],
        repair_count=len(repairs),
        active_repairs_count=sum(1 for r in repairs if r.status in models.ACTIVE_REPAIR_STATUSES),
    )


@router.patch("/{equipment_id}", response_model=schemas.EquipmentOut)
async def update_equipment(
    equipment_id: str,
    payload: schemas.EquipmentUpdate,
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
):
    require_role(user, "worker")
    equipment = await get_owned(session, models.Equipment, equipment_id, user.tenant_id, NOT_FOUND)
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "customer_id" in changes:
        await get_owned(session, models.Customer, changes["customer_id"], user.tenant_id, "Cliente no encontrado")
    for field, value in changes.items():
        setattr(equipment, field, value)
    equipment.updated_at = models.utcnow()
    await session.commit()
    await session.refresh(equipment)
    return equipment
