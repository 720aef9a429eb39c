from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .. import models, schemas
from ..auth import get_current_user
from ..barcodes import EntityKind, encode
from ..deps import get_session
from ..rbac import require_role
from ..records import get_owned, text_filter

router = APIRouter(prefix="/parts", tags=["parts"])

NOT_FOUND = "Pieza no encontrada"


def _detail(part: models.Part) -> schemas.PartDetail:
    return schemas.PartDetail(
        **schemas.PartOut.model_validate(part).model_dump(),
        qr_code=encode(EntityKind.PART, part.id),
    )


@router.get("", response_model=list[schemas.PartOut])
async def list_parts(
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
    q: str | None = Query(default=None, max_length=64),
    category: str | None = Query(default=None, max_length=64),
    compatible_with: str | None = Query(default=None, max_length=64),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    stmt = select(models.Part).where(models.Part.tenant_id == user.tenant_id)
    if category:
        stmt = stmt.where(models.Part.category == category)
    cond = text_filter(q, models.Part.name, models.Part.brand, models.Part.model)
    if cond is not None:
        stmt = stmt.where(cond)
    stmt = stmt.order_by(models.Part.name.asc())
    parts = (await session.execute(stmt)).scalars().all()
    # JSON containment differs per backend; filter compatibility here.
    if compatible_with:
        needle = compatible_with.strip().lower()
        parts = [p for p in parts if any(needle == c.lower() for c in p.compatibility or [])]
    return parts[offset : offset + limit]


@router.post("", response_model=schemas.PartDetail, status_code=201)
async def create_part(
    payload: schemas.PartIn,
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
):
    require_role(user, "worker")
    part = models.Part(tenant_id=user.tenant_id, registered_by=user.id, **payload.model_dump())
    session.add(part)
    await session.commit()
    await session.refresh(part)
    return _detail(part)


@router.get("/{part_id}", response_model=schemas.PartDetail)
async def get_part(
    part_id: str,
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
):
    return _detail(await get_owned(session, models.Part, part_id, user.tenant_id, NOT_FOUND))


@router.patch("/{part_id}", response_model=schemas.PartDetail)
async def update_part(
    part_id: str,
    payload: schemas.PartUpdate,
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
):
    require_role(user, "worker")
    part = await get_owned(session, models.Part, part_id, user.tenant_id, NOT_FOUND)
    for field, value in payload.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(part, field, value)
    part.updated_at = models.utcnow()
    await session.commit()
    await session.refresh(part)
    return _detail(part)
