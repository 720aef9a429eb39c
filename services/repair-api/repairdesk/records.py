from typing import TypeVar

from fastapi import HTTPException
from sqlalchemy import ColumnElement, or_
from sqlalchemy.ext.asyncio import AsyncSession

from . import models

ModelT = TypeVar("ModelT", bound=models.Base)


async def get_owned(session: AsyncSession, model: type[ModelT], entity_id: str, tenant_id: str, detail: str) -> ModelT:
    """Fetch a row of the caller's tenant; rows of other tenants look missing."""
    obj = await session.get(model, entity_id)
    if obj is None or obj.tenant_id != tenant_id:
        raise HTTPException(status_code=404, detail=detail)
    return obj


def text_filter(q: str | None, *columns) -> ColumnElement[bool] | None:
    term = (q or "").strip()
    if not term:
        return None
    pattern = f"%{term}%"
    return or_(*(col.ilike(pattern) for col in columns))
