from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool

from .. import schemas
from ..auth import get_current_user
from ..barcode_resolver import EntityResolver
from ..core.config import settings
from ..deps import get_resolver
from ..rbac import require_role
from ..services import zpl_print
from ..zpl import LABEL_SIZES, render_qr_label
from .codes import authorized_reference

router = APIRouter(prefix="/labels", tags=["labels"])
logger = logging.getLogger(__name__)


@router.get("/config")
def label_config():
    return {
        "mode": settings.PRINTER_MODE,
        "host": settings.PRINTER_HOST,
        "port": settings.PRINTER_PORT,
        "company": settings.LABEL_COMPANY,
        "sizes": {name: cfg["mm"] for name, cfg in LABEL_SIZES.items()},
    }


async def _render(payload: schemas.LabelPayload, resolver: EntityResolver, user) -> tuple[str, str]:
    _, code = await authorized_reference(resolver, payload.kind, payload.id, user.tenant_id)
    zpl = render_qr_label(
        code,
        payload.kind,
        payload.id,
        size=payload.size,
        copies=payload.copies,
        company=settings.LABEL_COMPANY,
    )
    return code, zpl


@router.post("/preview", response_model=schemas.LabelOut)
async def preview_label(
    payload: schemas.LabelPayload,
    resolver: EntityResolver = Depends(get_resolver),
    user=Depends(get_current_user),
) -> schemas.LabelOut:
    code, zpl = await _render(payload, resolver, user)
    return schemas.LabelOut(
        kind=payload.kind,
        id=payload.id,
        code=code,
        size=payload.size,
        copies=payload.copies,
        mode=settings.PRINTER_MODE,
        status="rendered",
        zpl=zpl,
    )


@router.post("/print", response_model=schemas.LabelOut)
async def print_label(
    payload: schemas.LabelPayload,
    resolver: EntityResolver = Depends(get_resolver),
    user=Depends(get_current_user),
) -> schemas.LabelOut:
    require_role(user, "worker")
    code, zpl = await _render(payload, resolver, user)
    response = schemas.LabelOut(
        kind=payload.kind,
        id=payload.id,
        code=code,
        size=payload.size,
        copies=payload.copies,
        mode=settings.PRINTER_MODE,
        status="rendered",
    )
    if settings.PRINTER_MODE == "network":
        try:
            await run_in_threadpool(
                zpl_print.send_raw_zpl, zpl.encode("utf-8"), settings.PRINTER_HOST, settings.PRINTER_PORT
            )
        except RuntimeError as exc:
            logger.error("Label for %s could not be printed: %s", code, exc)
            raise HTTPException(status_code=502, detail="No se pudo enviar la etiqueta a la impresora") from exc
        response.status = "queued"
    else:
        response.zpl = zpl
    return response
