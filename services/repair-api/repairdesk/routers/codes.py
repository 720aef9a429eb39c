from fastapi import APIRouter, Depends, HTTPException, Response

from .. import schemas
from ..auth import get_current_user
from ..barcode_resolver import EntityResolver
from ..barcodes import EntityKind, EntityReference, encode
from ..core.config import settings
from ..deps import get_resolver
from ..errors import BarcodeError, ScanError
from ..qr_image import render_qr_png
from .scanning import scan_error_status

router = APIRouter(prefix="/codes", tags=["codes"])


async def authorized_reference(
    resolver: EntityResolver, kind: EntityKind, entity_id: str, tenant_id: str
) -> tuple[EntityReference, str]:
    """Encode first (rejects ids that cannot be encoded), then check ownership."""
    try:
        code = encode(kind, entity_id)
        reference = await resolver.resolve_and_authorize(kind, entity_id, tenant_id, hydrate=False)
    except BarcodeError as exc:
        raise HTTPException(status_code=400, detail=exc.to_detail()) from exc
    except ScanError as exc:
        raise HTTPException(status_code=scan_error_status(exc), detail=exc.to_detail()) from exc
    return reference, code


@router.get("/{kind}/{entity_id}", response_model=schemas.CodeOut)
async def get_code(
    kind: EntityKind,
    entity_id: str,
    resolver: EntityResolver = Depends(get_resolver),
    user=Depends(get_current_user),
) -> schemas.CodeOut:
    _, code = await authorized_reference(resolver, kind, entity_id, user.tenant_id)
    return schemas.CodeOut(kind=kind, id=entity_id, code=code)


@router.get("/{kind}/{entity_id}/qr.png", response_class=Response)
async def get_code_image(
    kind: EntityKind,
    entity_id: str,
    resolver: EntityResolver = Depends(get_resolver),
    user=Depends(get_current_user),
) -> Response:
    _, code = await authorized_reference(resolver, kind, entity_id, user.tenant_id)
    png = render_qr_png(code, box_size=settings.QR_BOX_SIZE, border=settings.QR_BORDER)
    return Response(
        content=png,
        media_type="image/png",
        headers={"Content-Disposition": f'inline; filename="{kind.value}-{entity_id}.png"'},
    )
