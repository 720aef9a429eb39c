import logging

from fastapi import APIRouter, Depends, HTTPException, status

from .. import schemas
from ..auth import get_current_user
from ..barcode_resolver import EntityResolver, NavigationTarget, ScanOutcome
from ..core.config import settings
from ..deps import get_resolver
from ..errors import InvalidTransition, NotFound, ScanError, TransientError
from ..rbac import require_role
from ..scan_session import ScanSession, ScanSessionRegistry

router = APIRouter(prefix="/scan", tags=["scan"])
logger = logging.getLogger(__name__)

scan_sessions = ScanSessionRegistry(
    idle_timeout=settings.SCAN_SESSION_IDLE_S,
    max_per_owner=settings.SCAN_SESSIONS_PER_OWNER,
)

SUPERSEDED_DETAIL = {
    "code": "superseded",
    "message": "La lectura fue reemplazada por un escaneo más reciente.",
    "retry": False,
}


def get_scan_registry() -> ScanSessionRegistry:
    return scan_sessions


def scan_error_status(exc: ScanError) -> int:
    if isinstance(exc, NotFound):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, TransientError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_400_BAD_REQUEST


def _navigation(target: NavigationTarget) -> schemas.NavigationOut:
    return schemas.NavigationOut(
        screen=target.screen,
        kind=target.reference.kind,
        id=target.reference.id,
        payload=target.payload,
    )


def _session_result(session: ScanSession, outcome: ScanOutcome | None = None) -> schemas.ScanSessionResult:
    outcome = outcome or session.last_outcome
    result = schemas.ScanSessionResult(id=session.id, state=session.public_state.value)
    if outcome is not None:
        if outcome.ok:
            result.target = _navigation(outcome.target)
        else:
            result.error = outcome.error.to_detail()
    return result


async def _owned_session(registry: ScanSessionRegistry, sid: str, user) -> ScanSession:
    session = await registry.get(sid, owner_id=user.id)
    if session is None:
        raise HTTPException(status_code=404, detail="Sesión no existe")
    return session


@router.post("/resolve", response_model=schemas.NavigationOut)
async def resolve_code(
    payload: schemas.ScanRequest,
    resolver: EntityResolver = Depends(get_resolver),
    user=Depends(get_current_user),
) -> schemas.NavigationOut:
    require_role(user, "user")
    outcome = await resolver.scan(payload.code, user.tenant_id)
    if not outcome.ok:
        raise HTTPException(status_code=scan_error_status(outcome.error), detail=outcome.error.to_detail())
    return _navigation(outcome.target)


@router.post("/sessions", response_model=schemas.ScanSessionOut, status_code=201)
async def create_scan_session(
    resolver: EntityResolver = Depends(get_resolver),
    registry: ScanSessionRegistry = Depends(get_scan_registry),
    user=Depends(get_current_user),
) -> schemas.ScanSessionOut:
    require_role(user, "user")
    session = ScanSession(resolver, user.tenant_id, owner_id=user.id)
    await session.start()
    await registry.add(session)
    logger.debug("Scan session %s opened for user %s", session.id, user.id)
    return schemas.ScanSessionOut(id=session.id, state=session.public_state.value)


@router.get("/sessions/{sid}", response_model=schemas.ScanSessionResult)
async def get_scan_session(
    sid: str,
    registry: ScanSessionRegistry = Depends(get_scan_registry),
    user=Depends(get_current_user),
) -> schemas.ScanSessionResult:
    return _session_result(await _owned_session(registry, sid, user))


@router.post("/sessions/{sid}/scan", response_model=schemas.ScanSessionResult)
async def scan_in_session(
    sid: str,
    payload: schemas.ScanRequest,
    registry: ScanSessionRegistry = Depends(get_scan_registry),
    user=Depends(get_current_user),
) -> schemas.ScanSessionResult:
    session = await _owned_session(registry, sid, user)
    try:
        outcome = await session.submit(payload.code)
    except InvalidTransition as exc:
        raise HTTPException(status_code=409, detail=f"Sesión en estado {exc.current}") from exc
    if outcome is None:
        raise HTTPException(status_code=409, detail=SUPERSEDED_DETAIL)
    logger.debug("Scan session %s now %s", session.id, session.state.value)
    return _session_result(session, outcome)


@router.post("/sessions/{sid}/retry", response_model=schemas.ScanSessionResult)
async def retry_scan_session(
    sid: str,
    registry: ScanSessionRegistry = Depends(get_scan_registry),
    user=Depends(get_current_user),
) -> schemas.ScanSessionResult:
    session = await _owned_session(registry, sid, user)
    try:
        await session.retry()
    except InvalidTransition as exc:
        raise HTTPException(status_code=409, detail=f"Sesión en estado {exc.current}") from exc
    return schemas.ScanSessionResult(id=session.id, state=session.public_state.value)


@router.post("/sessions/{sid}/start", response_model=schemas.ScanSessionResult)
async def restart_scan_session(
    sid: str,
    registry: ScanSessionRegistry = Depends(get_scan_registry),
    user=Depends(get_current_user),
) -> schemas.ScanSessionResult:
    session = await _owned_session(registry, sid, user)
    try:
        await session.start()
    except InvalidTransition as exc:
        raise HTTPException(status_code=409, detail=f"Sesión en estado {exc.current}") from exc
    return schemas.ScanSessionResult(id=session.id, state=session.public_state.value)


@router.delete("/sessions/{sid}", status_code=204)
async def close_scan_session(
    sid: str,
    registry: ScanSessionRegistry = Depends(get_scan_registry),
    user=Depends(get_current_user),
) -> None:
    await _owned_session(registry, sid, user)
    await registry.discard(sid)
