import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .. import auth as auth_utils
from .. import models, schemas
from ..models import UserRole
from ..auth import get_current_user
from ..deps import get_session
from ..rbac import require_role
from ..records import get_owned, text_filter

router = APIRouter()
logger = logging.getLogger(__name__)

USER_NOT_FOUND = "Usuario no encontrado"


async def _register_login_attempt(
    session: AsyncSession,
    *,
    username: str,
    success: bool,
    user_id: str | None,
    detail: str | None = None,
) -> None:
    session.add(
        models.Audit(
            entity="auth",
            entity_id=username,
            action="login_success" if success else "login_failed",
            payload_json={"username": username, "success": success, "detail": detail},
            user_id=user_id,
            ts=models.utcnow(),
        )
    )
    await session.commit()


@router.post("/login", response_model=schemas.Token)
async def login(payload: schemas.LoginRequest, session: AsyncSession = Depends(get_session)) -> schemas.Token:
    result = await session.execute(select(models.User).where(models.User.username == payload.username))
    user = result.scalar_one_or_none()
    if user is None or not auth_utils.verify_password(payload.password, user.password_hash):
        await _register_login_attempt(
            session,
            username=payload.username,
            success=False,
            user_id=None,
            detail="Credenciales inválidas",
        )
        logger.info("Failed login for %s", payload.username)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Credenciales inválidas")
    if not user.active:
        await _register_login_attempt(
            session,
            username=payload.username,
            success=False,
            user_id=user.id,
            detail="Usuario inactivo",
        )
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Usuario inactivo")
    token = auth_utils.create_access_token({"sub": user.id, "role": user.role, "tenant": user.tenant_id})
    await _register_login_attempt(
        session,
        username=payload.username,
        success=True,
        user_id=user.id,
    )
    return schemas.Token(access_token=token)


@router.get("/me", response_model=schemas.UserOut)
async def me(user=Depends(get_current_user)) -> schemas.UserOut:
    return schemas.UserOut.model_validate(user)


@router.post("/users", response_model=schemas.UserOut, status_code=201)
async def create_user(
    payload: schemas.UserCreate,
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
) -> schemas.UserOut:
    require_role(user, "admin")
    exists = await session.execute(select(models.User.id).where(models.User.username == payload.username))
    if exists.first() is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="El usuario ya existe")
    new_user = models.User(
        tenant_id=user.tenant_id,
        username=payload.username,
        name=payload.name,
        password_hash=auth_utils.get_password_hash(payload.password),
        role=payload.role.value,
    )
    session.add(new_user)
    await session.commit()
    await session.refresh(new_user)
    logger.info("User %s created in tenant %s by %s", new_user.username, new_user.tenant_id, user.id)
    return schemas.UserOut.model_validate(new_user)


@router.get("/users", response_model=list[schemas.UserOut])
async def list_users(
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
    q: str | None = Query(default=None, max_length=64),
) -> list[schemas.UserOut]:
    require_role(user, "admin")
    stmt = select(models.User).where(models.User.tenant_id == user.tenant_id)
    cond = text_filter(q, models.User.name, models.User.username)
    if cond is not None:
        stmt = stmt.where(cond)
    rows = await session.execute(stmt.order_by(models.User.name.asc()))
    return [schemas.UserOut.model_validate(u) for u in rows.scalars().all()]


@router.patch("/users/{user_id}", response_model=schemas.UserOut)
async def update_user(
    user_id: str,
    payload: schemas.UserUpdate,
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
) -> schemas.UserOut:
    require_role(user, "admin")
    target = await get_owned(session, models.User, user_id, user.tenant_id, USER_NOT_FOUND)
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    demotes_self = changes.get("active") is False or changes.get("role", UserRole.ADMIN) != UserRole.ADMIN
    if target.id == user.id and demotes_self:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No puedes deshabilitarte ni quitarte el rol de administrador",
        )
    if "role" in changes:
        changes["role"] = changes["role"].value
    for field, value in changes.items():
        setattr(target, field, value)
    await session.commit()
    await session.refresh(target)
    logger.info("User %s updated by %s: %s", target.username, user.id, sorted(changes))
    return schemas.UserOut.model_validate(target)


@router.delete("/users/{user_id}", status_code=204)
async def delete_user(
    user_id: str,
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
) -> None:
    require_role(user, "admin")
    target = await get_owned(session, models.User, user_id, user.tenant_id, USER_NOT_FOUND)
    if target.id == user.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No puedes eliminar tu propio usuario")
    # Audit rows outlive the user they mention.
    await session.execute(update(models.Audit).where(models.Audit.user_id == target.id).values(user_id=None))
    await session.delete(target)
    await session.commit()
    logger.info("User %s deleted by %s", target.username, user.id)
