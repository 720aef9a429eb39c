from fastapi import HTTPException, status

from .models import User, UserRole

ROLE_HIERARCHY = {
    UserRole.USER.value: 0,
    UserRole.WORKER.value: 1,
    UserRole.ADMIN.value: 2,
}


def has_role(user: User, role: str) -> bool:
    required = ROLE_HIERARCHY.get(role)
    current = ROLE_HIERARCHY.get(user.role)
    return required is not None and current is not None and current >= required


def require_role(user: User, role: str) -> None:
    if role not in ROLE_HIERARCHY:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Rol requerido inválido")
    if not has_role(user, role):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="No autorizado")
