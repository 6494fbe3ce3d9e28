"""
Identité de l'appelant, transmise par la passerelle d'authentification en amont.

La passerelle a déjà vérifié l'utilisateur : l'API ne fait que lire les en-têtes
X-User-Id, X-User-Name et X-User-Role.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException

from fellowship.config import settings
from fellowship.schemas.attendance import CurrentUser


class AuthenticationRequired(HTTPException):
    def __init__(self):
        super().__init__(status_code=401, detail="Authentification requise.")


class PermissionDenied(HTTPException):
    def __init__(self):
        super().__init__(status_code=403, detail="Accès réservé aux responsables (admin, chaplain).")


def get_current_user(
    x_user_id: Optional[str] = Header(default=None),
    x_user_name: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> CurrentUser:
    """Dépendance FastAPI : utilisateur vérifié, 401 si l'identité est absente."""
    if not x_user_id or not x_user_id.strip():
        raise AuthenticationRequired()
    return CurrentUser(
        user_id=x_user_id.strip(),
        name=(x_user_name or "").strip(),
        role=(x_user_role or "member").strip().lower(),
    )


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """Dépendance FastAPI : 403 si le rôle n'est pas un rôle de gestion."""
    if user.role not in settings.ADMIN_ROLES:
        raise PermissionDenied()
    return user
