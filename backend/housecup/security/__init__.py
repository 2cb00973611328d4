from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Literal, Optional

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError, jwt

from housecup.core.errors import Unauthorized
from housecup.core.settings import get_settings

Role = Literal["admin", "house_admin", "voter"]
ROLES = ("admin", "house_admin", "voter")

ACCESS_TOKEN_EXPIRE_MINUTES = 60


@dataclass(frozen=True)
class Identity:
    """The already-authenticated caller, as issued by the identity provider."""

    user_id: str
    role: Role
    house_id: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def create_access_token(identity: Identity, expires_delta: Optional[timedelta] = None) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    claims = {
        "sub": identity.user_id,
        "role": identity.role,
        "house_id": identity.house_id,
        "iat": now,
        "exp": now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)),
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def _parse_jwt_token(token: str) -> Optional[Identity]:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None

    user_id = payload.get("sub")
    role = payload.get("role")
    house_id = payload.get("house_id")
    if isinstance(user_id, str) and user_id and role in ROLES:
        return Identity(user_id=user_id, role=role, house_id=str(house_id) if house_id else None)
    return None


def _parse_dev_token(token: str) -> Optional[Identity]:
    # role:user_id[:house_id], only when ALLOW_DEV_TOKENS=1
    parts = token.split(":")
    if len(parts) not in (2, 3):
        return None
    role, user_id = parts[0], parts[1]
    house_id = parts[2] if len(parts) == 3 and parts[2] else None
    if role in ROLES and user_id:
        return Identity(user_id=user_id, role=role, house_id=house_id)  # type: ignore[arg-type]
    return None


def identity_from_token(token: Optional[str]) -> Optional[Identity]:
    if not token:
        return None
    identity = _parse_jwt_token(token)
    if identity is None and get_settings().allow_dev_tokens:
        identity = _parse_dev_token(token)
    return identity


def get_current_user(request: Request) -> Identity:
    auth = request.headers.get("authorization", "")
    parts = auth.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        identity = identity_from_token(parts[1])
        if identity is not None:
            return identity
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unauthenticated")


def require_role(*need: Role):
    def _dep(user: Identity = Depends(get_current_user)) -> Identity:
        if user.role not in need:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden")
        return user

    return _dep


def ensure_house_scope(actor: Identity, house_id: Optional[str]) -> None:
    """Admins act everywhere; a house admin only inside their own house."""
    if actor.role == "admin":
        return
    if actor.role == "house_admin" and house_id is not None and house_id == actor.house_id:
        return
    raise Unauthorized("not allowed to act on this house")


__all__ = [
    "Identity",
    "ROLES",
    "Role",
    "create_access_token",
    "ensure_house_scope",
    "get_current_user",
    "identity_from_token",
    "require_role",
]
