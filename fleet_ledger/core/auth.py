"""
Lightweight auth helpers for tenant-scoped RBAC checks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from fastapi import Depends, Header, HTTPException, Path

from .config import auth_disabled
from .security import TokenError, decode_access_token


PLATFORM_ADMIN = "PLATFORM_ADMIN"


@dataclass
class UserContext:
    role: str
    user_id: Optional[str] = None
    username: Optional[str] = None
    organization_ids: set[str] = field(default_factory=set)

    @property
    def actor(self) -> str:
        return self.username or self.user_id or "system"

    def can_access(self, organization_id: str) -> bool:
        if self.role.upper() == PLATFORM_ADMIN:
            return True
        return str(organization_id) in self.organization_ids


def _extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    if not authorization.lower().startswith("bearer "):
        return None
    token = authorization.split(" ", 1)[1].strip()
    return token or None


def get_current_user(
    authorization: Optional[str] = Header(None),
    x_user_name: Optional[str] = Header(None, alias="X-User-Name"),
    x_user_role: Optional[str] = Header(None, alias="X-User-Role"),
    x_organization_id: Optional[str] = Header(None, alias="X-Organization-Id"),
) -> UserContext:
    if auth_disabled():
        orgs = {o.strip() for o in (x_organization_id or "").split(",") if o.strip()}
        role = (x_user_role or "").strip().upper() or (PLATFORM_ADMIN if not orgs else "ORG_ADMIN")
        return UserContext(
            role=role,
            user_id=x_user_name,
            username=x_user_name,
            organization_ids=orgs,
        )
    token = _extract_bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    try:
        claims = decode_access_token(token)
    except TokenError as exc:
        raise HTTPException(status_code=401, detail=str(exc))
    return UserContext(
        role=claims.role,
        user_id=claims.user_id,
        username=claims.username,
        organization_ids=set(claims.organization_ids),
    )


def require_roles(*roles: str):
    def _dep(user: UserContext = Depends(get_current_user)):
        allowed = {r.strip().upper() for r in roles if r and r.strip()}
        if allowed and user.role.upper() not in allowed:
            raise HTTPException(status_code=403, detail="Forbidden")
        return user

    return _dep


def require_organization(
    organization_id: str = Path(...),
    user: UserContext = Depends(get_current_user),
) -> UserContext:
    """Resolve the caller and ensure they belong to the organization in the path."""
    if not user.can_access(organization_id):
        raise HTTPException(status_code=403, detail="Organization access denied")
    return user
