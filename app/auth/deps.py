from __future__ import annotations
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_db
from ..models import Tenant
from ..repos.events import get_tenant_by_slug
from .jwt import verify_jwt

log = logging.getLogger(__name__)

_bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class StaffContext:
    staff_id: str
    tenant_id: uuid.UUID


async def get_current_staff(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> StaffContext:
    if creds is None or not creds.credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    try:
        claims = verify_jwt(creds.credentials)
    except jwt.PyJWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    staff_id = claims.get("sub")
    try:
        tenant_id = uuid.UUID(str(claims.get("tenant_id")))
    except ValueError:
        tenant_id = None
    if not staff_id or tenant_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return StaffContext(staff_id=str(staff_id), tenant_id=tenant_id)


async def get_public_tenant(
    x_tenant_slug: Optional[str] = Header(default=None),
    db: AsyncSession = Depends(get_db),
) -> Tenant:
    # the hostname layer in front of us resolves the tenant and forwards its slug
    if not x_tenant_slug:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid request")
    tenant = await get_tenant_by_slug(db, x_tenant_slug)
    if tenant is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant not found")
    return tenant
