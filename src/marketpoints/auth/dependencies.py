"""FastAPI authentication dependencies."""

from __future__ import annotations

from dataclasses import dataclass

import jwt
from fastapi import Depends, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from marketpoints.auth.jwt import SUBJECT_ADMIN, verify_token
from marketpoints.database import get_session
from marketpoints.db.models import Admin
from marketpoints.errors import AuthenticationError, PermissionDeniedError
from marketpoints.subjects.directory import get_directory
from marketpoints.subjects.interfaces import SubjectRef

_bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Identity:
    """The authenticated caller."""

    subject_id: int
    subject_type: str

    @property
    def is_admin(self) -> bool:
        return self.subject_type == SUBJECT_ADMIN

    def as_subject(self) -> SubjectRef:
        return SubjectRef(self.subject_id, self.subject_type)


async def get_current_identity(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
    db: AsyncSession = Depends(get_session),
) -> Identity:
    """
    Verify the bearer JWT and confirm the account behind it still exists.

    Raises 401 on a missing/invalid token or unknown account.
    """
    if credentials is None:
        raise AuthenticationError("Access token required")
    try:
        payload = verify_token(credentials.credentials, expected_type="access")
    except jwt.InvalidTokenError as e:
        raise AuthenticationError(str(e)) from e

    identity = Identity(int(payload["sub"]), payload["subject_type"])

    if identity.is_admin:
        result = await db.execute(
            select(Admin).where(Admin.id == identity.subject_id, Admin.is_active.is_(True))
        )
        if result.scalar_one_or_none() is None:
            raise AuthenticationError("Admin not found")
    elif not await get_directory(db, identity.subject_type).exists(identity.subject_id):
        raise AuthenticationError(f"{identity.subject_type.capitalize()} not found")

    return identity


async def get_current_subject(
    identity: Identity = Depends(get_current_identity),
) -> SubjectRef:
    """The caller as a ledger subject. Admins hold no balance."""
    if identity.is_admin:
        raise PermissionDeniedError("Only users and advertisers hold points")
    return identity.as_subject()


async def require_admin(
    identity: Identity = Depends(get_current_identity),
) -> Identity:
    if not identity.is_admin:
        raise PermissionDeniedError("Admin access required")
    return identity


def ensure_self_or_admin(identity: Identity, subject: SubjectRef) -> None:
    """Raise 403 unless the caller is the subject itself or an admin."""
    if identity.is_admin:
        return
    if identity.as_subject() != subject:
        raise PermissionDeniedError("Cannot access another account's points")
