"""SQL-backed subject directories and lookup helpers."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable

from sqlalchemy import Select, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from marketpoints.db.models import Advertiser, User
from marketpoints.errors import NotFoundError, ValidationError
from marketpoints.subjects.interfaces import (
    SUBJECT_ADVERTISER,
    SUBJECT_TYPES,
    SUBJECT_USER,
    SubjectContact,
    SubjectDirectory,
    SubjectRef,
)


class UserDirectory:
    """Users, named by their full name."""

    subject_type = SUBJECT_USER

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def exists(self, subject_id: int) -> bool:
        result = await self.db.execute(select(User.id).where(User.id == subject_id))
        return result.scalar_one_or_none() is not None

    async def display_name(self, subject_id: int) -> str | None:
        names = await self.display_names([subject_id])
        return names.get(subject_id)

    async def display_names(self, subject_ids: Iterable[int]) -> dict[int, str]:
        ids = set(subject_ids)
        if not ids:
            return {}
        result = await self.db.execute(select(User.id, User.full_name).where(User.id.in_(ids)))
        return {row.id: row.full_name for row in result}

    async def contacts(self, subject_ids: Iterable[int]) -> dict[int, SubjectContact]:
        ids = set(subject_ids)
        if not ids:
            return {}
        result = await self.db.execute(select(User.id, User.phone).where(User.id.in_(ids)))
        return {row.id: SubjectContact(phone=row.phone) for row in result}

    def matching_ids(self, term: str) -> Select:
        pattern = f"%{term.lower()}%"
        return select(User.id).where(
            or_(func.lower(User.full_name).like(pattern), User.phone.like(f"%{term}%"))
        )


class AdvertiserDirectory:
    """Advertisers, named by store name when they have one."""

    subject_type = SUBJECT_ADVERTISER

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def exists(self, subject_id: int) -> bool:
        result = await self.db.execute(select(Advertiser.id).where(Advertiser.id == subject_id))
        return result.scalar_one_or_none() is not None

    async def display_name(self, subject_id: int) -> str | None:
        names = await self.display_names([subject_id])
        return names.get(subject_id)

    async def display_names(self, subject_ids: Iterable[int]) -> dict[int, str]:
        ids = set(subject_ids)
        if not ids:
            return {}
        result = await self.db.execute(
            select(Advertiser.id, Advertiser.full_name, Advertiser.store_name).where(Advertiser.id.in_(ids))
        )
        return {
            row.id: f"{row.full_name} ({row.store_name})" if row.store_name else row.full_name
            for row in result
        }

    async def contacts(self, subject_ids: Iterable[int]) -> dict[int, SubjectContact]:
        ids = set(subject_ids)
        if not ids:
            return {}
        result = await self.db.execute(
            select(Advertiser.id, Advertiser.phone, Advertiser.store_name).where(Advertiser.id.in_(ids))
        )
        return {row.id: SubjectContact(phone=row.phone, store_name=row.store_name) for row in result}

    def matching_ids(self, term: str) -> Select:
        pattern = f"%{term.lower()}%"
        return select(Advertiser.id).where(
            or_(
                func.lower(Advertiser.full_name).like(pattern),
                func.lower(Advertiser.store_name).like(pattern),
                Advertiser.phone.like(f"%{term}%"),
            )
        )


_DIRECTORIES: dict[str, type[UserDirectory] | type[AdvertiserDirectory]] = {
    SUBJECT_USER: UserDirectory,
    SUBJECT_ADVERTISER: AdvertiserDirectory,
}


def validate_subject_type(subject_type: str | None) -> str:
    """Return ``subject_type`` if it names a ledger subject, else raise ValidationError."""
    if subject_type not in SUBJECT_TYPES:
        raise ValidationError(f"subject_type must be one of: {', '.join(SUBJECT_TYPES)}")
    return subject_type


def get_directory(db: AsyncSession, subject_type: str) -> SubjectDirectory:
    """Directory for one subject type, bound to ``db``."""
    return _DIRECTORIES[validate_subject_type(subject_type)](db)


def all_directories(db: AsyncSession) -> list[SubjectDirectory]:
    return [cls(db) for cls in _DIRECTORIES.values()]


async def require_subject(db: AsyncSession, subject: SubjectRef) -> None:
    """Raise NotFoundError unless the subject exists in its store."""
    directory = get_directory(db, subject.subject_type)
    if not await directory.exists(subject.subject_id):
        raise NotFoundError(f"{subject.subject_type} {subject.subject_id} not found")


async def resolve_display_names(
    db: AsyncSession,
    subjects: Iterable[SubjectRef],
) -> dict[SubjectRef, str]:
    """Batch-resolve display names, one query per subject type."""
    by_type: dict[str, set[int]] = defaultdict(set)
    for subject in subjects:
        by_type[subject.subject_type].add(subject.subject_id)

    names: dict[SubjectRef, str] = {}
    for subject_type, ids in by_type.items():
        if subject_type not in _DIRECTORIES:
            continue
        found = await get_directory(db, subject_type).display_names(ids)
        for subject_id, name in found.items():
            names[SubjectRef(subject_id, subject_type)] = name
    return names


async def resolve_contacts(
    db: AsyncSession,
    subjects: Iterable[SubjectRef],
) -> dict[SubjectRef, SubjectContact]:
    """Batch-resolve phone and store name for the admin payout views."""
    by_type: dict[str, set[int]] = defaultdict(set)
    for subject in subjects:
        by_type[subject.subject_type].add(subject.subject_id)

    contacts: dict[SubjectRef, SubjectContact] = {}
    for subject_type, ids in by_type.items():
        if subject_type not in _DIRECTORIES:
            continue
        found = await get_directory(db, subject_type).contacts(ids)
        for subject_id, contact in found.items():
            contacts[SubjectRef(subject_id, subject_type)] = contact
    return contacts
