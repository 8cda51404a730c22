from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import Select

SUBJECT_USER = "user"
SUBJECT_ADVERTISER = "advertiser"
SUBJECT_TYPES: tuple[str, ...] = (SUBJECT_USER, SUBJECT_ADVERTISER)


@dataclass(frozen=True)
class SubjectRef:
    """A ledger-tracked account: a user or an advertiser."""

    subject_id: int
    subject_type: str


@dataclass(frozen=True)
class SubjectContact:
    """How an admin reaches a subject to settle a payout."""

    phone: str | None
    store_name: str | None = None


class SubjectDirectory(Protocol):
    """What the ledger needs to know about one kind of subject.

    Ledger code depends only on this contract; the user and advertiser
    stores plug in behind it so no ledger path branches on subject type.
    """

    subject_type: str

    async def exists(self, subject_id: int) -> bool:  # pragma: no cover - Protocol
        ...

    async def display_name(self, subject_id: int) -> str | None:  # pragma: no cover - Protocol
        ...

    async def display_names(
        self, subject_ids: Iterable[int]
    ) -> dict[int, str]:  # pragma: no cover - Protocol
        ...

    async def contacts(
        self, subject_ids: Iterable[int]
    ) -> dict[int, SubjectContact]:  # pragma: no cover - Protocol
        ...

    def matching_ids(self, term: str) -> Select:  # pragma: no cover - Protocol
        """Select of subject ids whose name or phone contains ``term``."""
        ...
