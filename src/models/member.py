"""Member model: read-only view of the member directory used by billing."""

from __future__ import annotations

import uuid

from sqlalchemy import Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from src.models.enums import MemberStatus


class Member(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "members"

    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str | None] = mapped_column(String(20))
    status: Mapped[MemberStatus] = mapped_column(
        nullable=False, default=MemberStatus.ACTIVE, server_default="ACTIVE"
    )

    __table_args__ = (Index("ix_members_organization_id", "organization_id"),)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
