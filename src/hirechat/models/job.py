# src/hirechat/models/job.py
"""SQLAlchemy model for job postings."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import VARCHAR, ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hirechat.db.session import Base
from hirechat.models.organization import Organization
from hirechat.models.user import User

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from hirechat.models.chat import ChatRoom

# Job posting states; only open jobs get a chat room
JOB_STATUS_DRAFT = "draft"
JOB_STATUS_OPEN = "open"
JOB_STATUS_CLOSED = "closed"


class Job(Base):
    """Job posting; owns one chat room once published."""

    __tablename__ = "job"
    # Ids are never reused, so a stale room reference cannot match a new row.
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(VARCHAR(20), nullable=False, default=JOB_STATUS_DRAFT)
    creator_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("user_account.id", ondelete="CASCADE"),
        nullable=False,
    )
    organization_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("organization.id", ondelete="SET NULL"),
        nullable=True,
    )

    creator: Mapped[User] = relationship("User")
    organization: Mapped[Organization | None] = relationship("Organization")
    chat_room: Mapped[ChatRoom | None] = relationship(
        "ChatRoom",
        back_populates="job",
        cascade="all, delete-orphan",
        passive_deletes=True,
        uselist=False,
    )
