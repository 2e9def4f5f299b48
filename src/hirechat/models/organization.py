# src/hirechat/models/organization.py
"""SQLAlchemy model for employer organizations."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hirechat.db.session import Base
from hirechat.models.user import User

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from hirechat.models.chat import ChatRoom


class Organization(Base):
    """Employer organization; owns one chat room once provisioned."""

    __tablename__ = "organization"
    # Ids are never reused, so a stale room reference cannot match a new row.
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    owner_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("user_account.id", ondelete="CASCADE"),
        nullable=False,
    )

    owner: Mapped[User] = relationship("User")
    chat_room: Mapped[ChatRoom | None] = relationship(
        "ChatRoom",
        back_populates="organization",
        cascade="all, delete-orphan",
        passive_deletes=True,
        uselist=False,
    )
