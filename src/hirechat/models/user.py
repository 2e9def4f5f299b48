# src/hirechat/models/user.py
"""SQLAlchemy model for platform users."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hirechat.db.session import Base

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from hirechat.models.chat import ChatIdentity


class User(Base):
    """Platform account. Chat identities hang off this record."""

    __tablename__ = "user_account"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    display_name: Mapped[str | None] = mapped_column(Text, nullable=True)

    chat_identity: Mapped[ChatIdentity | None] = relationship(
        "ChatIdentity",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
        uselist=False,
    )

    @property
    def chat_display_name(self) -> str:
        """Return the name shown in chat rooms."""
        return self.display_name or self.email.split("@", 1)[0]
