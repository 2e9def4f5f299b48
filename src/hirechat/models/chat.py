# src/hirechat/models/chat.py
"""SQLAlchemy models linking platform records to the remote chat server."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Integer,
    LargeBinary,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hirechat.db.session import Base
from hirechat.models.user import User

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from hirechat.models.job import Job
    from hirechat.models.organization import Organization

ROOM_OWNER_JOB = "job"
ROOM_OWNER_ORGANIZATION = "organization"


class ChatIdentity(Base):
    """Remote identity of a platform user.

    Created lazily and removed together with the user row. The session
    credential is only ever stored encrypted.
    """

    __tablename__ = "chat_identity"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("user_account.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    remote_user_id: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    # iv || tag || ciphertext, see CredentialVault.
    encrypted_credential: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)

    user: Mapped[User] = relationship("User", back_populates="chat_identity")


class ChatRoom(Base):
    """Remote room owned by exactly one job or one organization.

    The row goes away with its owner; a recorded room is never recreated.
    """

    __tablename__ = "chat_room"
    __table_args__ = (
        CheckConstraint(
            "(job_id IS NULL) <> (organization_id IS NULL)",
            name="ck_chat_room_single_owner",
        ),
        {"sqlite_autoincrement": True},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("job.id", ondelete="CASCADE"),
        unique=True,
        nullable=True,
    )
    organization_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("organization.id", ondelete="CASCADE"),
        unique=True,
        nullable=True,
    )
    room_id: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    room_alias: Mapped[str | None] = mapped_column(Text, nullable=True)

    job: Mapped[Job | None] = relationship("Job", back_populates="chat_room")
    organization: Mapped[Organization | None] = relationship(
        "Organization", back_populates="chat_room"
    )

    @property
    def entity_kind(self) -> str:
        return ROOM_OWNER_JOB if self.job_id is not None else ROOM_OWNER_ORGANIZATION

    @property
    def entity_id(self) -> int:
        return self.job_id if self.job_id is not None else self.organization_id  # type: ignore[return-value]
