# src/hirechat/models/application.py
"""SQLAlchemy model for job applications."""

from __future__ import annotations

from sqlalchemy import VARCHAR, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hirechat.db.session import Base
from hirechat.models.job import Job
from hirechat.models.user import User

# Application states
APPLICATION_STATUS_APPLIED = "applied"
APPLICATION_STATUS_ACCEPTED = "accepted"
APPLICATION_STATUS_REJECTED = "rejected"
APPLICATION_STATUS_WITHDRAWN = "withdrawn"


class JobApplication(Base):
    """A user's application to a job. Only accepted applicants join the job room."""

    __tablename__ = "job_application"
    __table_args__ = (UniqueConstraint("job_id", "applicant_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("job.id", ondelete="CASCADE"),
        nullable=False,
    )
    applicant_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("user_account.id", ondelete="CASCADE"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        VARCHAR(20), nullable=False, default=APPLICATION_STATUS_APPLIED
    )

    job: Mapped[Job] = relationship("Job")
    applicant: Mapped[User] = relationship("User")
