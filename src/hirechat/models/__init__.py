# src/hirechat/models/__init__.py
"""SQLAlchemy models for the HireChat sync service."""

from .application import (
    APPLICATION_STATUS_ACCEPTED,
    APPLICATION_STATUS_APPLIED,
    APPLICATION_STATUS_REJECTED,
    APPLICATION_STATUS_WITHDRAWN,
    JobApplication,
)
from .chat import ChatIdentity, ChatRoom
from .job import JOB_STATUS_CLOSED, JOB_STATUS_DRAFT, JOB_STATUS_OPEN, Job
from .organization import Organization
from .user import User

__all__ = [
    "APPLICATION_STATUS_ACCEPTED",
    "APPLICATION_STATUS_APPLIED",
    "APPLICATION_STATUS_REJECTED",
    "APPLICATION_STATUS_WITHDRAWN",
    "ChatIdentity",
    "ChatRoom",
    "JOB_STATUS_CLOSED",
    "JOB_STATUS_DRAFT",
    "JOB_STATUS_OPEN",
    "Job",
    "JobApplication",
    "Organization",
    "User",
]
