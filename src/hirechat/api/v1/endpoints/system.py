"""System endpoints for the HireChat sync service."""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from hirechat.api.v1.dependencies import get_chat_service
from hirechat.core.settings import settings
from hirechat.db.session import get_db
from hirechat.models import ChatIdentity, ChatRoom
from hirechat.services.chat_service import ChatService

router = APIRouter(prefix="/system", tags=["system"])

ChatServiceDep = Annotated[ChatService, Depends(get_chat_service)]
SessionDep = Annotated[Session, Depends(get_db)]


@router.get("/chat")
async def get_chat_status(chat_service: ChatServiceDep, db: SessionDep) -> dict[str, Any]:
    """Report whether chat sync is enabled and how the chat server is doing.

    Also counts the identities and rooms recorded locally. Excludes secrets;
    the admin token and encryption key are never echoed.
    """
    return {
        "app": {
            "name": settings.app_name,
            "version": settings.app_version,
        },
        "enabled": chat_service.enabled,
        "records": {
            "identities": db.scalar(select(func.count()).select_from(ChatIdentity)),
            "job_rooms": db.scalar(
                select(func.count()).select_from(ChatRoom).where(ChatRoom.job_id.is_not(None))
            ),
            "organization_rooms": db.scalar(
                select(func.count())
                .select_from(ChatRoom)
                .where(ChatRoom.organization_id.is_not(None))
            ),
        },
        "chat": await chat_service.health_check(),
    }
