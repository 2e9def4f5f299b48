"""Shared FastAPI dependencies."""

from __future__ import annotations

from fastapi import Request

from hirechat.services.chat_service import ChatService, NoopChatService


def get_chat_service(request: Request) -> ChatService:
    """Return the chat service built at startup, or a no-op one before startup."""
    service: ChatService | None = getattr(request.app.state, "chat_service", None)
    return service if service is not None else NoopChatService()
