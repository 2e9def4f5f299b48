# src/hirechat/services/__init__.py
"""Chat synchronization services for the hiring platform."""

from .chat_service import ChatService, MatrixChatService, NoopChatService, build_chat_service
from .crypto import CredentialVault
from .executor import RemoteExecutor, RetryPolicy

__all__ = [
    "ChatService",
    "CredentialVault",
    "MatrixChatService",
    "NoopChatService",
    "RemoteExecutor",
    "RetryPolicy",
    "build_chat_service",
]
