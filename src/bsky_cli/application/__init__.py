"""Application services: session lifecycle and chat access."""

from .auth import AuthManager, require_auth
from .chat import ChatService

__all__ = ["AuthManager", "ChatService", "require_auth"]
