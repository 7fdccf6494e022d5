"""Domain types for sessions and chat listings."""

from .session import AuthTokens, ChatMessage, ConvoSummary, Page, SessionRecord, SessionState

__all__ = [
    "AuthTokens",
    "ChatMessage",
    "ConvoSummary",
    "Page",
    "SessionRecord",
    "SessionState",
]
