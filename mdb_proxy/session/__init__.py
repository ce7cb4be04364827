"""In-memory browser sessions."""

from .store import SessionRecord, SessionStore

__all__ = ["SessionRecord", "SessionStore"]
