"""
API Routes Package
"""

from . import admin, auth, chat, documents, health

__all__ = ["admin", "auth", "chat", "documents", "health"]
