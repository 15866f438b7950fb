"""
CaseGate Conversation Package

Per-session generation-engine threads.
"""

from .threads import ConversationSessionManager, ThreadStore

__all__ = [
    "ConversationSessionManager",
    "ThreadStore",
]
