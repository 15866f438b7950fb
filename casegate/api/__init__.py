"""
CaseGate API Package

FastAPI application exposing login, enforced chat, document resolution and
directory administration.
"""

from .app import create_app
from .dependencies import ServiceContainer, build_services, get_current_session

__all__ = [
    "ServiceContainer",
    "build_services",
    "create_app",
    "get_current_session",
]
