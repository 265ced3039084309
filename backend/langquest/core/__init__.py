"""
Core module for the LangQuest backend.

This module contains core functionality including:
- Configuration management
- Database connections
- Identity token verification
- View invalidation signalling
"""

from .config import settings
from .database import get_db, engine, SessionLocal
from .security import (
    Identity,
    create_access_token,
    identity_from_token,
    verify_token
)
from .views import view_invalidator

__all__ = [
    "settings",
    "get_db",
    "engine",
    "SessionLocal",
    "Identity",
    "create_access_token",
    "identity_from_token",
    "verify_token",
    "view_invalidator"
]
