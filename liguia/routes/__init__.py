"""
Routes package for LiguIA backend.

Each router handles one area of the WhatsApp gateway; server.py mounts them under /api.
"""

from .media_routes import router as media_router
from .contacts_routes import router as contacts_router
from .connections_routes import router as connections_router
from .diagnostics_routes import router as diagnostics_router
from .webhooks_routes import router as webhooks_router
from .meta_routes import router as meta_router
from .settings_routes import router as settings_router

__all__ = [
    "media_router",
    "contacts_router",
    "connections_router",
    "diagnostics_router",
    "webhooks_router",
    "meta_router",
    "settings_router",
]
