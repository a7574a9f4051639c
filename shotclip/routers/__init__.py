"""Routers package initialization"""
from .sources import router as sources_router
from .clips import router as clips_router
from .settings import router as settings_router
from .websocket import router as websocket_router

__all__ = ["sources_router", "clips_router", "settings_router", "websocket_router"]
