"""
Idea Engine - Shared FastAPI Dependencies

Centralizes dependencies used across the AI routers and main.py.
"""

import logging
from fastapi import HTTPException, Request

from ai_router import AIRouter

logger = logging.getLogger(__name__)


def get_ai_router(request: Request) -> AIRouter:
    """The router built at startup and kept on app.state. 503 until it exists."""
    ai_router = getattr(request.app.state, "ai_router", None)
    if ai_router is None:
        raise HTTPException(status_code=503, detail="AI router not initialized")
    return ai_router
