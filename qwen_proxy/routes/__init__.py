"""API route handlers."""

from .openai import router as openai_router
from .status import router as status_router

__all__ = ["openai_router", "status_router"]
