"""API routes package initialization."""
from app.api.routes import health, stream

__all__ = ["health", "stream"]
