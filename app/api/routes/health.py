"""Liveness and dependency checks."""
from fastapi import APIRouter, Depends, Request
from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.database import get_db
from app.models import Stock
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health_check():
    return {"status": "healthy", "service": "quote-relay"}


@router.get("/db")
async def check_database_health(db: AsyncSession = Depends(get_db)):
    """
    Quote store connectivity.

    Reports how many symbols have a stored quote, e.g.
    ``{"status": "healthy", "stored_quotes": 42}``.
    """
    try:
        await db.execute(text("SELECT 1"))
        stored_quotes = (await db.execute(select(func.count()).select_from(Stock))).scalar_one()
    except SQLAlchemyError as e:
        logger.error(f"Quote store health check failed: {e}", exc_info=True)
        return {"status": "unhealthy", "error": str(e), "error_type": type(e).__name__}

    return {"status": "healthy", "stored_quotes": stored_quotes}


@router.get("/cache")
async def check_cache_health(request: Request):
    """Which cache tier is serving and how many entries sit in memory."""
    return request.app.state.runtime.cache.get_stats()
