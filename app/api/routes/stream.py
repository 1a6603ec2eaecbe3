"""Real-time quote stream: WebSocket endpoint and admin routes."""
import logging
import uuid

from fastapi import APIRouter, HTTPException, Request, WebSocket, WebSocketDisconnect, status
from slowapi import Limiter
from slowapi.util import get_remote_address

from app.core.config import settings

from app.services.connection_manager import ConnectionManager, WebSocketChannel
from app.services.errors import InvalidInput

logger = logging.getLogger(__name__)
router = APIRouter(tags=["stream"])

# Rate limiter for admin endpoints
limiter = Limiter(key_func=get_remote_address)


def _manager(app) -> ConnectionManager:
    return app.state.runtime.connection_manager


@router.websocket("/ws/stocks")
async def stock_stream(websocket: WebSocket):
    """
    Bidirectional quote stream.

    Every frame is ``{"event": <name>, "data": <payload>}``.
    """
    manager = _manager(websocket.app)
    await websocket.accept()

    connection_id = uuid.uuid4().hex
    manager.connect(WebSocketChannel(websocket, connection_id), connection_id)
    reason = "server closed"

    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                message = None
            await manager.handle_envelope(connection_id, message)
    except WebSocketDisconnect as e:
        reason = f"client disconnect (code {e.code})"
    except Exception as e:
        reason = f"error: {e}"
        logger.error(f"WebSocket error for {connection_id}: {e}", exc_info=True)
    finally:
        manager.disconnect(connection_id, reason)


@router.get("/api/stream/stats")
async def get_stream_stats(request: Request):
    """Connection, subscription and scheduler statistics."""
    return _manager(request.app).get_stats()


@router.post("/api/stream/force-update")
@limiter.limit(settings.rate_limit_force_update)
async def force_update(request: Request):
    """
    Fetch and broadcast the given symbols now.

    Body: ``{"symbols": ["AAPL", ...]}``. Returns ``{stocks, errors}``.
    """
    try:
        body = await request.json()
    except ValueError:
        body = None

    symbols = body.get("symbols") if isinstance(body, dict) else None

    try:
        return await _manager(request.app).force_update(symbols)
    except InvalidInput as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
