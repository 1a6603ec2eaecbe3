"""FastAPI application serving the real-time quote stream."""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from app.core.config import settings
from app.core.database import init_db, close_db
from app.api.runtime import StreamingRuntime, build_runtime
from app.api.routes import health, stream
from typing import Optional
import logging
import time
import sys

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger(__name__)


def _install_http_handlers(app: FastAPI) -> None:
    """Request timing log, catch-all error response and CORS."""

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.time()
        route = f"{request.method} {request.url.path}"
        logger.info(f"→ {route}")

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(f"← {route} failed after {time.time() - started:.3f}s: {e}")
            raise

        logger.info(f"← {route} {response.status_code} in {time.time() - started:.3f}s")
        return response

    # Errors still carry CORS headers so browser dashboards can read them
    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.error(
            f"Unhandled {type(exc).__name__} in {request.method} {request.url.path}: {exc}",
            exc_info=True
        )
        detail = str(exc) if settings.log_level == "DEBUG" else "Internal server error"
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "error": detail},
            headers={
                "Access-Control-Allow-Origin": request.headers.get("origin", "*"),
                "Access-Control-Allow-Credentials": "true",
            }
        )

    logger.info(f"Allowed CORS origins: {settings.cors_origins_list}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


def create_app(runtime: Optional[StreamingRuntime] = None) -> FastAPI:
    """Build the application around a streaming runtime."""
    app = FastAPI(title="Quote Relay API", version="1.0.0")
    app.state.runtime = runtime or build_runtime()
    app.state.limiter = stream.limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    @app.on_event("startup")
    async def startup_event():
        try:
            await init_db()
        except Exception as e:
            # Snapshots and persistence degrade to upstream-only
            logger.error(f"✗ Quote store unavailable at startup: {e}")

        app.state.runtime.start()
        logger.info(
            f"Quote relay ready: updates every {settings.update_interval_seconds}s, "
            f"up to {settings.max_subscriptions_per_client} symbols per client"
        )

    @app.on_event("shutdown")
    async def shutdown_event():
        """Stop the update job, then release HTTP clients and pools."""
        await app.state.runtime.shutdown()
        await close_db()
        logger.info("Quote relay stopped")

    _install_http_handlers(app)
    app.include_router(health.router)
    app.include_router(stream.router)

    @app.get("/")
    async def root():
        return {"status": "ok", "service": "quote-relay", "websocket": "/ws/stocks"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.backend_port)
