from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from vexillum.api.error_handling import register_exception_handlers
from vexillum.api.routes import router
from vexillum.config import Settings, get_settings
from vexillum.logging import get_logger, set_correlation_id
from vexillum.service.runtime import close_runtime, get_runtime

logger = get_logger(__name__)

__version__ = "0.1.0"

HEALTH_CHECK_TIMEOUT_SECONDS = 3


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup failures (store, Redis, key material) abort the process.
    runtime = get_runtime()
    await runtime.bootstrap_admin()
    logger.info("server_ready", addr=runtime.settings.server_addr())

    yield

    try:
        await close_runtime()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


def _allowed_origins(settings: Settings) -> List[str]:
    if settings.cors_allow_origins:
        return settings.cors_allow_origins
    # credentials are allowed, so never fall back to a wildcard
    return [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]


async def add_correlation_id(request, call_next):
    """Tag the request with ``X-Request-ID`` (client supplied or generated) and echo it."""
    correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    if request.url.path.startswith("/api/"):
        response.headers.setdefault("Cache-Control", "no-store")
    response.headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'")
    return response


async def health() -> Dict[str, Any]:
    """Liveness: the process is up; dependencies are not probed."""
    return {
        "status": "ok",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


async def readiness():
    """Readiness: the store and, when configured, Redis answer within a bound."""
    runtime = get_runtime()
    checks: Dict[str, Dict[str, Any]] = {}

    async def _run_bounded(label: str, probe) -> bool:
        try:
            await asyncio.wait_for(probe(), HEALTH_CHECK_TIMEOUT_SECONDS)
            return True
        except asyncio.TimeoutError:
            logger.error("readiness_timeout", component=label, timeout=HEALTH_CHECK_TIMEOUT_SECONDS)
        except Exception as exc:
            logger.error("readiness_check_failed", component=label, error=str(exc))
        return False

    if hasattr(runtime.store, "verify_connection"):
        db_ok = await _run_bounded(
            "database", lambda: asyncio.to_thread(runtime.store.verify_connection)
        )
        checks["database"] = {"status": "healthy" if db_ok else "unhealthy"}
    else:
        db_ok = True
        checks["database"] = {"status": "healthy", "type": "memory"}

    redis_ok = True
    if runtime.cache is not None:
        redis_ok = await _run_bounded("redis", runtime.cache.ping)
        checks["redis"] = {"status": "healthy" if redis_ok else "unhealthy"}
    else:
        checks["redis"] = {"status": "not_configured"}

    ready = db_ok and redis_ok
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ready" if ready else "not_ready", "checks": checks},
    )


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="Vexillum Auth", version=__version__, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(settings),
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
        max_age=3600,
    )
    app.middleware("http")(add_security_headers)
    # registered last so it runs first and the id is set for every other layer
    app.middleware("http")(add_correlation_id)

    register_exception_handlers(app)
    app.include_router(router)
    app.add_api_route("/healthz", health, methods=["GET"], tags=["health"])
    app.add_api_route("/readyz", readiness, methods=["GET"], tags=["health"])
    return app


app = create_app()
