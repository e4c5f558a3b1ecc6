"""Bakery Payments FastAPI application.

Web server that processes payment and refund commands synchronously via
HTTP. Settlement runs wherever the domain's event processing runs: inline
after each request in development/test, in the Engine (src/server.py) in
production.

Usage:
    uvicorn src.app:app --host 0.0.0.0 --port 8000 --reload
"""

import time
import uuid
from datetime import UTC, datetime

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# The domain is initialized at module level so uvicorn workers share it.
# PROTEAN_ENV controls which config overlay is applied:
#   - "test"       → event_processing = "sync"  (settlement fires in UoW)
#   - "production" → event_processing = "async" (settlement fires via Engine)
import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from payments.domain import payments  # noqa: E402
from payments.utils.logging import add_context, clear_context, configure_logging, current_env

configure_logging()
payments.init()

logger = structlog.get_logger(__name__)

SERVICE_NAME = "bakery-payment-service"
SERVICE_VERSION = "1.0.0"
_started_at = time.monotonic()


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Bakery Payments API",
    description="Payment and refund lifecycle for bakery orders",
    version=SERVICE_VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    """Push the payments domain context for API requests."""
    if request.url.path.startswith("/api"):
        with payments.domain_context():
            return await call_next(request)
    # Docs and schema pass through
    return await call_next(request)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    """Bind a request id (and the caller, when known) to every log line."""
    request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
    clear_context()
    add_context(request_id=request_id, path=request.url.path, method=request.method)
    if request.headers.get("X-User-Id"):
        add_context(user_id=request.headers["X-User-Id"])

    started = time.perf_counter()
    response = await call_next(request)
    response.headers["X-Request-Id"] = request_id
    logger.info(
        "Request completed",
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
    )
    return response


# ---------------------------------------------------------------------------
# Routers and error handling
# ---------------------------------------------------------------------------
from payments.api import payment_router, refund_router, transaction_router  # noqa: E402
from payments.api.errors import register_payment_exception_handlers  # noqa: E402

app.include_router(payment_router)
app.include_router(refund_router)
app.include_router(transaction_router)
register_payment_exception_handlers(app)


# ---------------------------------------------------------------------------
# Health / info
# ---------------------------------------------------------------------------
@app.get("/api/health")
async def health():
    return JSONResponse(
        content={
            "status": "UP",
            "service": SERVICE_NAME,
            "timestamp": datetime.now(UTC).isoformat(),
            "domain": {"name": payments.name},
        }
    )


@app.get("/api/info")
async def info():
    return JSONResponse(
        content={
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "environment": current_env(),
            "uptime_seconds": round(time.monotonic() - _started_at, 1),
            "features": [
                "payment-processing",
                "refund-management",
                "transaction-tracking",
                "gateway-simulation",
                "order-notification",
            ],
        }
    )
