"""
FastAPI Application Entry Point
Marketplace read-model API: cart view, item preview and catalog listing
"""
from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
from contextvars import ContextVar
from dotenv import load_dotenv
from typing import Callable
import asyncio
import json
import logging
import os
import sys
import time
import uuid as _uuid

from routers import carts, catalog, metrics
from database import IS_SQLITE, init_db, check_db_health

load_dotenv()

# Request id of the request being served, "-" outside a request
request_id_var: ContextVar[str] = ContextVar("request_id", default="-")


# ---- Logging (JSON lines on stdout) ----
class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "severity": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
            "logger": record.name,
            "rid": request_id_var.get(),
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(level: str) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)

    logging.getLogger("uvicorn.access").setLevel(logging.INFO)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)  # INFO shows SQL


configure_logging(os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Marketplace Read Model API",
    description="Buyer-facing cart, preview and catalog views resolved across collections",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)

cors_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins or ["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["GET"],
    allow_headers=["*"],
)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tags every log line of a request with its id and echoes it back as X-Request-Id."""

    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-Id") or str(_uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(f"Uncaught exception | {request.method} {request.url.path}")
            raise
        finally:
            dur_ms = int((time.perf_counter() - start) * 1000)
            request_id_var.reset(token)

        logger.info(f"{request.method} {request.url.path} status={response.status_code} durMs={dur_ms} rid={request_id}")
        response.headers["X-Request-Id"] = request_id
        return response


app.add_middleware(RequestIDMiddleware)


@app.get("/")
async def index():
    return {"ok": True, "service": "marketplace-read-model"}


@app.get("/healthz")
async def healthz():
    """Liveness only; never touches the store."""
    return {"ok": True}


@app.get("/api/health")
async def api_health():
    db_health = await check_db_health()
    return {
        "status": "healthy" if db_health["status"] == "healthy" else "degraded",
        "database": db_health,
        "timestamp": time.time(),
    }


# --- Error handlers ---
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Invalid request {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=422, content={"detail": exc.errors(), "error": "Validation failed"})


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


app.include_router(carts.router, prefix="/api", tags=["carts"])
app.include_router(catalog.router, prefix="/api", tags=["catalog"])
app.include_router(metrics.router, prefix="/api", tags=["metrics"])


@app.on_event("startup")
async def startup():
    # In-memory SQLite starts empty; Postgres tables come from migrations unless asked
    if not (IS_SQLITE or os.getenv("INIT_DB_ON_STARTUP", "false").lower() == "true"):
        logger.info("Read model API started, skipping DB init")
        return
    try:
        await asyncio.wait_for(init_db(), timeout=120)
        logger.info("Read model API started, documents table ready")
    except asyncio.TimeoutError:
        logger.error("DB init timed out after 120s, continuing without init")
    except Exception as e:
        logger.error(f"DB init failed (continuing to serve): {e}", exc_info=True)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8080)),
        reload=os.getenv("NODE_ENV") != "production"
    )
