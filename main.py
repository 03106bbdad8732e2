import json
import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.config import Settings
from core.context import AppContext, build_context
from core.errors import UsageLimitValidationError, build_error
from routes import oracle, subscription, system, usage

# -----------------------------
# Load env
# -----------------------------
load_dotenv()

# -----------------------------
# Logging (structured-ish)
# -----------------------------
logger = logging.getLogger("oxalate-app")

# attributes every LogRecord carries; anything else arrived through ``extra=``
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "level": record.levelname,
            "ts": datetime.now(timezone.utc).isoformat(),
            "msg": record.getMessage(),
        }
        # extras
        for k, v in vars(record).items():
            if k not in _RESERVED_ATTRS and not k.startswith("_"):
                payload[k] = v
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str) -> None:
    level = level.upper()
    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(JsonFormatter())
    logger.setLevel(level)
    logger.handlers = [handler]


# -----------------------------
# App
# -----------------------------
def create_app(context: Optional[AppContext] = None) -> FastAPI:
    settings = context.settings if context is not None else Settings.from_env()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ctx: AppContext = app.state.context
        await ctx.startup()
        logger.info("startup", extra={"operation": "startup"})
        try:
            yield
        finally:
            await ctx.shutdown()

    app = FastAPI(
        title="Oxalate Oracle API",
        description="Usage limits, Premium entitlements and the Oxalate Oracle chat",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.context = context or build_context(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -----------------------------
    # Middleware: request_id + logging
    # -----------------------------
    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        start = time.time()
        request.state.request_id = request_id

        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                "unhandled_exception",
                exc_info=True,
                extra={
                    "request_id": request_id,
                    "path": request.url.path,
                    "status": 500,
                    "latency_ms": int((time.time() - start) * 1000),
                },
            )
            return _error_response(500, "Internal server error.", request_id=request_id, retryable=True)

        logger.info(
            "request",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "status": response.status_code,
                "latency_ms": int((time.time() - start) * 1000),
            },
        )
        response.headers["X-Request-Id"] = request_id
        return response

    # -----------------------------
    # Exception handlers
    # -----------------------------
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        request_id = getattr(request.state, "request_id", None)
        logger.warning(
            "http_exception",
            extra={"request_id": request_id, "path": request.url.path, "status": exc.status_code},
        )
        return _error_response(exc.status_code, str(exc.detail), request_id=request_id)

    @app.exception_handler(UsageLimitValidationError)
    async def usage_limit_exception_handler(request: Request, exc: UsageLimitValidationError):
        request_id = getattr(request.state, "request_id", None)
        logger.warning(
            "usage_limit_validation_error",
            extra={"request_id": request_id, "path": request.url.path, "code": exc.code.value, "field": exc.field},
        )
        return _error_response(422, exc.message, request_id=request_id, validation=exc.to_dict())

    app.include_router(system.router)
    app.include_router(usage.router)
    app.include_router(subscription.router)
    app.include_router(oracle.router)
    return app


def _error_response(
    status_code: int,
    message: str,
    *,
    request_id: Optional[str],
    retryable: bool = False,
    validation: Optional[dict] = None,
) -> JSONResponse:
    err = build_error(status_code, message, retryable=retryable)
    payload = {"ok": False, "error": err.to_response(), "detail": message}
    if validation is not None:
        payload["validation"] = validation
    if request_id:
        payload["request_id"] = request_id
    return JSONResponse(status_code=status_code, content=payload)


app = create_app()
