import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from codegen_gateway.api.v1.router import api_v1_router
from codegen_gateway.core.config import settings, validate_settings_for_production
from codegen_gateway.core.logging import setup_logging
from codegen_gateway.core.metrics import PrometheusMiddleware, metrics_response
from codegen_gateway.core.middleware import RequestLoggingMiddleware
from codegen_gateway.core.rate_limit import limiter
from codegen_gateway.core.sentry import init_sentry
from codegen_gateway.gateway.errors import GatewayError, RateLimitExceededError, scrub_secrets
from codegen_gateway.gateway.types import validate_api_key_format

# Configure logging before anything else
setup_logging()

logger = logging.getLogger(__name__)


def _warn_on_suspicious_keys() -> None:
    for provider_id, key in settings.provider_api_keys.items():
        if key and not validate_api_key_format(provider_id, key):
            logger.warning("Configured %s API key does not look like a %s key", provider_id, provider_id)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    validate_settings_for_production()
    init_sentry()
    _warn_on_suspicious_keys()
    logger.info("Starting code generation gateway (providers: %s)", ", ".join(settings.priority_order))

    yield

    # Shutdown
    logger.info("Code generation gateway shut down")


app = FastAPI(
    title="Codegen Gateway",
    description="Streaming code generation gateway over multiple LLM providers",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.app_debug else None,
    redoc_url="/api/redoc" if settings.app_debug else None,
)


@app.exception_handler(GatewayError)
async def _gateway_error_handler(request: Request, exc: GatewayError):
    secrets = [k for k in settings.provider_api_keys.values() if k]
    detail = scrub_secrets(exc.message, secrets)
    content: dict = {"detail": detail}
    headers: dict[str, str] = {}
    if isinstance(exc, RateLimitExceededError):
        content["retry_after"] = exc.retry_after
        headers["Retry-After"] = str(exc.retry_after)
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, detail)
    else:
        logger.info("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, detail)
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers or None)


@app.exception_handler(RequestValidationError)
async def _validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg", ""), "type": e.get("type", "")}
        for e in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"detail": errors})


# Log unhandled exceptions; the body never carries raw exception text
@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
    logger.error("Unhandled %s on %s %s:\n%s", type(exc).__name__, request.method, request.url.path, "".join(tb))
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Rate limiter (catalog endpoints)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Request logging + metrics middleware
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(PrometheusMiddleware)

# CORS — parse allowed_origins from settings (comma-separated)
_origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials="*" not in _origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API routes
app.include_router(api_v1_router)


@app.get("/api/v1/health")
async def health():
    return {
        "status": "ok",
        "providers": [p for p, key in settings.provider_api_keys.items() if key]
        + (["ollama"] if settings.ollama_enabled else []),
    }


@app.get("/metrics", include_in_schema=False)
async def metrics():
    return metrics_response()
