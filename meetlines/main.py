import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware
from pathlib import Path

import meetlines.realtime  # noqa: F401  registers the change-feed session listeners
from meetlines.database import init_db
from meetlines.config import get_settings
from meetlines.errors import FunctionError
from meetlines.rate_limit import limiter
from meetlines.routers import ai, maintenance, payments
from meetlines.services.storage import PUBLIC_PREFIX

logger = logging.getLogger(__name__)

FUNCTIONS_PREFIX = "/functions/v1"

# Initialize FastAPI app
app = FastAPI(
    title="Meetlines Functions",
    description="Serverless functions for Meetlines: Stripe Connect payouts, ticket payments, "
                "AI event descriptions and scheduled maintenance",
    version="1.0.0",
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# ============== Global Error Handlers ==============

@app.exception_handler(FunctionError)
async def function_error_handler(request: Request, exc: FunctionError):
    """Every handled function failure becomes ``{error, success: false}``."""
    logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "success": False},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed function bodies fail like any other function error."""
    errors = []
    for err in exc.errors():
        field = " -> ".join(str(loc) for loc in err["loc"] if loc != "body")
        errors.append(f"{field}: {err['msg']}" if field else err["msg"])
    status_code = 500 if request.url.path.startswith(FUNCTIONS_PREFIX) else 422
    return JSONResponse(
        status_code=status_code,
        content={"error": f"Invalid request body: {'; '.join(errors)}", "success": False},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Catch-all for unhandled exceptions: log full traceback, return safe message."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "success": False},
    )


app.include_router(payments.router)
app.include_router(ai.router)
app.include_router(maintenance.router)


@app.options(FUNCTIONS_PREFIX + "/{name}")
def function_preflight(name: str):
    """Bare OPTIONS probes on any function succeed."""
    return Response(status_code=200)


# Public object storage (avatars and other user uploads)
settings = get_settings()
uploads_dir = Path(settings.uploads_dir)
uploads_dir.mkdir(parents=True, exist_ok=True)
app.mount(PUBLIC_PREFIX, StaticFiles(directory=str(uploads_dir)), name="storage")


# ============== API Key Middleware ==============
# When STORE_ANON_KEY is set, function calls must carry an ``apikey`` header
# equal to the anon or the service-role key. Stripe cannot send one, so the
# webhook stays open and relies on its signature instead.

PUBLIC_PATHS = {"/health", "/docs", "/openapi.json", "/redoc", FUNCTIONS_PREFIX + "/stripe-webhook"}
PUBLIC_PREFIXES = (PUBLIC_PREFIX + "/",)


class ApiKeyAuthMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        settings = get_settings()
        if not settings.store_anon_key or request.method == "OPTIONS":
            return await call_next(request)

        path = request.url.path
        if path in PUBLIC_PATHS or any(path.startswith(p) for p in PUBLIC_PREFIXES):
            return await call_next(request)

        accepted = {settings.store_anon_key}
        if settings.store_service_role_key:
            accepted.add(settings.store_service_role_key)
        if request.headers.get("apikey") not in accepted:
            return JSONResponse(
                status_code=401,
                content={"error": "Invalid API key", "success": False},
            )

        return await call_next(request)


app.add_middleware(ApiKeyAuthMiddleware)


# ============== CORS Middleware ==============
# Added last so it wraps every response, including the apikey rejections
_origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()] if settings.cors_origins else ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup():
    """Initialize database and scheduler on startup."""
    init_db()
    if get_settings().scheduler_enabled:
        from meetlines.services.scheduler import init_scheduler
        init_scheduler()


@app.on_event("shutdown")
def on_shutdown():
    """Shut down scheduler gracefully."""
    from meetlines.services.scheduler import shutdown_scheduler
    shutdown_scheduler()


@app.get("/health")
def health_check():
    """Health check endpoint: verifies DB connectivity."""
    from sqlalchemy import text
    from sqlalchemy.exc import SQLAlchemyError
    from meetlines.database import SessionLocal

    checks = {"db": "ok"}
    status = "healthy"

    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        checks["db"] = str(e)
        status = "unhealthy"
    finally:
        db.close()

    code = 200 if status == "healthy" else 503
    return JSONResponse(status_code=code, content={"status": status, "checks": checks})
