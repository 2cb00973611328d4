# backend/housecup/main.py
from contextlib import asynccontextmanager
from typing import List

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.responses import Response

# rate limiting
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from housecup.core.errors import ElectionError
from housecup.core.limiter import limiter
from housecup.core.logger import election_logger as logger
from housecup.core.settings import get_settings
from housecup.db import init_db
from housecup.services.broadcast import EventHub

# ---- Allowed origins (env-overridable) ----
DEFAULT_ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]


def _load_allowed_origins() -> List[str]:
    """
    Optionally override via:
      ALLOWED_ORIGINS="https://housecup.example.edu"
      (comma-separated list if multiple)
    """
    return get_settings().allowed_origins or DEFAULT_ALLOWED_ORIGINS


ALLOWED_ORIGINS = _load_allowed_origins()

# ---- Default security headers ----
SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=(self)",
    "Content-Security-Policy": (
        "default-src 'self'; "
        "frame-ancestors 'none'; "
        "object-src 'none'; "
        "base-uri 'self'; "
        "form-action 'self'"
    ),
}
# NOTE: HSTS only takes effect when served over HTTPS (enable at your reverse proxy in prod)
STRICT_TRANSPORT_SECURITY = "max-age=31536000; includeSubDomains"


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("House Cup election service started")
    yield


app = FastAPI(title="House Cup Elections", lifespan=lifespan)
# The realtime hub is created here and handed to the services per request.
app.state.hub = EventHub()

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["authorization", "content-type", "x-requested-with"],
    max_age=3600,
)

app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)


@app.exception_handler(RateLimitExceeded)
def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    response = JSONResponse(
        status_code=429,
        content={"error": "too_many_requests", "detail": "Try again later.", "outcome": "no_effect"},
    )
    for header, value in (getattr(exc, "headers", {}) or {}).items():
        response.headers.setdefault(header, value)
    return response


@app.exception_handler(ElectionError)
def _election_error_handler(request: Request, exc: ElectionError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ---- Security headers middleware ----
@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response: Response = await call_next(request)
    for header, value in SECURITY_HEADERS.items():
        response.headers.setdefault(header, value)
    # HSTS (effective only when behind HTTPS)
    response.headers.setdefault("Strict-Transport-Security", STRICT_TRANSPORT_SECURITY)
    return response


# ---- HTTP hardening middleware ----
@app.middleware("http")
async def check_http_hardening(request: Request, call_next):
    # Every mutation is a POST; PUT/DELETE are never routed.
    if request.method in ["PUT", "DELETE", "PATCH"]:
        return JSONResponse(
            status_code=405,
            content={"detail": "Method Not Allowed"},
            headers={"Allow": "GET, POST, OPTIONS"},
        )

    if request.method == "POST":
        content_type = request.headers.get("content-type", "")
        if not content_type.lower().startswith("application/json"):
            return JSONResponse(
                status_code=415,
                content={"detail": "Unsupported Media Type. Must be application/json"},
            )

    response: Response = await call_next(request)
    return response


# ---- Health endpoint (used by tests and curl) ----
@app.get("/health")
def health():
    return {"ok": True, "subscribers": app.state.hub.subscriber_count}


# ---- Routers ----
from housecup.routers import admin, attendance, events, nominations, positions, results, users, votes  # noqa: E402

app.include_router(users.router)
app.include_router(positions.router)
app.include_router(nominations.router)
app.include_router(votes.router)
app.include_router(results.router)
app.include_router(admin.router)
app.include_router(attendance.router)
app.include_router(events.router)
