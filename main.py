"""
Guest Pass - Backend API
FastAPI + SQLModel: guest invitations, identity verification and door check-in
"""
from dotenv import load_dotenv
load_dotenv()  # Load .env before any other imports

import structlog
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from config import settings
from api.deps import new_csrf_token, set_csrf_cookie
from api.errors import register_exception_handlers
from api.v1 import admin, auth, guests, passes, scanner, webhooks

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.JSONRenderer(),
    ]
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    if settings.auto_create_tables:
        from infrastructure.database import init_db
        await init_db()

    logger.info("api_started", service=settings.app_name)

    yield

    # Shutdown
    logger.info("api_shutdown", service=settings.app_name)


app = FastAPI(
    title=settings.app_name,
    description="Guest access passes: invitations, identity verification and front desk check-in",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Routers
app.include_router(auth.router, prefix="/api/v1/auth", tags=["auth"])
app.include_router(guests.router, prefix="/api/v1/guests", tags=["guests"])
app.include_router(passes.router, prefix="/api/v1/passes", tags=["passes"])
app.include_router(scanner.router, prefix="/api/v1/scanner", tags=["scanner"])
app.include_router(webhooks.router, prefix="/api/v1/webhooks", tags=["webhooks"])
app.include_router(admin.router, prefix="/api/v1/admin", tags=["admin"])


@app.get("/api/v1/csrf")
async def csrf_token(response: Response):
    """Double-submit CSRF token: sent back as a cookie and echoed in X-CSRF-Token"""
    token = new_csrf_token()
    set_csrf_cookie(response, token)
    return {"ok": True, "csrfToken": token}


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "guestpass-api"}


@app.get("/")
async def root():
    return {"message": settings.app_name, "docs": "/docs"}
