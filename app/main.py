"""
Main FastAPI application for the image generation platform API.
Serves auth, profile, tokens, payments, images, uploads, notifications, admin,
the Stripe webhook, health probes and metrics.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.errors import ServiceError
from app.core.logging import configure_logging
from app.api.routes import (
    admin,
    auth,
    health,
    images,
    notifications,
    payments,
    profile,
    tokens,
    upload,
    webhooks,
)
from app.utils.metrics import router as metrics_router

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Image Generation Platform API",
    description="Token-metered AI image generation",
    version="1.0.0",
)

# CORS
origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
if not origins:
    origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error", extra={"path": request.url.path, "method": request.method})
    return JSONResponse(status_code=500, content={"detail": "Server error"})


# Routers
app.include_router(health.router, tags=["health"])
app.include_router(auth.router)
app.include_router(profile.router)
app.include_router(tokens.router)
app.include_router(payments.router)
app.include_router(webhooks.router)
app.include_router(images.router)
app.include_router(upload.router)
app.include_router(notifications.router)
app.include_router(admin.router)
app.include_router(metrics_router)
