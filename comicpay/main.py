"""
Main FastAPI application for the comic platform credit core.
Serves health, wallet auth, credits, content unlocks, admin and metrics.
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from comicpay.api.errors import register_error_handlers
from comicpay.api.routes import admin, auth, content, credits, health
from comicpay.core.config import settings
from comicpay.core.logging import configure_logging
from comicpay.utils.metrics import router as metrics_router

configure_logging()

app = FastAPI(
    title="Comic Platform Credits API",
    description="Wallet sign-in, on-chain credit purchases and chapter unlocks",
    version="1.0.0",
)

# CORS
origins = settings.cors_origins_list
if not origins:
    origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

# Routers
app.include_router(health.router, tags=["health"])
app.include_router(auth.router)
app.include_router(credits.router)
app.include_router(content.router)
app.include_router(admin.router)
app.include_router(metrics_router)
