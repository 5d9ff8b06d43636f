"""
Reely - FastAPI Backend
Main application entry point: location analysis, folders and the guessing game.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from config import settings, validate_security_settings
from database import engine, Base
import models  # noqa: F401
from multimodal.vision import VisionClient
from routers import auth, folders, health, leaderboard, uploads
from services.auth_provider import AuthProviderClient
from services.storage import MediaStorage
from services.video_pipeline import VideoProcessingOptions

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting Reely API...")
    validate_security_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    if not app.state.vision_client.configured:
        print("⚠️ OPENAI_API_KEY missing; uploads will fail with API_FAILURE.")
    if app.state.media_storage.mirrored:
        print(f"🪣 Mirroring uploads to bucket {settings.OBJECT_STORAGE_BUCKET}.")
    yield
    # Shutdown
    await app.state.auth_provider.aclose()
    print("👋 Shutting down API...")


app = FastAPI(
    title="Reely API",
    description="Find where an image or video was taken, then play the guessing game",
    version="0.1.0",
    lifespan=lifespan,
)

app.state.vision_client = VisionClient.from_settings(settings)
app.state.media_storage = MediaStorage.from_settings(settings)
app.state.auth_provider = AuthProviderClient.from_settings(settings)
app.state.video_options = VideoProcessingOptions.from_settings(settings)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(auth.router, prefix="/auth", tags=["Authentication"])
app.include_router(uploads.router, tags=["Uploads"])
app.include_router(folders.router, prefix="/folders", tags=["Folders"])
app.include_router(leaderboard.router, tags=["Leaderboard"])

app.mount("/uploads", StaticFiles(directory=settings.UPLOAD_DIR, check_dir=False), name="uploads")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Reely API",
        "version": "0.1.0",
        "status": "running",
        "endpoints": {
            "upload": "POST /upload",
            "guess": "PATCH /upload/{id}/guess",
            "history": "GET /history",
            "folders": "/folders",
            "leaderboard": "GET /leaderboard",
            "health": "GET /health",
        },
    }
