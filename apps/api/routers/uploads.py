"""
Upload router: analyze images and videos, guess history, and the map game.
"""

import asyncio
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from models.upload import Upload
from multimodal.models import AnalysisFailure, AnalysisWarning, ErrorType, to_analysis_payload
from multimodal.video import ExtractionError, get_video_metadata
from multimodal.vision import VisionClient, validate_coordinates
from routers.auth_scope import AuthContext, get_auth_context, get_optional_auth_context
from routers.collaborators import get_media_storage, get_video_options, get_vision_client
from routers.rate_limit import rate_limit
from services.storage import FileTooLargeError, MediaStorage, StoredFile, remove_path, sanitize_filename
from services.uploads import (
    GuessAlreadySubmittedError,
    build_frame_upload,
    build_upload,
    delete_upload_service,
    get_upload,
    list_uploads_service,
    serialize_image_result,
    serialize_upload,
    submit_guess_service,
)
from services.video_pipeline import VideoProcessingOptions, process_video

router = APIRouter()
logger = logging.getLogger(__name__)

ALLOWED_IMAGE_MIME_TYPES = {"image/jpeg", "image/png"}
ALLOWED_VIDEO_MIME_TYPES = {"video/mp4", "video/quicktime", "video/x-msvideo", "video/webm"}


class GuessRequest(BaseModel):
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    distance: Optional[float] = Field(default=None, ge=0)
    points: Optional[int] = Field(default=None, ge=0)


def _error(status_code: int, code: str, message: str, **extra) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"error": code, "message": message, **extra})


async def _discard(stored: StoredFile) -> None:
    await asyncio.to_thread(remove_path, stored.path)


async def _analyze_image(
    stored: StoredFile,
    original_name: str,
    auth: AuthContext,
    vision: VisionClient,
    storage: MediaStorage,
    db: AsyncSession,
) -> dict:
    result = await vision.analyze_file(str(stored.path), stored.content_type)

    if isinstance(result, AnalysisFailure):
        await _discard(stored)
        raise _error(500, ErrorType.API_FAILURE.value, result.message, details=result.details)

    if isinstance(result, AnalysisWarning) and result.warning == ErrorType.NO_COORDINATES:
        await _discard(stored)
        raise _error(400, ErrorType.NO_COORDINATES.value, result.message, analysis=to_analysis_payload(result))

    if not validate_coordinates(result.guess.latitude, result.guess.longitude):
        await _discard(stored)
        raise _error(
            400,
            "INVALID_COORDINATES",
            "The detected coordinates are outside valid ranges",
            analysis=to_analysis_payload(result),
        )

    upload = build_upload(
        user_id=auth.user_id,
        filename=stored.filename,
        original_name=original_name,
        mime_type=stored.content_type,
        result=result,
    )
    image_url = await storage.publish(stored.filename)
    try:
        db.add(upload)
        await db.commit()
    except Exception:
        await db.rollback()
        await storage.delete(stored.filename)
        raise
    await db.refresh(upload)
    logger.info("Analysis complete for %s: %s", stored.filename, upload.location_name)
    return serialize_image_result(upload, image_url)


async def _analyze_video(
    stored: StoredFile,
    original_name: str,
    auth: AuthContext,
    vision: VisionClient,
    storage: MediaStorage,
    options: VideoProcessingOptions,
    db: AsyncSession,
) -> dict:
    try:
        metadata = await asyncio.to_thread(get_video_metadata, str(stored.path))
        try:
            result = await process_video(
                str(stored.path),
                vision=vision,
                storage=storage,
                scratch_root=settings.FRAMES_SCRATCH_DIR,
                options=options,
            )
        except ExtractionError as exc:
            raise _error(500, "VIDEO_PROCESSING_ERROR", "Failed to extract frames from video", details=str(exc)) from exc

        uploads: List[Upload] = [
            build_frame_upload(auth.user_id, original_name, stored.content_type, location)
            for location in result.locations
        ]
        try:
            for upload in uploads:
                await storage.publish(upload.filename)
            db.add_all(uploads)
            await db.commit()
        except Exception:
            await db.rollback()
            for upload in uploads:
                await storage.delete(upload.filename)
            raise
        for upload in uploads:
            await db.refresh(upload)
    finally:
        if not settings.KEEP_SOURCE_VIDEOS:
            await _discard(stored)

    return {
        "type": "video",
        "locations": [serialize_upload(upload, storage) for upload in uploads],
        "processing": {
            "totalFrames": result.total_frames,
            "sampledFrames": result.sampled_frames,
            "analyzedFrames": result.analyzed_frames,
            "uniqueLocations": result.unique_locations,
            "processingTime": result.processing_time,
            "elapsedSeconds": result.elapsed_seconds,
        },
        "metadata": {**metadata, "original_name": original_name},
        "message": (
            f"Found {result.unique_locations} unique locations in video"
            if result.unique_locations
            else "Video processed, no locations found"
        ),
    }


@router.post("/upload")
async def upload_media(
    screenshot: Optional[UploadFile] = File(default=None),
    _rate_limit: None = Depends(rate_limit("upload", limit=settings.UPLOAD_RATE_LIMIT_PER_HOUR, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    vision: VisionClient = Depends(get_vision_client),
    storage: MediaStorage = Depends(get_media_storage),
    options: VideoProcessingOptions = Depends(get_video_options),
    db: AsyncSession = Depends(get_db),
):
    """Analyze an uploaded image, or every distinct place in an uploaded video."""
    if screenshot is None or not screenshot.filename:
        raise _error(400, "NO_FILE", "No file uploaded")

    content_type = (screenshot.content_type or "").lower()
    if content_type not in ALLOWED_IMAGE_MIME_TYPES | ALLOWED_VIDEO_MIME_TYPES:
        await screenshot.close()
        raise _error(
            400,
            "UNSUPPORTED_FILE_TYPE",
            "Only JPEG/PNG images and MP4/MOV/AVI/WebM videos are allowed",
        )

    original_name = sanitize_filename(screenshot.filename)
    try:
        stored = await storage.save_upload(screenshot, max_bytes=settings.MAX_UPLOAD_MB * 1024 * 1024)
    except FileTooLargeError as exc:
        raise _error(413, "FILE_TOO_LARGE", str(exc)) from exc

    logger.info("Processing %s (%s) for user %s", original_name, content_type, auth.user_id)
    try:
        if content_type in ALLOWED_VIDEO_MIME_TYPES:
            return await _analyze_video(stored, original_name, auth, vision, storage, options, db)
        return await _analyze_image(stored, original_name, auth, vision, storage, db)
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("Upload processing failed for %s", original_name)
        await _discard(stored)
        raise _error(500, "PROCESSING_ERROR", "Failed to process upload", details=str(exc)) from exc


@router.patch("/upload/{upload_id}/guess")
async def save_guess(
    upload_id: str,
    request: GuessRequest,
    auth: AuthContext = Depends(get_auth_context),
    storage: MediaStorage = Depends(get_media_storage),
    db: AsyncSession = Depends(get_db),
):
    """Record the owner's single guess for an upload."""
    if request.latitude is None or request.longitude is None:
        raise _error(400, "MISSING_COORDINATES", "latitude and longitude are required")
    if not validate_coordinates(request.latitude, request.longitude):
        raise _error(400, "INVALID_COORDINATES", "latitude/longitude are out of range")

    upload = await get_upload(upload_id, db)
    if upload is None:
        raise _error(404, "UPLOAD_NOT_FOUND", "Upload not found")
    if upload.user_id != auth.user_id:
        raise _error(403, "NOT_OWNER", "You can only guess on your own uploads")

    try:
        upload = await submit_guess_service(
            upload,
            request.latitude,
            request.longitude,
            db,
            client_distance=request.distance,
            client_points=request.points,
        )
    except GuessAlreadySubmittedError as exc:
        raise _error(409, "GUESS_ALREADY_SUBMITTED", "A guess was already recorded for this upload") from exc

    return {"success": True, "upload": serialize_upload(upload, storage)}


@router.get("/history")
async def get_history(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    auth: AuthContext = Depends(get_auth_context),
    storage: MediaStorage = Depends(get_media_storage),
    db: AsyncSession = Depends(get_db),
):
    """List the caller's uploads, newest first."""
    uploads, total = await list_uploads_service(auth.user_id, limit, offset, db)
    return {
        "uploads": [serialize_upload(upload, storage) for upload in uploads],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


@router.get("/upload/{upload_id}")
async def get_single_upload(
    upload_id: str,
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
    storage: MediaStorage = Depends(get_media_storage),
    db: AsyncSession = Depends(get_db),
):
    upload = await get_upload(upload_id, db, user_id=auth.user_id if auth else None)
    if upload is None:
        raise _error(404, "UPLOAD_NOT_FOUND", "Upload not found")
    return serialize_upload(upload, storage)


@router.delete("/upload/{upload_id}")
async def delete_upload(
    upload_id: str,
    auth: AuthContext = Depends(get_auth_context),
    storage: MediaStorage = Depends(get_media_storage),
    db: AsyncSession = Depends(get_db),
):
    upload = await get_upload(upload_id, db, user_id=auth.user_id)
    if upload is None:
        raise _error(404, "UPLOAD_NOT_FOUND", "Upload not found")
    await delete_upload_service(upload, storage, db)
    return {"success": True, "message": "Upload deleted successfully"}
