"""Upload record persistence, serialization and guess scoring."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete, func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.folder import FolderUpload
from models.upload import Upload
from multimodal.geo import accuracy_label, calculate_points, haversine_km
from multimodal.models import (
    AnalysisResult,
    FrameLocation,
    HARD_ERRORS,
    error_type_of,
    guess_of,
    to_analysis_payload,
)
from multimodal.vision import generate_maps_url, generate_street_view_url
from services.storage import MediaStorage

logger = logging.getLogger(__name__)


class GuessAlreadySubmittedError(Exception):
    pass


def media_type_for(mime_type: Optional[str]) -> str:
    return "video" if (mime_type or "").startswith("video/") else "image"


def build_upload(
    user_id: str,
    filename: str,
    original_name: Optional[str],
    mime_type: Optional[str],
    result: AnalysisResult,
    frame_number: Optional[int] = None,
    frame_timestamp: Optional[str] = None,
) -> Upload:
    """Create an Upload from an analysis result; hard errors never keep coordinates."""
    guess = guess_of(result)
    error_type = error_type_of(result)
    keep_coordinates = error_type not in HARD_ERRORS
    message = getattr(result, "message", None) if error_type else None

    return Upload(
        user_id=user_id,
        filename=filename,
        original_name=original_name,
        media_type=media_type_for(mime_type),
        mime_type=mime_type,
        frame_number=frame_number,
        frame_timestamp=frame_timestamp,
        location_name=guess.location_name,
        address=guess.address,
        city=guess.city,
        country=guess.country,
        category=guess.category,
        description=guess.description,
        latitude=guess.latitude if keep_coordinates else None,
        longitude=guess.longitude if keep_coordinates else None,
        confidence=guess.confidence.value,
        confidence_reason=guess.confidence_reason,
        has_error=error_type is not None,
        error_type=error_type.value if error_type else None,
        error_message=message,
        raw_response=to_analysis_payload(result),
    )


def build_frame_upload(user_id: str, original_name: Optional[str], mime_type: Optional[str], location: FrameLocation) -> Upload:
    upload = build_upload(
        user_id=user_id,
        filename=location.frame_filename or "",
        original_name=original_name,
        mime_type=mime_type,
        result=location.analysis,
        frame_number=location.frame_number,
        frame_timestamp=location.timestamp,
    )
    upload.raw_response = {
        **(upload.raw_response or {}),
        "frameNumber": location.frame_number,
        "timestamp": location.timestamp,
        "frameFilename": location.frame_filename,
    }
    return upload


def _coordinates(lat: Optional[float], lng: Optional[float]) -> Optional[Dict[str, float]]:
    if lat is None or lng is None:
        return None
    return {"latitude": lat, "longitude": lng}


def serialize_upload(upload: Upload, storage: MediaStorage) -> Dict[str, Any]:
    return {
        "id": upload.id,
        "filename": upload.filename,
        "original_name": upload.original_name,
        "media_type": upload.media_type,
        "imageUrl": storage.public_url(upload.filename),
        "location_name": upload.location_name,
        "address": upload.address,
        "city": upload.city,
        "country": upload.country,
        "category": upload.category,
        "description": upload.description,
        "coordinates": _coordinates(upload.latitude, upload.longitude),
        "guessed_coordinates": _coordinates(upload.guessed_latitude, upload.guessed_longitude),
        "confidence": upload.confidence,
        "confidence_reason": upload.confidence_reason,
        "hasError": bool(upload.has_error),
        "errorType": upload.error_type,
        "errorMessage": upload.error_message,
        "distance_km": upload.distance_km,
        "points": upload.points,
        "accuracy": accuracy_label(upload.distance_km) if upload.distance_km is not None else None,
        "frameNumber": upload.frame_number,
        "timestamp": upload.frame_timestamp,
        "google_maps_url": generate_maps_url(upload.location_name, upload.address, upload.city, upload.country),
        "street_view_url": generate_street_view_url(upload.latitude, upload.longitude),
        "created_at": upload.created_at.isoformat() if upload.created_at else None,
        "analysis": upload.raw_response,
    }


def serialize_image_result(upload: Upload, image_url: str) -> Dict[str, Any]:
    """Response body for a single analyzed image."""
    return {
        "id": upload.id,
        "filename": upload.filename,
        "imageUrl": image_url,
        "coordinates": _coordinates(upload.latitude, upload.longitude),
        "location": {
            "name": upload.location_name,
            "address": upload.address,
            "city": upload.city,
            "country": upload.country,
            "category": upload.category,
            "description": upload.description,
        },
        "confidence": upload.confidence,
        "confidence_reason": upload.confidence_reason,
        "hasError": bool(upload.has_error),
        "errorType": upload.error_type,
        "errorMessage": upload.error_message,
        "google_maps_url": generate_maps_url(upload.location_name, upload.address, upload.city, upload.country),
        "street_view_url": generate_street_view_url(upload.latitude, upload.longitude),
        "analysis": upload.raw_response,
        "message": "Screenshot analyzed successfully",
    }


async def list_uploads_service(user_id: str, limit: int, offset: int, db: AsyncSession) -> Tuple[List[Upload], int]:
    result = await db.execute(
        select(Upload)
        .where(Upload.user_id == user_id)
        .order_by(Upload.created_at.desc(), Upload.id)
        .offset(offset)
        .limit(limit)
    )
    uploads = list(result.scalars().all())
    total_result = await db.execute(select(func.count()).select_from(Upload).where(Upload.user_id == user_id))
    return uploads, int(total_result.scalar_one())


async def get_upload(upload_id: str, db: AsyncSession, user_id: Optional[str] = None) -> Optional[Upload]:
    query = select(Upload).where(Upload.id == upload_id)
    if user_id is not None:
        query = query.where(Upload.user_id == user_id)
    result = await db.execute(query)
    return result.scalar_one_or_none()


def score_guess(
    upload: Upload,
    latitude: float,
    longitude: float,
    client_distance: Optional[float] = None,
    client_points: Optional[int] = None,
) -> Tuple[Optional[float], Optional[int]]:
    """Server-side distance and points when the true location is known."""
    if upload.has_actual_coordinates:
        distance = haversine_km(upload.latitude, upload.longitude, latitude, longitude)
        return round(distance, 3), calculate_points(distance)
    return client_distance, client_points


async def submit_guess_service(
    upload: Upload,
    latitude: float,
    longitude: float,
    db: AsyncSession,
    client_distance: Optional[float] = None,
    client_points: Optional[int] = None,
) -> Upload:
    """
    Record the owner's guess. The conditional update makes the first guess
    win even under concurrent requests.
    """
    upload_id = upload.id
    owner_id = upload.user_id
    if upload.has_guess:
        raise GuessAlreadySubmittedError(upload_id)
    distance, points = score_guess(upload, latitude, longitude, client_distance, client_points)
    result = await db.execute(
        update(Upload)
        .where(
            Upload.id == upload_id,
            Upload.user_id == owner_id,
            Upload.guessed_latitude.is_(None),
        )
        .values(
            guessed_latitude=latitude,
            guessed_longitude=longitude,
            guessed_at=datetime.now(timezone.utc),
            distance_km=distance,
            points=points,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise GuessAlreadySubmittedError(upload_id)
    await db.commit()
    await db.refresh(upload)
    logger.info("Guess saved for upload %s: %.2f km, %s points", upload_id, distance or 0.0, points)
    return upload


async def delete_upload_service(upload: Upload, storage: MediaStorage, db: AsyncSession) -> None:
    filename = upload.filename
    await db.execute(delete(FolderUpload).where(FolderUpload.upload_id == upload.id))
    await db.delete(upload)
    await db.commit()
    await storage.delete(filename)

