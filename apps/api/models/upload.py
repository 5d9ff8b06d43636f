"""Upload model for analyzed images and video-derived locations."""

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, JSON, String, Text
from sqlalchemy.sql import func
import uuid

from database import Base


class Upload(Base):
    """One analyzed image, or one unique location detected in a video."""

    __tablename__ = "uploads"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, nullable=False, index=True)

    # Source
    filename = Column(String, nullable=False)
    original_name = Column(String, nullable=True)
    media_type = Column(String, nullable=False, default="image")  # image, video
    mime_type = Column(String, nullable=True)
    frame_number = Column(Integer, nullable=True)
    frame_timestamp = Column(String, nullable=True)  # e.g. "15.0s"

    # Location guess
    location_name = Column(String, nullable=True)
    address = Column(String, nullable=True)
    city = Column(String, nullable=True)
    country = Column(String, nullable=True)
    category = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    confidence = Column(String, nullable=False, default="low")  # high, medium, low
    confidence_reason = Column(Text, nullable=True)

    # Error state
    has_error = Column(Boolean, nullable=False, default=False)
    error_type = Column(String, nullable=True)  # NO_COORDINATES, LOW_CONFIDENCE, API_FAILURE
    error_message = Column(Text, nullable=True)

    # Game result, written once
    guessed_latitude = Column(Float, nullable=True)
    guessed_longitude = Column(Float, nullable=True)
    guessed_at = Column(DateTime(timezone=True), nullable=True)
    distance_km = Column(Float, nullable=True)
    points = Column(Integer, nullable=True, index=True)

    raw_response = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    @property
    def has_actual_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def has_guess(self) -> bool:
        return self.guessed_latitude is not None and self.guessed_longitude is not None
