from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ErrorType(str, Enum):
    NO_COORDINATES = "NO_COORDINATES"
    LOW_CONFIDENCE = "LOW_CONFIDENCE"
    API_FAILURE = "API_FAILURE"


HARD_ERRORS = {ErrorType.NO_COORDINATES, ErrorType.API_FAILURE}


class Coordinates(BaseModel):
    latitude: float
    longitude: float


class LocationGuess(BaseModel):
    """Location fields returned by the vision model."""

    location_name: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    confidence: Confidence = Confidence.LOW
    confidence_reason: Optional[str] = None
    additional_info: Optional[str] = None

    @property
    def coordinates(self) -> Optional[Coordinates]:
        if self.latitude is None or self.longitude is None:
            return None
        return Coordinates(latitude=self.latitude, longitude=self.longitude)


class AnalysisOk(BaseModel):
    kind: Literal["ok"] = "ok"
    guess: LocationGuess
    raw: Dict[str, Any] = Field(default_factory=dict)


class AnalysisWarning(BaseModel):
    """Partially successful guess: NO_COORDINATES or LOW_CONFIDENCE."""

    kind: Literal["warning"] = "warning"
    guess: LocationGuess
    warning: ErrorType
    message: str
    raw: Dict[str, Any] = Field(default_factory=dict)


class AnalysisFailure(BaseModel):
    kind: Literal["failure"] = "failure"
    error: ErrorType = ErrorType.API_FAILURE
    message: str
    details: Optional[str] = None


AnalysisResult = Annotated[Union[AnalysisOk, AnalysisWarning, AnalysisFailure], Field(discriminator="kind")]


def error_type_of(result: AnalysisResult) -> Optional[ErrorType]:
    if isinstance(result, AnalysisWarning):
        return result.warning
    if isinstance(result, AnalysisFailure):
        return result.error
    return None


def guess_of(result: AnalysisResult) -> LocationGuess:
    """Return the location fields of a result; failures yield an empty low-confidence guess."""
    if isinstance(result, (AnalysisOk, AnalysisWarning)):
        return result.guess
    return LocationGuess(location_name="Unknown Location", confidence=Confidence.LOW)


def to_analysis_payload(result: AnalysisResult) -> Dict[str, Any]:
    """Flatten a result into the JSON snapshot kept as ``raw_response``."""
    if isinstance(result, AnalysisFailure):
        return {
            "location_name": "Unknown Location",
            "latitude": None,
            "longitude": None,
            "confidence": Confidence.LOW.value,
            "error": result.error.value,
            "error_message": result.message,
            "details": result.details,
        }
    payload = dict(result.raw)
    payload.update(result.guess.model_dump(mode="json"))
    if isinstance(result, AnalysisWarning):
        payload["error"] = result.warning.value
        payload["error_message"] = result.message
    return payload


class FrameLocation(BaseModel):
    """A unique location found in a video frame."""

    analysis: Union[AnalysisOk, AnalysisWarning]
    frame_number: int  # 1-based position in the extracted sequence
    timestamp: str  # e.g. "15.0s"
    frame_path: str
    frame_filename: Optional[str] = None

    @property
    def guess(self) -> LocationGuess:
        return self.analysis.guess


class VideoProcessingResult(BaseModel):
    total_frames: int
    sampled_frames: int
    analyzed_frames: int
    unique_locations: int
    locations: List[FrameLocation]
    processing_time: str
    elapsed_seconds: float
