import asyncio
import base64
import json
import logging
import mimetypes
import re
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import quote

from openai import OpenAI

from .models import (
    AnalysisFailure,
    AnalysisOk,
    AnalysisResult,
    AnalysisWarning,
    Confidence,
    ErrorType,
    LocationGuess,
)

logger = logging.getLogger(__name__)

REQUIRED_KEYS = (
    "location_name",
    "latitude",
    "longitude",
    "address",
    "city",
    "country",
    "description",
    "category",
    "confidence",
    "confidence_reason",
)

LOCATION_PROMPT = """
Analyze this image and identify the real-world place it shows, with precise coordinates.

1. Name the specific place (business, landmark, street or area).
2. Give its latitude and longitude in decimal degrees.
3. Give the full address if visible or determinable, otherwise the city or area.
4. Describe what kind of place it is and its notable features.
5. Rate your confidence in the identification.

Use street signs, storefront text, logos, architecture, vegetation, road markings
and language on signs as evidence. Only answer "high" confidence when you are
very certain.

Respond ONLY with a single JSON object, no markdown and no explanation:
{
  "location_name": "Name of the place or landmark",
  "latitude": 0.0,
  "longitude": 0.0,
  "address": "Full address, or city/area if partial",
  "city": "City name",
  "country": "Country name",
  "description": "Brief description of the place",
  "category": "restaurant|cafe|bar|attraction|park|landmark|store|hotel|street|nature|other",
  "confidence": "high|medium|low",
  "confidence_reason": "Why you assigned this confidence level",
  "additional_info": "Nearby landmarks or other distinctive details"
}

If you cannot determine the location, set confidence to "low", explain why, and
set latitude and longitude to null.
"""

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)

_MIME_BY_SUFFIX = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
}


def validate_coordinates(lat: Any, lng: Any) -> bool:
    """True when both values are numbers in range and not null island."""
    for value in (lat, lng):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
        if value != value:  # NaN
            return False
    return -90 <= lat <= 90 and -180 <= lng <= 180 and not (lat == 0 and lng == 0)


def generate_maps_url(
    location_name: Optional[str],
    address: Optional[str] = None,
    city: Optional[str] = None,
    country: Optional[str] = None,
) -> str:
    query = ", ".join(part for part in (location_name, address, city, country) if part)
    return f"https://www.google.com/maps/search/?api=1&query={quote(query, safe='')}"


def generate_street_view_url(lat: Optional[float], lng: Optional[float]) -> Optional[str]:
    if lat is None or lng is None:
        return None
    return (
        "https://www.google.com/maps/@?api=1&map_action=pano"
        f"&viewpoint={lat},{lng}&heading=0&pitch=0&fov=80"
    )


def _first_object_span(text: str) -> Optional[str]:
    """Return the first balanced top-level {...} span, honouring JSON strings."""
    start = text.find("{")
    if start < 0:
        return None
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start:index + 1]
    return None


def extract_json_payload(text: str) -> Dict[str, Any]:
    """Unwrap a model reply: fenced block first, then the first {...} span."""
    if not text or not text.strip():
        raise ValueError("Empty response from vision model")

    fenced = _FENCED_BLOCK.search(text)
    if fenced:
        candidate = fenced.group(1).strip()
    else:
        candidate = _first_object_span(text)
        if candidate is None:
            raise ValueError("No JSON object found in vision model response")

    data = json.loads(candidate)
    if not isinstance(data, dict):
        raise ValueError("Vision model response is not a JSON object")
    return data


def _optional_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if number != number else number


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _normalize_confidence(value: Any) -> Confidence:
    try:
        return Confidence(str(value or "").strip().lower())
    except ValueError:
        return Confidence.LOW


def interpret_location_payload(data: Dict[str, Any]) -> AnalysisResult:
    """Apply the local post-validation policy to a parsed model answer."""
    name = data.get("location_name", data.get("name"))
    missing = [key for key in REQUIRED_KEYS if key not in data and not (key == "location_name" and "name" in data)]
    if missing:
        logger.debug("Vision response missing keys: %s", ", ".join(missing))
    guess = LocationGuess(
        location_name=_optional_text(name),
        latitude=_optional_float(data.get("latitude")),
        longitude=_optional_float(data.get("longitude")),
        address=_optional_text(data.get("address")),
        city=_optional_text(data.get("city")),
        country=_optional_text(data.get("country")),
        description=_optional_text(data.get("description")),
        category=_optional_text(data.get("category")),
        confidence=_normalize_confidence(data.get("confidence")),
        confidence_reason=_optional_text(data.get("confidence_reason")),
        additional_info=_optional_text(data.get("additional_info")),
    )

    if guess.latitude is None or guess.longitude is None or (guess.latitude == 0 and guess.longitude == 0):
        guess = guess.model_copy(update={"latitude": None, "longitude": None, "confidence": Confidence.LOW})
        return AnalysisWarning(
            guess=guess,
            warning=ErrorType.NO_COORDINATES,
            message="Unable to determine geographical coordinates from the image",
            raw=data,
        )

    if guess.confidence == Confidence.LOW:
        return AnalysisWarning(
            guess=guess,
            warning=ErrorType.LOW_CONFIDENCE,
            message="Location detected but with low confidence. Results may be inaccurate.",
            raw=data,
        )

    return AnalysisOk(guess=guess, raw=data)


class VisionClient:
    """
    Location-guessing client over the OpenAI vision chat API.

    ``analyze`` never raises: transport and parse errors come back as an
    ``AnalysisFailure`` so callers branch on the result kind.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        max_tokens: int = 1000,
        timeout: float = 60.0,
        client: Optional[OpenAI] = None,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self._client = client if client is not None else self._build_client(api_key, timeout)

    @staticmethod
    def _build_client(api_key: str, timeout: float) -> Optional[OpenAI]:
        if not api_key or "your_" in api_key or api_key == "test-key":
            return None
        return OpenAI(api_key=api_key, timeout=timeout)

    @classmethod
    def from_settings(cls, settings) -> "VisionClient":
        return cls(
            api_key=settings.OPENAI_API_KEY,
            model=settings.VISION_MODEL,
            max_tokens=settings.VISION_MAX_TOKENS,
            timeout=settings.VISION_TIMEOUT_SECONDS,
        )

    @property
    def configured(self) -> bool:
        return self._client is not None

    def _request_completion(self, image_bytes: bytes, mime_type: str) -> str:
        encoded = base64.b64encode(image_bytes).decode("utf-8")
        response = self._client.chat.completions.create(
            model=self.model,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": LOCATION_PROMPT},
                        {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{encoded}"}},
                    ],
                }
            ],
            max_tokens=self.max_tokens,
        )
        return response.choices[0].message.content or ""

    async def analyze(self, image_bytes: bytes, mime_type: str = "image/jpeg") -> AnalysisResult:
        if self._client is None:
            logger.warning("Vision API key is not configured; returning API_FAILURE.")
            return AnalysisFailure(
                message="Failed to analyze image with vision API",
                details="OPENAI_API_KEY is not configured",
            )

        try:
            text = await asyncio.to_thread(self._request_completion, image_bytes, mime_type)
            data = extract_json_payload(text)
        except Exception as exc:
            logger.error("Vision API error: %s", exc)
            return AnalysisFailure(
                message="Failed to analyze image with vision API",
                details=str(exc),
            )

        return interpret_location_payload(data)

    async def analyze_file(self, image_path: str, mime_type: Optional[str] = None) -> AnalysisResult:
        path = Path(image_path)
        if mime_type is None:
            mime_type = _MIME_BY_SUFFIX.get(path.suffix.lower()) or mimetypes.guess_type(path.name)[0] or "image/jpeg"
        try:
            image_bytes = await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            logger.error("Could not read image %s: %s", path, exc)
            return AnalysisFailure(message="Failed to read image for analysis", details=str(exc))
        return await self.analyze(image_bytes, mime_type)
