from typing import List, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base, get_db
from main import app
from multimodal.models import AnalysisResult, AnalysisOk, Confidence, LocationGuess
from multimodal.vision import VisionClient
from routers import rate_limit
from routers.collaborators import get_auth_provider, get_media_storage, get_video_options, get_vision_client
from services.auth_provider import AuthProviderClient, UserProfile
from services.session_token import create_session_token
from services.storage import MediaStorage
from services.video_pipeline import VideoProcessingOptions


def auth_header(user_id: str, email: Optional[str] = None) -> dict:
    return {"Authorization": f"Bearer {create_session_token(user_id, email)['token']}"}


def location_result(
    name: str = "Eiffel Tower",
    latitude: Optional[float] = 48.8584,
    longitude: Optional[float] = 2.2945,
    confidence: Confidence = Confidence.HIGH,
) -> AnalysisOk:
    guess = LocationGuess(
        location_name=name,
        latitude=latitude,
        longitude=longitude,
        city="Paris",
        country="France",
        category="landmark",
        confidence=confidence,
        confidence_reason="Distinctive iron lattice tower",
    )
    return AnalysisOk(guess=guess, raw={"location_name": name, "latitude": latitude, "longitude": longitude})


class FakeVisionClient(VisionClient):
    """Replays queued results; the last one repeats once the queue runs dry."""

    def __init__(self, results: Optional[List[AnalysisResult]] = None):
        super().__init__(api_key="")
        self.results = list(results or [location_result()])
        self.calls: List[str] = []

    async def analyze_file(self, image_path: str, mime_type: Optional[str] = None) -> AnalysisResult:
        self.calls.append(image_path)
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]


class FakeAuthProvider(AuthProviderClient):
    def __init__(self, profiles: Optional[List[UserProfile]] = None):
        super().__init__(base_url="", service_key="")
        self.profiles = list(profiles or [])

    async def list_profiles(self) -> List[UserProfile]:
        return list(self.profiles)


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_windows.clear()
    yield
    rate_limit._local_windows.clear()
    app.state.disable_rate_limits = previous


@pytest.fixture
def vision_client():
    return FakeVisionClient()


@pytest.fixture
def auth_provider():
    return FakeAuthProvider()


@pytest.fixture
def media_storage(tmp_path):
    return MediaStorage(root=tmp_path / "uploads")


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "reely.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield maker
    await engine.dispose()


@pytest_asyncio.fixture
async def client(session_maker, vision_client, media_storage, auth_provider):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_vision_client] = lambda: vision_client
    app.dependency_overrides[get_media_storage] = lambda: media_storage
    app.dependency_overrides[get_auth_provider] = lambda: auth_provider
    app.dependency_overrides[get_video_options] = lambda: VideoProcessingOptions(request_interval_seconds=0)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
        yield http_client

    for dependency in (get_db, get_vision_client, get_media_storage, get_auth_provider, get_video_options):
        app.dependency_overrides.pop(dependency, None)
