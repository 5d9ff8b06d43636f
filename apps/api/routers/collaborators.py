"""Dependencies resolving the external clients built at startup."""

from fastapi import Request

from multimodal.vision import VisionClient
from services.auth_provider import AuthProviderClient
from services.storage import MediaStorage
from services.video_pipeline import VideoProcessingOptions


def get_vision_client(request: Request) -> VisionClient:
    return request.app.state.vision_client


def get_media_storage(request: Request) -> MediaStorage:
    return request.app.state.media_storage


def get_auth_provider(request: Request) -> AuthProviderClient:
    return request.app.state.auth_provider


def get_video_options(request: Request) -> VideoProcessingOptions:
    return request.app.state.video_options
