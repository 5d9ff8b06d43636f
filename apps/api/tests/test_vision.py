import json
from types import SimpleNamespace

import pytest

from multimodal.models import AnalysisFailure, AnalysisOk, AnalysisWarning, Confidence, ErrorType
from multimodal.vision import (
    VisionClient,
    extract_json_payload,
    generate_maps_url,
    generate_street_view_url,
    interpret_location_payload,
    validate_coordinates,
)


def _reply(**overrides) -> dict:
    payload = {
        "location_name": "Shibuya Crossing",
        "latitude": 35.6595,
        "longitude": 139.7005,
        "address": "Shibuya City, Tokyo",
        "city": "Tokyo",
        "country": "Japan",
        "description": "Scramble crossing",
        "category": "street",
        "confidence": "high",
        "confidence_reason": "Iconic crossing and signage",
    }
    payload.update(overrides)
    return payload


class _StubCompletions:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.requests = []

    def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _client_with(completions: _StubCompletions) -> VisionClient:
    stub = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return VisionClient(api_key="", client=stub)


def test_extract_json_payload_unwraps_fenced_and_embedded_objects():
    fenced = "Here you go:\n```json\n" + json.dumps(_reply()) + "\n```"
    embedded = "Sure! " + json.dumps(_reply(description="Has {braces} inside")) + " Hope that helps."

    assert extract_json_payload(fenced)["city"] == "Tokyo"
    assert extract_json_payload(embedded)["description"] == "Has {braces} inside"


def test_extract_json_payload_rejects_text_without_object():
    with pytest.raises(ValueError):
        extract_json_payload("I could not tell where this is.")


def test_null_island_is_reported_as_missing_coordinates():
    result = interpret_location_payload(_reply(latitude=0, longitude=0, confidence="high"))

    assert isinstance(result, AnalysisWarning)
    assert result.warning == ErrorType.NO_COORDINATES
    assert result.guess.confidence == Confidence.LOW
    assert result.guess.latitude is None and result.guess.longitude is None


def test_low_confidence_keeps_coordinates_with_warning():
    result = interpret_location_payload(_reply(confidence="low"))

    assert isinstance(result, AnalysisWarning)
    assert result.warning == ErrorType.LOW_CONFIDENCE
    assert result.guess.latitude == pytest.approx(35.6595)


def test_name_alias_is_accepted():
    data = _reply()
    data["name"] = data.pop("location_name")

    result = interpret_location_payload(data)

    assert isinstance(result, AnalysisOk)
    assert result.guess.location_name == "Shibuya Crossing"


@pytest.mark.parametrize(
    "lat, lng, valid",
    [
        (35.6, 139.7, True),
        (-90, 180, True),
        (0, 0, False),
        (91, 10, False),
        (10, -181, False),
        (None, 10, False),
        ("35.6", 139.7, False),
        (True, 10, False),
        (float("nan"), 10, False),
    ],
)
def test_validate_coordinates(lat, lng, valid):
    assert validate_coordinates(lat, lng) is valid


def test_map_links():
    assert generate_maps_url("Shibuya Crossing", None, "Tokyo", "Japan").endswith(
        "query=Shibuya%20Crossing%2C%20Tokyo%2C%20Japan"
    )
    assert "viewpoint=35.6595,139.7005" in generate_street_view_url(35.6595, 139.7005)
    assert generate_street_view_url(None, 139.7) is None


@pytest.mark.asyncio
async def test_analyze_without_api_key_returns_api_failure():
    client = VisionClient(api_key="")

    result = await client.analyze(b"image-bytes")

    assert isinstance(result, AnalysisFailure)
    assert result.error == ErrorType.API_FAILURE
    assert not client.configured


@pytest.mark.asyncio
async def test_analyze_sends_image_and_parses_reply():
    completions = _StubCompletions(content="```json\n" + json.dumps(_reply()) + "\n```")
    client = _client_with(completions)

    result = await client.analyze(b"png-bytes", "image/png")

    assert isinstance(result, AnalysisOk)
    assert result.guess.country == "Japan"
    content = completions.requests[0]["messages"][0]["content"]
    assert content[1]["image_url"]["url"].startswith("data:image/png;base64,")


@pytest.mark.asyncio
async def test_analyze_turns_transport_errors_into_api_failure():
    client = _client_with(_StubCompletions(error=RuntimeError("connection reset")))

    result = await client.analyze(b"jpeg-bytes")

    assert isinstance(result, AnalysisFailure)
    assert result.details == "connection reset"


@pytest.mark.asyncio
async def test_analyze_file_reads_from_disk(tmp_path):
    image = tmp_path / "street.png"
    image.write_bytes(b"png-bytes")
    completions = _StubCompletions(content=json.dumps(_reply()))

    result = await _client_with(completions).analyze_file(str(image))

    assert isinstance(result, AnalysisOk)
    url = completions.requests[0]["messages"][0]["content"][1]["image_url"]["url"]
    assert url.startswith("data:image/png;base64,")
