import os
from unittest.mock import patch

import pytest

from conftest import FakeVisionClient, location_result
from multimodal.geo import location_similarity
from multimodal.models import AnalysisFailure, Confidence, FrameLocation
from multimodal.throttle import RateLimitedSequencer
from multimodal.video import ExtractionError, format_timestamp, subsample_frames
from services.storage import MediaStorage
from services.video_pipeline import VideoProcessingOptions, filter_unique_locations, process_video


class FlakyVisionClient(FakeVisionClient):
    """Raises on the given 1-based call numbers, otherwise replays results."""

    def __init__(self, results, fail_on):
        super().__init__(results)
        self.fail_on = set(fail_on)

    async def analyze_file(self, image_path, mime_type=None):
        if len(self.calls) + 1 in self.fail_on:
            self.calls.append(image_path)
            raise RuntimeError("connection reset by peer")
        return await super().analyze_file(image_path, mime_type)


def _fake_extractor(count: int):
    def _extract(video_path, output_dir, fps=0.2):
        paths = []
        for index in range(1, count + 1):
            path = os.path.join(output_dir, f"frame-{index:04d}.jpg")
            with open(path, "wb") as handle:
                handle.write(b"jpeg")
            paths.append(path)
        return paths

    return _extract


def _frame(name: str, lat: float, lng: float, number: int = 1) -> FrameLocation:
    return FrameLocation(
        analysis=location_result(name=name, latitude=lat, longitude=lng),
        frame_number=number,
        timestamp=format_timestamp(number - 1, 0.2),
        frame_path=f"/tmp/frame-{number:04d}.jpg",
    )


def test_subsample_keeps_evenly_spaced_frames():
    frames = [f"frame-{i:04d}.jpg" for i in range(1, 101)]

    sampled = subsample_frames(frames, 15)

    assert len(sampled) == 15
    assert [index for index, _ in sampled] == list(range(0, 90, 6))
    assert subsample_frames(frames[:10], 15) == list(enumerate(frames[:10]))


def test_format_timestamp_uses_frame_index_over_fps():
    assert format_timestamp(0, 0.2) == "0.0s"
    assert format_timestamp(3, 0.2) == "15.0s"


def test_dedup_keeps_first_of_nearby_frames():
    first = _frame("Cafe A", 40.7580, -73.9855, number=1)
    nearby = _frame("Cafe A entrance", 40.7607, -73.9855, number=2)  # ~300m north
    far = _frame("Central Park", 40.7829, -73.9654, number=3)

    unique = filter_unique_locations([first, nearby, far], threshold=0.7)

    assert [loc.guess.location_name for loc in unique] == ["Cafe A", "Central Park"]


@pytest.mark.asyncio
async def test_process_video_persists_unique_frames_and_cleans_scratch(tmp_path):
    storage = MediaStorage(root=tmp_path / "uploads")
    scratch = tmp_path / "frames"
    vision = FakeVisionClient(
        [
            location_result("Times Square", 40.7580, -73.9855),
            location_result("Times Square", 40.7581, -73.9856),
            location_result("Brooklyn Bridge", 40.7061, -73.9969),
        ]
    )
    video = tmp_path / "clip.mp4"
    video.write_bytes(b"video")

    with patch("services.video_pipeline.extract_frames", side_effect=_fake_extractor(3)):
        result = await process_video(
            str(video),
            vision=vision,
            storage=storage,
            scratch_root=scratch,
            options=VideoProcessingOptions(request_interval_seconds=0),
        )

    assert result.total_frames == 3
    assert result.analyzed_frames == 3
    assert result.unique_locations == 2
    assert [loc.frame_number for loc in result.locations] == [1, 3]
    assert [loc.timestamp for loc in result.locations] == ["0.0s", "10.0s"]
    for location in result.locations:
        assert location.frame_filename
        assert (storage.root / location.frame_filename).exists()
    assert list(scratch.iterdir()) == []


@pytest.mark.asyncio
async def test_process_video_skips_failed_and_unlocated_frames(tmp_path):
    storage = MediaStorage(root=tmp_path / "uploads")
    vision = FakeVisionClient(
        [
            AnalysisFailure(message="Failed to analyze image with vision API", details="timeout"),
            location_result("Somewhere", None, None, confidence=Confidence.LOW),
            location_result("Golden Gate Bridge", 37.8199, -122.4783),
        ]
    )

    with patch("services.video_pipeline.extract_frames", side_effect=_fake_extractor(3)):
        result = await process_video(
            str(tmp_path / "clip.mp4"),
            vision=vision,
            storage=storage,
            scratch_root=tmp_path / "frames",
            options=VideoProcessingOptions(request_interval_seconds=0),
        )

    assert result.analyzed_frames == 1
    assert [loc.guess.location_name for loc in result.locations] == ["Golden Gate Bridge"]
    assert result.locations[0].frame_number == 3


@pytest.mark.asyncio
async def test_process_video_with_no_frames_returns_empty_result(tmp_path):
    vision = FakeVisionClient()

    with patch("services.video_pipeline.extract_frames", side_effect=_fake_extractor(0)):
        result = await process_video(
            str(tmp_path / "clip.mp4"),
            vision=vision,
            storage=MediaStorage(root=tmp_path / "uploads"),
            scratch_root=tmp_path / "frames",
        )

    assert result.total_frames == 0
    assert result.locations == []
    assert vision.calls == []


@pytest.mark.asyncio
async def test_extraction_error_propagates_and_scratch_is_removed(tmp_path):
    scratch = tmp_path / "frames"

    with patch("services.video_pipeline.extract_frames", side_effect=ExtractionError("moov atom not found")):
        with pytest.raises(ExtractionError):
            await process_video(
                str(tmp_path / "broken.mp4"),
                vision=FakeVisionClient(),
                storage=MediaStorage(root=tmp_path / "uploads"),
                scratch_root=scratch,
            )

    assert list(scratch.iterdir()) == []


@pytest.mark.asyncio
async def test_sequencer_waits_only_between_calls():
    now = [100.0]
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)
        now[0] += seconds

    async def work(value):
        now[0] += 1.0
        return value

    sequencer = RateLimitedSequencer(4.0, sleep=fake_sleep, clock=lambda: now[0])

    results = [await sequencer.run(work, index) for index in range(3)]

    assert results == [0, 1, 2]
    assert sleeps == [4.0, 4.0]
    assert sequencer.calls == 3


def test_sequencer_rejects_negative_interval():
    with pytest.raises(ValueError):
        RateLimitedSequencer(-1)


def test_dedup_is_idempotent_and_kept_pairs_are_dissimilar():
    # ~445m apart along a north-south line, plus a repeat of the first point
    frames = [_frame(f"Stop {i}", 40.70 + 0.004 * i, -74.0, number=i + 1) for i in range(12)]
    frames.append(_frame("Stop 0 again", 40.70, -74.0, number=13))

    once = filter_unique_locations(frames, threshold=0.7)
    twice = filter_unique_locations(once, threshold=0.7)

    assert twice == once
    assert 1 < len(once) < len(frames)
    for i, first in enumerate(once):
        for second in once[i + 1:]:
            assert location_similarity(first.guess.coordinates, second.guess.coordinates) < 0.7


@pytest.mark.asyncio
async def test_frame_that_raises_does_not_abort_the_batch(tmp_path):
    vision = FlakyVisionClient(
        [
            location_result("Golden Gate Bridge", 37.8199, -122.4783),
            location_result("Times Square", 40.7580, -73.9855),
        ],
        fail_on={2},
    )

    with patch("services.video_pipeline.extract_frames", side_effect=_fake_extractor(3)):
        result = await process_video(
            str(tmp_path / "clip.mp4"),
            vision=vision,
            storage=MediaStorage(root=tmp_path / "uploads"),
            scratch_root=tmp_path / "frames",
            options=VideoProcessingOptions(request_interval_seconds=0),
        )

    assert len(vision.calls) == 3
    assert result.analyzed_frames == 2
    assert [loc.frame_number for loc in result.locations] == [1, 3]
    assert [loc.guess.location_name for loc in result.locations] == ["Golden Gate Bridge", "Times Square"]


@pytest.mark.asyncio
async def test_persist_failure_removes_frames_already_copied(tmp_path):
    storage = MediaStorage(root=tmp_path / "uploads")
    scratch = tmp_path / "frames"
    vision = FakeVisionClient(
        [
            location_result("Golden Gate Bridge", 37.8199, -122.4783),
            location_result("Times Square", 40.7580, -73.9855),
        ]
    )
    real_persist = storage.persist_frame
    copied = []

    def persist_then_fail(frame_path, index):
        if copied:
            raise OSError("No space left on device")
        copied.append(real_persist(frame_path, index))
        return copied[-1]

    with patch("services.video_pipeline.extract_frames", side_effect=_fake_extractor(2)), \
         patch.object(storage, "persist_frame", side_effect=persist_then_fail):
        with pytest.raises(OSError):
            await process_video(
                str(tmp_path / "clip.mp4"),
                vision=vision,
                storage=storage,
                scratch_root=scratch,
                options=VideoProcessingOptions(request_interval_seconds=0),
            )

    assert len(copied) == 1
    assert list(storage.root.iterdir()) == []
    assert list(scratch.iterdir()) == []
