"""Find the distinct real-world locations shown in a video."""

from __future__ import annotations

import asyncio
import logging
import shutil
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from multimodal.geo import location_similarity
from multimodal.models import (
    AnalysisFailure,
    AnalysisResult,
    AnalysisWarning,
    FrameLocation,
    HARD_ERRORS,
    VideoProcessingResult,
)
from multimodal.throttle import RateLimitedSequencer
from multimodal.video import extract_frames, format_timestamp, subsample_frames
from multimodal.vision import VisionClient, validate_coordinates
from services.storage import MediaStorage, remove_path

logger = logging.getLogger(__name__)


@dataclass
class VideoProcessingOptions:
    fps: float = 0.2
    max_frames: int = 15
    similarity_threshold: float = 0.7
    request_interval_seconds: float = 4.0

    @classmethod
    def from_settings(cls, settings) -> "VideoProcessingOptions":
        return cls(
            fps=settings.VIDEO_FRAME_FPS,
            max_frames=settings.VIDEO_MAX_FRAMES,
            similarity_threshold=settings.VIDEO_SIMILARITY_THRESHOLD,
            request_interval_seconds=settings.VISION_REQUEST_INTERVAL_SECONDS,
        )


@contextmanager
def scratch_directory(parent: Path, name: str) -> Iterator[Path]:
    """Create a frame scratch directory and always remove it on exit."""
    directory = Path(parent) / name
    directory.mkdir(parents=True, exist_ok=True)
    try:
        yield directory
    finally:
        for path in sorted(directory.glob("*")):
            try:
                if path.is_dir():
                    shutil.rmtree(path)
                else:
                    path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("Could not delete %s: %s", path, exc)
        try:
            directory.rmdir()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not remove frames directory %s: %s", directory, exc)


def is_usable_location(result: AnalysisResult) -> bool:
    """A frame counts when it has valid coordinates and no hard error."""
    if isinstance(result, AnalysisFailure):
        return False
    if isinstance(result, AnalysisWarning) and result.warning in HARD_ERRORS:
        return False
    return validate_coordinates(result.guess.latitude, result.guess.longitude)


def filter_unique_locations(
    locations: Sequence[FrameLocation],
    threshold: float = 0.7,
) -> List[FrameLocation]:
    """Greedy first-seen-wins dedup against every location already kept."""
    unique: List[FrameLocation] = []
    for location in locations:
        coords = location.guess.coordinates
        if any(location_similarity(coords, kept.guess.coordinates) >= threshold for kept in unique):
            continue
        unique.append(location)

    logger.info("Filtered %d locations to %d unique locations", len(locations), len(unique))
    return unique


async def _analyze_frames(
    frames: Sequence[tuple[int, str]],
    vision: VisionClient,
    sequencer: RateLimitedSequencer,
    fps: float,
) -> List[FrameLocation]:
    found: List[FrameLocation] = []
    for position, (frame_index, frame_path) in enumerate(frames, start=1):
        logger.info("[%d/%d] Analyzing %s", position, len(frames), Path(frame_path).name)
        try:
            result = await sequencer.run(vision.analyze_file, frame_path)
        except Exception as exc:
            logger.error("Error analyzing frame %s: %s", frame_path, exc)
            continue

        if not is_usable_location(result):
            logger.info("No valid location detected in %s", Path(frame_path).name)
            continue

        location = FrameLocation(
            analysis=result,
            frame_number=frame_index + 1,
            timestamp=format_timestamp(frame_index, fps),
            frame_path=frame_path,
        )
        found.append(location)
        logger.info(
            "Found: %s (%s confidence)",
            location.guess.location_name,
            location.guess.confidence.value,
        )
    return found


async def process_video(
    video_path: str,
    vision: VisionClient,
    storage: MediaStorage,
    scratch_root: str | Path,
    options: Optional[VideoProcessingOptions] = None,
    sequencer: Optional[RateLimitedSequencer] = None,
) -> VideoProcessingResult:
    """
    Extract frames, analyze them one at a time, and keep one entry per
    distinct place. Extraction failure propagates as ``ExtractionError``;
    a failing frame is skipped. Scratch frames are always removed.
    """
    options = options or VideoProcessingOptions()
    sequencer = sequencer or RateLimitedSequencer(options.request_interval_seconds)
    started = time.monotonic()

    source = Path(video_path)
    logger.info(
        "Processing video %s (fps=%s, max_frames=%d)",
        source.name,
        options.fps,
        options.max_frames,
    )

    with scratch_directory(Path(scratch_root), f"{source.stem}-{int(time.time() * 1000)}") as frames_dir:
        frame_paths = await asyncio.to_thread(extract_frames, str(source), str(frames_dir), options.fps)

        sampled = subsample_frames(frame_paths, options.max_frames)
        if len(sampled) < len(frame_paths):
            logger.info("Limiting analysis to %d frames (extracted %d)", len(sampled), len(frame_paths))

        analyzed = await _analyze_frames(sampled, vision, sequencer, options.fps)
        unique = filter_unique_locations(analyzed, options.similarity_threshold)

        persisted: List[FrameLocation] = []
        try:
            for location in unique:
                filename = await asyncio.to_thread(storage.persist_frame, location.frame_path, location.frame_number)
                persisted.append(
                    location.model_copy(
                        update={"frame_filename": filename, "frame_path": str(storage.path_for(filename))}
                    )
                )
        except Exception:
            for location in persisted:
                remove_path(storage.path_for(location.frame_filename))
            raise

    elapsed = time.monotonic() - started
    logger.info(
        "Video analysis complete: %d/%d frames located, %d unique in %.1fs",
        len(analyzed),
        len(sampled),
        len(persisted),
        elapsed,
    )
    return VideoProcessingResult(
        total_frames=len(frame_paths),
        sampled_frames=len(sampled),
        analyzed_frames=len(analyzed),
        unique_locations=len(persisted),
        locations=persisted,
        processing_time=datetime.now(timezone.utc).isoformat(),
        elapsed_seconds=round(elapsed, 3),
    )
