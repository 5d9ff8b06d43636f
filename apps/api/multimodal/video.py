import os
import glob
import logging
from typing import Any, Dict, List, Sequence, Tuple

import ffmpeg

logger = logging.getLogger(__name__)

FRAME_PREFIX = "frame-"
FRAME_PATTERN = f"{FRAME_PREFIX}%04d.jpg"


class ExtractionError(RuntimeError):
    """Raised when the media tool fails to sample frames from a video."""


def extract_frames(video_path: str, output_dir: str, fps: float = 0.2) -> list[str]:
    """
    Sample frames from video at `fps` frames per second.
    Returns frame paths in ascending timestamp order.
    """
    if fps <= 0:
        raise ValueError("fps must be positive")
    if not os.path.exists(output_dir):
        os.makedirs(output_dir)

    output_pattern = os.path.join(output_dir, FRAME_PATTERN)

    try:
        # ffmpeg -i video.mp4 -vf fps=0.2 -q:v 2 frame-%04d.jpg
        (
            ffmpeg
            .input(video_path)
            .filter('fps', fps=fps)
            .output(output_pattern, **{'q:v': 2})
            .overwrite_output()
            .run(quiet=True)
        )
    except ffmpeg.Error as e:
        message = e.stderr.decode(errors="replace") if e.stderr else str(e)
        logger.error(f"Error extracting frames: {message}")
        raise ExtractionError(message.strip() or "ffmpeg failed to extract frames") from e
    except FileNotFoundError as e:
        # ffmpeg binary missing
        raise ExtractionError(f"ffmpeg executable not found: {e}") from e

    # Zero-padded names sort in timestamp order.
    frames = sorted(glob.glob(os.path.join(output_dir, f"{FRAME_PREFIX}*.jpg")))
    logger.info("Extracted %d frames from %s", len(frames), os.path.basename(video_path))
    return frames


def subsample_frames(frames: Sequence[str], max_frames: int) -> List[Tuple[int, str]]:
    """
    Evenly thin `frames` down to at most `max_frames`, keeping every
    floor(count / max_frames)-th frame from the start.
    Returns (index in `frames`, path) pairs in ascending order.
    """
    indexed = list(enumerate(frames))
    if max_frames <= 0:
        return []
    if len(indexed) <= max_frames:
        return indexed
    step = len(indexed) // max_frames
    return [pair for pair in indexed if pair[0] % step == 0][:max_frames]


def format_timestamp(frame_index: int, fps: float) -> str:
    """Seconds into the source video for the 0-based `frame_index`, e.g. "15.0s"."""
    return f"{frame_index / fps:.1f}s"


def get_video_metadata(video_path: str) -> Dict[str, Any]:
    """
    Probe container and first video stream metadata.
    Returns an empty dict when the probe fails.
    """
    try:
        probe = ffmpeg.probe(video_path)
    except Exception as e:
        logger.warning(f"Could not probe video metadata for {video_path}: {e}")
        return {}

    fmt = probe.get("format", {})
    video_stream = next(
        (stream for stream in probe.get("streams", []) if stream.get("codec_type") == "video"),
        {},
    )
    duration = float(fmt.get("duration", 0.0) or video_stream.get("duration", 0.0) or 0.0)
    return {
        "duration": duration,
        "size": int(fmt.get("size", 0) or 0),
        "format": fmt.get("format_name"),
        "width": video_stream.get("width"),
        "height": video_stream.get("height"),
        "fps": video_stream.get("r_frame_rate"),
    }
