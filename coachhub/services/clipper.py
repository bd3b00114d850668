"""Film probing and play-clip extraction using FFmpeg."""

import logging
import os
from pathlib import Path
from typing import Optional

import ffmpeg

logger = logging.getLogger(__name__)

# FFmpeg executable paths - use explicit path on Windows if not in PATH
FFMPEG_PATH = r"C:\ffmpeg\bin\ffmpeg.exe" if os.name == "nt" else "ffmpeg"
FFPROBE_PATH = r"C:\ffmpeg\bin\ffprobe.exe" if os.name == "nt" else "ffprobe"

# Fall back to PATH if explicit path doesn't exist
if not os.path.exists(FFMPEG_PATH):
    FFMPEG_PATH = "ffmpeg"
if not os.path.exists(FFPROBE_PATH):
    FFPROBE_PATH = "ffprobe"


def extract_clip(
    video_path: str,
    start_seconds: float,
    end_seconds: float,
    output_path: Optional[str] = None,
) -> str:
    """
    Cut one play out of a game film without re-encoding.

    Args:
        video_path: Path to the source film
        start_seconds: Clip start in video time
        end_seconds: Clip end in video time
        output_path: Destination (defaults to <stem>_<start>_<end>.mp4 beside the source)

    Returns:
        Path to the extracted clip
    """
    video_path = Path(video_path)
    if not video_path.exists():
        raise FileNotFoundError(f"Video not found: {video_path}")

    probe = ffmpeg.probe(str(video_path), cmd=FFPROBE_PATH)
    duration = float(probe["format"]["duration"])

    start = max(0.0, start_seconds)
    end = min(duration, end_seconds)
    if end <= start:
        raise ValueError(f"Clip {start_seconds:.1f}s-{end_seconds:.1f}s is outside the video ({duration:.1f}s)")

    if output_path is None:
        output_path = video_path.parent / f"{video_path.stem}_{int(start * 1000)}_{int(end * 1000)}.mp4"
    output_path = Path(output_path)

    logger.debug(f"Extracting clip {start:.1f}s - {end:.1f}s from {video_path.name}")
    (
        ffmpeg
        .input(str(video_path), ss=start, t=end - start)
        .output(
            str(output_path),
            c="copy",  # Copy codec for speed (no re-encoding)
            avoid_negative_ts="make_zero",
        )
        .overwrite_output()
        .run(cmd=FFMPEG_PATH, quiet=True)
    )
    return str(output_path)


def get_video_info(video_path: str) -> dict:
    """Get basic information about a video file."""
    probe = ffmpeg.probe(video_path, cmd=FFPROBE_PATH)

    video_stream = next(
        (s for s in probe["streams"] if s["codec_type"] == "video"),
        None
    )
    audio_stream = next(
        (s for s in probe["streams"] if s["codec_type"] == "audio"),
        None
    )

    info = {
        "duration": float(probe["format"]["duration"]),
        "size": int(probe["format"]["size"]),
        "format": probe["format"]["format_name"],
        "has_audio": audio_stream is not None,
    }

    if video_stream:
        info["width"] = video_stream.get("width")
        info["height"] = video_stream.get("height")
        info["codec"] = video_stream.get("codec_name")

        # Calculate fps from frame rate fraction
        fps_parts = video_stream.get("r_frame_rate", "0/1").split("/")
        if len(fps_parts) == 2 and int(fps_parts[1]) != 0:
            info["fps"] = int(fps_parts[0]) / int(fps_parts[1])

    return info
