"""Final video compilation with ffmpeg.

Concatenates finished clips in index order into one video:
- every clip is scaled to fit inside the border and padded to the output
  frame (1080x1920 for 9:16, 1920x1080 for 16:9)
- audio is resampled to 44.1kHz stereo so clips concatenate cleanly;
  clips without an audio stream get a silent track first
- an optional title is drawn over the result

ffmpeg runs in a worker thread via asyncio.to_thread so the event loop
keeps serving progress updates while a video is encoded.

Usage:
    from clipforge.pipeline.compiler import compile_clips

    await compile_clips(clip_paths, output_path, project_settings)
"""

import asyncio
import logging
import subprocess
from pathlib import Path
from typing import Sequence

from clipforge.errors import CompilationError
from clipforge.schemas.project import ProjectSettings

logger = logging.getLogger(__name__)

_ENCODE_ARGS = [
    "-c:v", "libx264",
    "-preset", "medium",
    "-crf", "23",
    "-c:a", "aac",
    "-b:a", "128k",
    "-r", "30",
    "-movflags", "+faststart",
]

_FFMPEG_TIMEOUT = 300
_FFPROBE_TIMEOUT = 15


# ---------------------------------------------------------------------------
# Filter construction
# ---------------------------------------------------------------------------
def output_dimensions(aspect_ratio: str) -> tuple[int, int]:
    """Return (width, height) of the compiled frame."""
    if aspect_ratio == "16:9":
        return 1920, 1080
    return 1080, 1920


def escape_drawtext(text: str) -> str:
    """Escape text for a drawtext value nested inside a filtergraph."""
    return (
        text.replace("\\", "\\\\\\\\")
        .replace("'", "'\\\\\\''")
        .replace(":", "\\:")
        .replace("%", "%%")
    )


def build_drawtext(project_settings: ProjectSettings, out_h: int) -> str:
    color = project_settings.title_color.lstrip("#")
    y_pos = round(project_settings.title_y_percent / 100 * out_h)
    return (
        f"drawtext=text='{escape_drawtext(project_settings.title_text)}'"
        f":fontsize={project_settings.title_font_size}:fontcolor=0x{color}"
        f":x=(w-text_w)/2:y={y_pos}"
        f":box=1:boxcolor=black@{project_settings.title_box_opacity}:boxborderw=12"
    )


def _scale_pad(project_settings: ProjectSettings) -> str:
    out_w, out_h = output_dimensions(project_settings.aspect_ratio)
    border = project_settings.border_width_percent / 100
    inner_w = round(out_w * (1 - 2 * border))
    inner_h = round(out_h * (1 - 2 * border))
    return (
        f"scale={inner_w}:{inner_h}:force_original_aspect_ratio=decrease,"
        f"pad={out_w}:{out_h}:(ow-iw)/2:(oh-ih)/2:black,setsar=1"
    )


def build_filter_complex(clip_count: int, project_settings: ProjectSettings) -> str:
    """Build the filtergraph that normalizes and concatenates clip_count inputs.

    The graph exposes [final] (video) and [outa] (audio).
    """
    if clip_count < 1:
        raise ValueError("At least one clip is required")

    _, out_h = output_dimensions(project_settings.aspect_ratio)
    scale_pad = _scale_pad(project_settings)

    parts = []
    for i in range(clip_count):
        parts.append(f"[{i}:v]{scale_pad}[v{i}]")
        parts.append(
            f"[{i}:a]aresample=44100,aformat=sample_fmts=fltp:channel_layouts=stereo[a{i}]"
        )

    concat_inputs = "".join(f"[v{i}][a{i}]" for i in range(clip_count))
    parts.append(f"{concat_inputs}concat=n={clip_count}:v=1:a=1[outv][outa]")

    if project_settings.title_text:
        parts.append(f"[outv]{build_drawtext(project_settings, out_h)}[final]")
    else:
        parts.append("[outv]null[final]")

    return "; ".join(parts)


# ---------------------------------------------------------------------------
# ffmpeg execution (runs in a worker thread)
# ---------------------------------------------------------------------------
def _run_ffmpeg(args: list[str]) -> None:
    logger.debug(f"ffmpeg {' '.join(args)}")
    try:
        subprocess.run(
            ["ffmpeg", *args],
            check=True,
            capture_output=True,
            timeout=_FFMPEG_TIMEOUT,
        )
    except subprocess.CalledProcessError as e:
        stderr = e.stderr.decode(errors="replace") if e.stderr else "No error output"
        logger.error(f"ffmpeg error: {stderr[:500]}")
        raise CompilationError(f"ffmpeg failed: {stderr[:500]}") from e
    except subprocess.TimeoutExpired as e:
        raise CompilationError(f"ffmpeg timed out after {_FFMPEG_TIMEOUT}s") from e


def _has_audio_stream(path: Path) -> bool:
    try:
        result = subprocess.run(
            [
                "ffprobe",
                "-v", "quiet",
                "-select_streams", "a",
                "-show_entries", "stream=codec_type",
                "-of", "csv=p=0",
                str(path),
            ],
            capture_output=True,
            text=True,
            timeout=_FFPROBE_TIMEOUT,
        )
    except subprocess.TimeoutExpired as e:
        raise CompilationError(f"ffprobe timed out after {_FFPROBE_TIMEOUT}s on {path.name}") from e
    except FileNotFoundError as e:
        raise CompilationError("ffprobe not found on PATH") from e
    return "audio" in result.stdout


def _silent_audio_path(path: Path) -> Path:
    return path.with_name(f"{path.stem}_withaudio.mp4")


def _add_silent_audio(path: Path, target: Path) -> None:
    """Write a copy of a clip with a silent stereo track to target."""
    logger.info(f"Adding silent audio to {path.name}")
    _run_ffmpeg([
        "-y",
        "-i", str(path),
        "-f", "lavfi", "-i", "anullsrc=r=44100:cl=stereo",
        "-c:v", "copy",
        "-c:a", "aac",
        "-b:a", "128k",
        "-shortest",
        str(target),
    ])


def _compile_sync(
    clip_paths: list[Path], output_path: Path, project_settings: ProjectSettings
) -> None:
    # Each silent-audio copy is listed before ffmpeg starts writing it
    temporary: list[Path] = []
    try:
        inputs = []
        for path in clip_paths:
            if _has_audio_stream(path):
                inputs.append(path)
                continue
            target = _silent_audio_path(path)
            temporary.append(target)
            _add_silent_audio(path, target)
            inputs.append(target)

        args = ["-y"]
        for path in inputs:
            args.extend(["-i", str(path.resolve())])
        args.extend([
            "-filter_complex", build_filter_complex(len(inputs), project_settings),
            "-map", "[final]",
            "-map", "[outa]",
            *_ENCODE_ARGS,
            str(output_path),
        ])
        _run_ffmpeg(args)
    finally:
        for path in temporary:
            path.unlink(missing_ok=True)


async def compile_clips(
    clip_paths: Sequence[str | Path],
    output_path: Path,
    project_settings: ProjectSettings,
) -> Path:
    """Compile clips, in the given order, into output_path.

    Raises:
        CompilationError: If no clips are given, a clip file is missing,
            or ffmpeg fails
    """
    paths = [Path(p) for p in clip_paths]
    if not paths:
        raise CompilationError("No completed clips to compile")

    missing = [str(p) for p in paths if not p.exists()]
    if missing:
        raise CompilationError(f"Missing clip files: {missing}")

    logger.info(f"Compiling {len(paths)} clips -> {output_path}")
    await asyncio.to_thread(_compile_sync, paths, output_path, project_settings)
    logger.info(f"Compilation complete: {output_path}")
    return output_path
