"""Tests for ffmpeg filtergraph construction and compile input checks.

No ffmpeg binary is needed: graph strings and pre-flight errors are checked
directly, and subprocess.run is replaced where a run is simulated.
"""

import subprocess
from types import SimpleNamespace

import pytest

from clipforge import validate_dependencies
from clipforge.errors import CompilationError
from clipforge.pipeline import compiler
from clipforge.pipeline.compiler import (
    build_drawtext,
    build_filter_complex,
    compile_clips,
    escape_drawtext,
    output_dimensions,
)
from clipforge.schemas.project import ProjectSettings


def test_01_output_dimensions():
    assert output_dimensions("9:16") == (1080, 1920)
    assert output_dimensions("16:9") == (1920, 1080)


def test_02_filter_concatenates_every_clip_in_order():
    graph = build_filter_complex(3, ProjectSettings())

    assert "[0:v]scale=1080:1920:force_original_aspect_ratio=decrease" in graph
    assert "pad=1080:1920:(ow-iw)/2:(oh-ih)/2:black" in graph
    assert "[v0][a0][v1][a1][v2][a2]concat=n=3:v=1:a=1[outv][outa]" in graph
    assert graph.endswith("[outv]null[final]")


def test_03_border_shrinks_inner_frame():
    graph = build_filter_complex(1, ProjectSettings(aspect_ratio="16:9", border_width_percent=5))

    assert "scale=1728:972:" in graph
    assert "pad=1920:1080:" in graph


def test_04_title_adds_drawtext():
    project_settings = ProjectSettings(title_text="Day 1", title_color="#ff0000", title_y_percent=50)

    graph = build_filter_complex(2, project_settings)

    assert "[outv]drawtext=text='Day 1'" in graph
    assert "fontcolor=0xff0000" in graph
    assert ":y=960:" in graph
    assert graph.endswith("[final]")


def test_05_drawtext_escapes_special_characters():
    escaped = escape_drawtext("50% off: today")

    assert "%%" in escaped
    assert "\\:" in escaped
    assert ":" not in escaped.replace("\\:", "")


def test_06_drawtext_uses_box_opacity():
    drawtext = build_drawtext(ProjectSettings(title_text="x", title_box_opacity=0.3), 1920)
    assert "boxcolor=black@0.3" in drawtext


def test_07_zero_clips_is_rejected():
    with pytest.raises(ValueError):
        build_filter_complex(0, ProjectSettings())


@pytest.mark.asyncio
async def test_08_compile_without_clips_fails(tmp_path):
    with pytest.raises(CompilationError):
        await compile_clips([], tmp_path / "final.mp4", ProjectSettings())


@pytest.mark.asyncio
async def test_09_compile_with_missing_file_fails(tmp_path):
    with pytest.raises(CompilationError, match="Missing clip files"):
        await compile_clips([tmp_path / "clip_0.mp4"], tmp_path / "final.mp4", ProjectSettings())


# ---------------------------------------------------------------------------
# Simulated ffmpeg runs
# ---------------------------------------------------------------------------

def _clips(tmp_path, n):
    paths = []
    for i in range(n):
        path = tmp_path / f"clip_{i}.mp4"
        path.write_bytes(b"mp4")
        paths.append(path)
    return paths


@pytest.mark.asyncio
async def test_10_silent_audio_copies_removed_on_failure(tmp_path, monkeypatch):
    clips = _clips(tmp_path, 2)
    ffmpeg_runs = []

    def fake_run(cmd, **kwargs):
        if cmd[0] == "ffprobe":
            return SimpleNamespace(stdout="")
        ffmpeg_runs.append(cmd)
        # The first copy succeeds, the second is half written when ffmpeg dies
        with open(cmd[-1], "wb") as f:
            f.write(b"partial")
        if len(ffmpeg_runs) == 2:
            raise subprocess.CalledProcessError(1, cmd, stderr=b"boom")
        return SimpleNamespace(stdout="")

    monkeypatch.setattr(compiler.subprocess, "run", fake_run)

    with pytest.raises(CompilationError, match="boom"):
        await compile_clips(clips, tmp_path / "final.mp4", ProjectSettings())

    assert len(ffmpeg_runs) == 2
    assert sorted(p.name for p in tmp_path.iterdir()) == ["clip_0.mp4", "clip_1.mp4"]


@pytest.mark.asyncio
async def test_11_ffprobe_timeout_is_compilation_error(tmp_path, monkeypatch):
    clips = _clips(tmp_path, 1)

    def fake_run(cmd, **kwargs):
        raise subprocess.TimeoutExpired(cmd, kwargs.get("timeout"))

    monkeypatch.setattr(compiler.subprocess, "run", fake_run)

    with pytest.raises(CompilationError, match="ffprobe timed out"):
        await compile_clips(clips, tmp_path / "final.mp4", ProjectSettings())


def test_12_missing_ffprobe_fails_validation(monkeypatch):
    monkeypatch.setattr(
        "clipforge.shutil.which",
        lambda tool: None if tool == "ffprobe" else f"/usr/bin/{tool}",
    )

    with pytest.raises(RuntimeError, match="ffprobe not found"):
        validate_dependencies()
