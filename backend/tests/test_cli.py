"""CLI tests for commands that need no database or provider."""

from typer.testing import CliRunner

from clipforge.cli.commands import _load_clips, _progress_line, app
from clipforge.schemas.project import ClipStatus

from conftest import make_snapshot

runner = CliRunner()


def test_01_script_prints_both_clips():
    result = runner.invoke(
        app,
        [
            "script", "street-testimonial",
            "--product", "VitaGlow",
            "--audience", "retirees experiencing stiff joints",
            "--avatar", "man in his 70s",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "stiff joints" in result.output
    assert "Clip 1" in result.output
    assert "Clip 2" in result.output


def test_02_script_rejects_unknown_style():
    result = runner.invoke(app, ["script", "vlog", "--avatar", "anyone"])

    assert result.exit_code == 1
    assert "Unrecognized script style" in result.output


def test_03_invalid_uuid_exits():
    result = runner.invoke(app, ["status", "not-a-uuid"])
    assert result.exit_code == 1


def test_04_load_clips_accepts_list_or_mapping(tmp_path):
    as_list = tmp_path / "clips.yaml"
    as_list.write_text("- image_prompt: kitchen\n  video_prompt: pours coffee\n")
    as_mapping = tmp_path / "clips.json"
    as_mapping.write_text('{"clips": [{"video_prompt": "jogs"}, {"image_prompt": "park"}]}')

    assert [c.image_prompt for c in _load_clips(as_list)] == ["kitchen"]
    assert [c.video_prompt for c in _load_clips(as_mapping)] == ["jogs", ""]


def test_05_progress_line_shows_video_elapsed():
    snapshot = make_snapshot(clip_statuses=[ClipStatus.DONE, ClipStatus.VIDEO_GENERATING])

    line = _progress_line(snapshot, elapsed=42)

    assert "1/2 clips done" in line
    assert "clip 1: generating video" in line
    assert "42s" in line
    assert "42s" not in _progress_line(snapshot)
