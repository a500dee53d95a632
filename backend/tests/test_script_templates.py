"""Tests for prehook script synthesis and pain-point extraction."""

import pytest

from clipforge.errors import UnrecognizedStyleError
from clipforge.pipeline.script_templates import (
    DEFAULT_PAIN_POINT,
    PrehookStyle,
    apply_script,
    extract_pain_point,
    generate_script,
    match_pain_point,
    parse_style,
    supported_styles,
)
from clipforge.schemas.script import Product

PRODUCT = Product(
    name="VitaGlow",
    target_audience="Women aged 45-65 experiencing joint pain, low energy",
)
AVATAR = "woman in her 50s with short grey hair"


# ---------------------------------------------------------------------------
# Pain-point extraction
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "audience, expected",
    [
        ("Women aged 45-65 experiencing joint pain, low energy", "joint pain"),
        ("Adults concerned about Wrinkles, dry skin", "wrinkles"),
        ("Men interested in longevity", "longevity"),
        ("People experiencing brain fog (mild). Busy parents", "brain fog"),
        ("Everyone", DEFAULT_PAIN_POINT),
        ("", DEFAULT_PAIN_POINT),
    ],
)
def test_01_extract_pain_point(audience, expected):
    assert extract_pain_point(audience) == expected


def test_02_match_pain_point_returns_none_without_keyword():
    assert match_pain_point("busy professionals") is None


def test_03_keyword_with_nothing_after_is_no_match():
    assert match_pain_point("people concerned about") is None
    assert extract_pain_point("people concerned about") == DEFAULT_PAIN_POINT


# ---------------------------------------------------------------------------
# Script generation
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("style", supported_styles())
def test_04_every_style_yields_two_ordered_clips(style):
    clips = generate_script(style, PRODUCT, AVATAR)

    assert [c.clip_number for c in clips] == [1, 2]
    assert [c.timestamp for c in clips] == ["0-8s", "8-16s"]
    for clip in clips:
        assert clip.voice_line
        assert clip.video_prompt.endswith(f'Character speaks ALL THE WORDS: "{clip.voice_line}"')
        assert clip.section.startswith("PREHOOK")


@pytest.mark.parametrize("style", supported_styles())
def test_05_avatar_appears_in_image_prompts(style):
    clips = generate_script(style, PRODUCT, AVATAR)
    assert all(AVATAR in c.image_prompt for c in clips)


def test_06_transformation_mentions_pain_point():
    clips = generate_script("transformation", PRODUCT, AVATAR)

    assert clips[0].section == "PREHOOK — BEFORE"
    assert clips[1].section == "PREHOOK — AFTER"
    assert "joint pain" in clips[0].voice_line


def test_07_product_reveal_uses_default_pain_point():
    product = Product(name="VitaGlow", target_audience="everyone")
    clips = generate_script(PrehookStyle.PRODUCT_REVEAL, product, AVATAR)
    assert DEFAULT_PAIN_POINT in clips[1].voice_line


def test_08_unknown_style_raises_with_supported_list():
    with pytest.raises(UnrecognizedStyleError) as exc_info:
        generate_script("ugc-unboxing", PRODUCT, AVATAR)

    assert exc_info.value.style == "ugc-unboxing"
    assert exc_info.value.supported == supported_styles()
    assert isinstance(exc_info.value, ValueError)


def test_09_parse_style_accepts_enum_and_tag():
    assert parse_style(PrehookStyle.TRANSFORMATION) is PrehookStyle.TRANSFORMATION
    assert parse_style("street-testimonial") is PrehookStyle.STREET_TESTIMONIAL


def test_10_supported_styles_cover_enum():
    assert set(supported_styles()) == {s.value for s in PrehookStyle}


def test_11_apply_script_orders_by_clip_number():
    clips = generate_script("street-testimonial", PRODUCT, AVATAR)
    inputs = apply_script(list(reversed(clips)))

    assert [i.voice_line for i in inputs] == [c.voice_line for c in clips]
    assert inputs[0].image_prompt == clips[0].image_prompt
    assert all(i.is_eligible for i in inputs)
