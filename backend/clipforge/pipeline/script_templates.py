"""Template-based prehook script synthesis.

Expands a creative style plus product and avatar descriptions into a fixed
two-clip opening sequence (0-8s and 8-16s). Every style interpolates the
avatar description and a pain point extracted from the product's target
audience text.

The video prompt of each clip always ends with
``Character speaks ALL THE WORDS: "<voice_line>"`` so downstream consumers
can read the spoken line from either field.

Usage:
    from clipforge.pipeline.script_templates import generate_script

    clips = generate_script("transformation", product, "woman in her 50s")
"""

import logging
import re
from enum import Enum
from typing import Callable, Optional

from clipforge.errors import UnrecognizedStyleError
from clipforge.schemas.project import ClipInput
from clipforge.schemas.script import Product, PromptClip

logger = logging.getLogger(__name__)

DEFAULT_PAIN_POINT = "this problem"

_EXPERIENCING_RE = re.compile(r"experiencing ([^,.(]+)", re.IGNORECASE)
_AUDIENCE_SPLIT_RE = re.compile(
    r"concerned about|interested in|experiencing", re.IGNORECASE
)

_WINDOWS = ("0-8s", "8-16s")


class PrehookStyle(str, Enum):
    """Supported prehook styles."""

    TRANSFORMATION = "transformation"
    STREET_TESTIMONIAL = "street-testimonial"
    PRODUCT_REVEAL = "product-reveal"


# ---------------------------------------------------------------------------
# Pain-point extraction
# ---------------------------------------------------------------------------
def match_pain_point(target_audience: str) -> Optional[str]:
    """Return the pain-point phrase in an audience description, if any.

    Looks for "experiencing <phrase>" up to the next comma, period or open
    parenthesis first, then for the text after "concerned about",
    "interested in" or "experiencing" up to the next comma.

    Args:
        target_audience: Free-text audience description

    Returns:
        Lowercased phrase, or None when neither pattern yields text

    Examples:
        >>> match_pain_point("women aged 45-65 experiencing joint pain, low energy")
        'joint pain'
        >>> match_pain_point("adults interested in longevity")
        'longevity'
    """
    match = _EXPERIENCING_RE.search(target_audience)
    if match:
        phrase = match.group(1).strip().lower()
        if phrase:
            return phrase

    parts = _AUDIENCE_SPLIT_RE.split(target_audience, maxsplit=1)
    if len(parts) > 1:
        phrase = parts[1].split(",")[0].strip().lower()
        if phrase:
            return phrase

    return None


def extract_pain_point(target_audience: str) -> str:
    """Return the pain-point phrase, falling back to "this problem"."""
    return match_pain_point(target_audience) or DEFAULT_PAIN_POINT


# ---------------------------------------------------------------------------
# Style templates
# ---------------------------------------------------------------------------
def _speaking_prompt(action: str, voice_line: str) -> str:
    return f'{action} Character speaks ALL THE WORDS: "{voice_line}"'


def _clip(clip_number: int, section: str, image_prompt: str, action: str, voice_line: str) -> PromptClip:
    return PromptClip(
        clip_number=clip_number,
        timestamp=_WINDOWS[clip_number - 1],
        section=section,
        image_prompt=image_prompt,
        video_prompt=_speaking_prompt(action, voice_line),
        voice_line=voice_line,
    )


def _transformation(avatar: str, pain_point: str) -> list[PromptClip]:
    return [
        _clip(
            1,
            "PREHOOK — BEFORE",
            f"Photorealistic {avatar}, BEFORE state: tired, skin issues visible, "
            "concerned expression, bathroom mirror selfie style, natural harsh "
            "lighting showing imperfections, 9:16 vertical",
            "Person looks at camera with worried expression, touches face gently, sighs.",
            f"I've been struggling with {pain_point} for years. "
            "I'm starting something new and I'll report back in 60 days.",
        ),
        _clip(
            2,
            "PREHOOK — AFTER",
            f"Photorealistic {avatar}, AFTER state: glowing healthy skin, confident "
            "happy expression, same bathroom mirror selfie style, warm flattering "
            "lighting, visible transformation, 9:16 vertical",
            "Person smiles confidently at camera, touches face showing smooth skin, "
            "excited energy.",
            "60 days later. You are not going to believe what happened.",
        ),
    ]


def _street_testimonial(avatar: str, pain_point: str) -> list[PromptClip]:
    return [
        _clip(
            1,
            "PREHOOK — SURPRISE",
            f"{avatar} being interviewed on city street, RØDE microphone in frame, "
            "surprised expression, urban background, 9:16 vertical",
            "Person being interviewed looks surprised and leans toward microphone.",
            "Wait, you want me to share my actual secret? Nobody asks me this.",
        ),
        _clip(
            2,
            "PREHOOK — INTRIGUE",
            f"{avatar} on city street, now smiling knowingly at interviewer, "
            f"confident body language, microphone visible, no sign of {pain_point}, "
            "9:16 vertical",
            "Person smiles and nods knowingly.",
            "Fine. But most people are going to be shocked by this.",
        ),
    ]


def _product_reveal(avatar: str, pain_point: str) -> list[PromptClip]:
    return [
        _clip(
            1,
            "PREHOOK — REVEAL",
            f"{avatar} holding supplement bottle with both hands presenting to "
            "camera, bright clean background, excited expression, 9:16 vertical",
            "Person holds bottle up to camera with both hands, excited expression.",
            "I finally found it. After two years of research this is the one.",
        ),
        _clip(
            2,
            "PREHOOK — SETUP",
            f"{avatar} close up of supplement bottle being turned to show label, "
            "bright clean background, engaged expression, 9:16 vertical",
            "Person turns bottle slowly to show label to camera, deliberate motion.",
            f"Let me explain exactly why this changes everything for {pain_point}.",
        ),
    ]


_STYLE_HANDLERS: dict[PrehookStyle, Callable[[str, str], list[PromptClip]]] = {
    PrehookStyle.TRANSFORMATION: _transformation,
    PrehookStyle.STREET_TESTIMONIAL: _street_testimonial,
    PrehookStyle.PRODUCT_REVEAL: _product_reveal,
}

_missing = set(PrehookStyle) - set(_STYLE_HANDLERS)
if _missing:
    raise RuntimeError(f"No template handler for styles: {sorted(s.value for s in _missing)}")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def supported_styles() -> list[str]:
    return [style.value for style in PrehookStyle]


def parse_style(style: PrehookStyle | str) -> PrehookStyle:
    """Coerce a style tag to PrehookStyle.

    Raises:
        UnrecognizedStyleError: If the tag is not a supported style
    """
    if isinstance(style, PrehookStyle):
        return style
    try:
        return PrehookStyle(style)
    except ValueError:
        raise UnrecognizedStyleError(str(style), supported_styles()) from None


def generate_script(
    style: PrehookStyle | str,
    product: Product,
    avatar_description: str,
) -> list[PromptClip]:
    """Generate the prehook clips for a style.

    Args:
        style: One of the PrehookStyle values
        product: Product name and target audience text
        avatar_description: Description of the on-screen character

    Returns:
        Two PromptClips, clip_number 1 then 2

    Raises:
        UnrecognizedStyleError: If style is not supported (no partial output)
    """
    prehook_style = parse_style(style)
    pain_point = extract_pain_point(product.target_audience)
    clips = _STYLE_HANDLERS[prehook_style](avatar_description.strip(), pain_point)
    logger.debug(
        f"Generated {len(clips)} {prehook_style.value} clips for {product.name!r} "
        f"(pain point: {pain_point!r})"
    )
    return clips


def apply_script(prompt_clips: list[PromptClip]) -> list[ClipInput]:
    """Turn script clips into clip inputs in clip_number order."""
    ordered = sorted(prompt_clips, key=lambda c: c.clip_number)
    return [
        ClipInput(
            image_prompt=c.image_prompt,
            video_prompt=c.video_prompt,
            voice_line=c.voice_line,
        )
        for c in ordered
    ]
