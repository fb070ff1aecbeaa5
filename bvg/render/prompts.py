"""Render prompt builders for the initial clip and for continuation clips."""

from __future__ import annotations

from bvg.schemas.models import JobConfig, ScenePrompt

VALID_ASPECT_RATIOS = ("16:9", "9:16")

CONTENT_POLICY_PREAMBLE = """
IMPORTANT DISCLAIMER:
The content is high-level, neutral, and educational in nature.
It does not provide financial, legal, medical, or professional advice,
and does not make promises, guarantees, or persuasive claims.

NO ON-SCREEN TEXT (MANDATORY):
- NO captions, subtitles, or text overlays
- NO visible text, titles, or graphics with words
- NO signs, labels, or written content in the scene
- Dialogue is AUDIO ONLY - never display spoken words as text on screen

SCENE CONTENT:
"""


def normalize_aspect_ratio(aspect_ratio: str | None) -> str:
    return aspect_ratio if aspect_ratio in VALID_ASPECT_RATIOS else "16:9"


def seed_for(generation_id: str) -> int:
    """Deterministic seed in 10000-99999 so every scene of a job shares voice and look."""
    h = 0
    for ch in generation_id:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h) % 90000 + 10000


def _voice_block(avatar_name: str, industry: str) -> str:
    who = f" - {avatar_name}'s voice" if avatar_name else ""
    trade = f" {industry}" if industry else ""
    return f"""VOICE & SPEECH REQUIREMENTS:

VOICE CHARACTER{who} must be:
- Tone: Warm, confident, and conversational
- Clarity: Clear articulation, every word distinctly pronounced
- Pace: Natural speaking rhythm with pauses between thoughts
- Authenticity: Sounds like a real{trade} professional, not a text-to-speech voice

"""


def build_initial_prompt(config: JobConfig, scene: ScenePrompt) -> str:
    """Prompt for the first clip; the scene script is appended as spoken dialogue."""
    parts = [_voice_block(config.avatar_name, config.industry)]
    if config.avatar_description and config.avatar_description.strip():
        parts.append(f"SPOKESPERSON VISUAL: {config.avatar_description.strip()}\n\n")
    parts.append(scene.visual_prompt)
    if scene.script:
        parts.append(f'\n\nAVATAR DIALOGUE: "{scene.script}"')
        speaker = config.avatar_name or "The presenter"
        parts.append(
            f"\n{speaker} speaks with a warm, professional tone. "
            "Pause briefly between sentences and speak directly to the viewer."
        )
    return CONTENT_POLICY_PREAMBLE + "".join(parts)


def build_extension_prompt(config: JobConfig, scene: ScenePrompt, duration: int) -> str:
    """Prompt for a continuation clip.

    The clip opens on the previous clip's final pose with the camera locked,
    and ends with a settle window so the next splice point is a near-still frame.
    """
    slow_down = duration - 3
    settle = duration - 2
    freeze = duration - 1
    name = config.avatar_name or "The presenter"
    trade = f" {config.industry}" if config.industry else ""

    prompt = f"""VOICE CONTINUITY (MANDATORY):
This scene's voice MUST match previous scenes exactly: same pitch, timbre, pace,
warmth and accent as Scene 1. {name} sounds like a real{trade} professional.

SEAMLESS VIDEO CONTINUATION:
This segment will be directly concatenated to the previous video.
Duration: {duration} seconds total.

1. STARTING POSITION MATCH:
   - {name} starts in the exact position and pose from the end of the previous scene
   - Same camera distance, body orientation and height

2. CAMERA LOCK:
   - Camera frozen in the same position for all {duration} seconds
   - No pans, tilts, zooms, dollies or angle shifts

3. MOVEMENT:
   - Stay within a small area; slow, deliberate movements only

4. ENDING PROTOCOL:
   - Seconds 0-{slow_down}: normal action and dialogue
   - Seconds {slow_down}-{settle}: begin slowing all movement
   - Seconds {settle}-{freeze}: settle into a stable neutral pose
   - Seconds {freeze}-{duration}: hold nearly still, facing camera

5. AUDIO TIMING:
   - Complete all dialogue by second {freeze}
   - Final {duration - freeze} second(s): silent, ambient sound only

6. VISUAL CONTINUITY:
   - {name} looks identical: same person, clothing, lighting and background

7. SCENE ACTION:
{scene.visual_prompt}
"""
    if scene.script:
        prompt += f"""
8. AVATAR DIALOGUE:
{name} speaks with the exact same voice as previous scenes:
"{scene.script}"
"""
    return CONTENT_POLICY_PREAMBLE + prompt
