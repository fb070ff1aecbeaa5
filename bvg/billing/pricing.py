"""Credit pricing: rendered minutes to credits."""

import math

CREDITS_PER_MINUTE = 7.5
PRICE_PER_CREDIT = 3.34  # USD, display only

INITIAL_SEGMENT_SECONDS = 8
EXTENSION_SEGMENT_SECONDS = 6


def credits_for_minutes(minutes: float, credits_per_minute: float = CREDITS_PER_MINUTE) -> int:
    """Credits required for ``minutes`` of rendered video (rounded up)."""
    if minutes <= 0:
        return 0
    # round first so 8 s at 7.5/min is exactly 1 credit, not 2
    return math.ceil(round(minutes * credits_per_minute, 6))


def estimate_job_minutes(
    number_of_scenes: int,
    initial_seconds: int = INITIAL_SEGMENT_SECONDS,
    extension_seconds: int = EXTENSION_SEGMENT_SECONDS,
) -> float:
    """Rendered minutes for a job: one initial clip plus one extension per extra scene."""
    scenes = max(number_of_scenes, 1)
    return (initial_seconds + extension_seconds * (scenes - 1)) / 60


def credits_to_usd(credits: int) -> float:
    return round(credits * PRICE_PER_CREDIT, 2)
