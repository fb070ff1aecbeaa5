"""Variable expansion: cross-product of variable values and story-template substitution."""

from __future__ import annotations

import logging
import re
from typing import Iterable

from bvg.errors import ValidationError
from bvg.schemas.models import (
    TEXT_ONLY_SENTINEL,
    BaseConfig,
    GenerationMode,
    JobConfig,
    Variable,
)

logger = logging.getLogger(__name__)

Combination = dict[str, str]

_PLACEHOLDER_RE = re.compile(r"\{([^{}]+)\}")

# Combination keys that override the matching BaseConfig field
_INDUSTRY_KEYS = ("industry", "industry_override")
_CITY_KEYS = ("city", "city_override")


def expand(variables: Iterable[Variable]) -> list[Combination]:
    """Return every combination of variable values.

    Variables without values are ignored. With nothing left the result is a
    single empty combination (one default job). The first variable's values
    vary slowest so a combination's index is stable across calls.
    """
    variables = list(variables)
    names = [v.name for v in variables]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ValidationError(f"Duplicate variable names: {', '.join(duplicates)}")

    active = []
    for var in variables:
        values = list(dict.fromkeys(v for v in var.values if v is not None))
        if values:
            active.append((var.name, values))
        else:
            logger.debug("Variable %s has no values; skipped", var.name)
    if not active:
        return [{}]
    return _cross(active)


def _cross(active: list[tuple[str, list[str]]]) -> list[Combination]:
    if not active:
        return [{}]
    (name, values), rest = active[0], active[1:]
    tail = _cross(rest)
    return [{name: value, **combo} for value in values for combo in tail]


def substitute(template: str, combo: Combination) -> str:
    """Replace each {key} with combo[key]; unknown keys are left as written."""
    if not template:
        return template
    return _PLACEHOLDER_RE.sub(lambda m: combo.get(m.group(1), m.group(0)), template)


def _first(combo: Combination, keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = combo.get(key)
        if value:
            return value
    return None


def default_avatar_name(combo: Combination) -> str:
    parts = [combo.get("avatar_age", ""), combo.get("avatar_gender", ""), "Professional"]
    return " ".join(p.strip() for p in parts if p and p.strip())


def build_job_config(combo: Combination, base: BaseConfig) -> JobConfig:
    """Config snapshot for one combination, falling back to the batch template."""
    avatar_name = combo.get("avatar_name") or base.avatar_name or default_avatar_name(combo)
    image_url = combo.get("image_url") or base.image_url
    mode = GenerationMode.REFERENCE_2_VIDEO if image_url else GenerationMode.TEXT_2_VIDEO
    return JobConfig(
        avatar_name=avatar_name,
        avatar_description=combo.get("avatar_description") or base.avatar_description,
        industry=_first(combo, _INDUSTRY_KEYS) or base.industry,
        city=_first(combo, _CITY_KEYS) or base.city,
        story_idea=substitute(base.story_idea, combo),
        image_url=image_url or TEXT_ONLY_SENTINEL,
        model=base.model,
        aspect_ratio=base.aspect_ratio,
        number_of_scenes=base.number_of_scenes,
        generation_mode=mode,
        variable_values=dict(combo),
    )
