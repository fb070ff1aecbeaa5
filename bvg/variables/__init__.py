"""Variable expansion into per-job combinations."""

from bvg.variables.expander import (
    Combination,
    build_job_config,
    default_avatar_name,
    expand,
    substitute,
)

__all__ = ["Combination", "build_job_config", "default_avatar_name", "expand", "substitute"]
