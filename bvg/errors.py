"""Error taxonomy shared by the orchestrator, ledger, stitcher and API."""

from __future__ import annotations

from enum import Enum


class BVGError(Exception):
    """Base class for domain errors."""


class ValidationError(BVGError):
    """Bad input (e.g. empty combinations). Nothing has been persisted."""


class JobNotFoundError(BVGError):
    pass


class StaleJobError(BVGError):
    """Row changed underneath us (optimistic version check failed)."""


class InfrastructureError(BVGError):
    """Storage or other internal failure for a single job."""


class InsufficientCreditsError(BVGError):
    def __init__(self, balance: int, required: int):
        self.balance = balance
        self.required = required
        self.shortfall = max(required - balance, 0)
        super().__init__(
            f"Insufficient credits: need {required}, have {balance} (short {self.shortfall})"
        )


class StitchError(BVGError):
    """Stitching failure with the step (validate/download/upload/compose) and segment involved."""

    def __init__(self, message: str, step: str, segment_index: int | None = None):
        self.step = step
        self.segment_index = segment_index
        super().__init__(message)


# ---------------------------------------------------------------------------
# Provider errors
# ---------------------------------------------------------------------------

class ProviderErrorType(str, Enum):
    RATE_LIMITED = "RATE_LIMITED"
    CREDIT_EXHAUSTED = "CREDIT_EXHAUSTED"
    AUTH_ERROR = "AUTH_ERROR"
    INVALID_PARAMS = "INVALID_PARAMS"
    AUDIO_FILTERED = "AUDIO_FILTERED"
    API_ERROR = "API_ERROR"
    TIMEOUT = "TIMEOUT"


class ProviderError(BVGError):
    def __init__(
        self,
        type: ProviderErrorType,
        message: str,
        user_action: str = "",
        detail: str | None = None,
        status_code: int | None = None,
    ):
        self.type = type
        self.message = message
        self.user_action = user_action
        self.detail = detail
        self.status_code = status_code
        super().__init__(message)

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message}\n\nDetails: {self.detail}"
        return self.message


def parse_provider_error(status: int, text: str) -> ProviderError:
    """Classify a failed provider HTTP response.

    Order matters: provider-side credit exhaustion is recognised from the
    body before the status code is considered.
    """
    lower = (text or "").lower()
    if "credit" in lower or "insufficient" in lower or "balance" in lower:
        return ProviderError(
            ProviderErrorType.CREDIT_EXHAUSTED,
            "Insufficient credits at the video provider. Please add more credits to the provider account.",
            "Add credits to the video provider account to continue generating videos.",
            detail=text,
            status_code=status,
        )
    if status == 429 or "rate limit" in lower:
        return ProviderError(
            ProviderErrorType.RATE_LIMITED,
            "Video provider rate limit exceeded. Please wait a few minutes.",
            "Wait 5-10 minutes before trying again.",
            detail=text,
            status_code=status,
        )
    if status in (401, 403):
        return ProviderError(
            ProviderErrorType.AUTH_ERROR,
            "Invalid or expired video provider API token.",
            "Check your API token configuration.",
            detail=text,
            status_code=status,
        )
    if status == 400 and "audio_filtered" in lower:
        return ProviderError(
            ProviderErrorType.AUDIO_FILTERED,
            "The script or dialogue was filtered by the video provider's audio policy.",
            "Simplify the avatar script: use neutral, professional language and avoid "
            "medical, legal or financial claims, brand names, or sensitive terms.",
            detail=text,
            status_code=status,
        )
    if "invalid" in lower or "parameter" in lower:
        return ProviderError(
            ProviderErrorType.INVALID_PARAMS,
            "Invalid generation parameters.",
            "Check your video settings and try again.",
            detail=text,
            status_code=status,
        )
    return ProviderError(
        ProviderErrorType.API_ERROR,
        f"Video provider API error ({status})",
        "Please try again. If the issue persists, check the provider's service status.",
        detail=text,
        status_code=status,
    )


def timeout_error(minutes: int) -> ProviderError:
    return ProviderError(
        ProviderErrorType.TIMEOUT,
        f"No completion received from the video provider within {minutes} minutes.",
        "Retry the generation. Credits held for this job have been released.",
    )
