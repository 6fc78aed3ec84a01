"""
promowheel.errors — Engine exception hierarchy
================================================

Services raise these; :mod:`promowheel.api.main` translates them into HTTP
responses with a consistent ``{"error": ..., "message": ...}`` body.
"""

from __future__ import annotations

from promowheel.constants import (
    CREDITS_EXHAUSTED_MESSAGES,
    DENIAL_MESSAGES,
    DenialReason,
)


class EngineError(Exception):
    """Base exception for all engine errors."""

    code = "engine_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(EngineError):
    """A campaign, participant or operator id does not resolve. Terminal."""

    code = "not_found"

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity.capitalize()} not found")
        self.entity = entity
        self.entity_id = entity_id


class NotEligible(EngineError):
    """Lifecycle or rate-limit rejection; never retried automatically."""

    def __init__(self, reason: DenialReason, message: str | None = None) -> None:
        super().__init__(message or DENIAL_MESSAGES[reason])
        self.reason = reason
        self.code = reason.value


class CreditsExhausted(EngineError):
    """The operator has no credit of *kind* left; remedy is a billing action."""

    code = "credits_exhausted"

    def __init__(self, kind: str) -> None:
        super().__init__(CREDITS_EXHAUSTED_MESSAGES[kind])
        self.kind = kind


class InvalidTransition(EngineError):
    """Operator requested a status change the lifecycle rules forbid."""

    code = "invalid_transition"

    def __init__(self, message: str, reason: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason


class ValidationFailed(EngineError):
    """Operator-supplied campaign data is incomplete or malformed."""

    code = "validation_failed"


class TransientStoreFailure(EngineError):
    """Persistence is unavailable; the whole operation is safe to retry."""

    code = "store_unavailable"
