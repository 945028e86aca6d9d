"""Engine error taxonomy.

Only ``CycleDetected`` is fatal for generation. Provider and payload errors are
recovered by the rule-based strategy inside the engine and never leave it;
``ConcurrentAdjustment`` and ``AdjustmentDegraded`` are surfaced to callers
as recoverable conditions.
"""

from collections.abc import Sequence
from typing import Any


class LearnPathError(Exception):
    """Base class for all engine errors."""


# ============================================================================
# Catalog
# ============================================================================


class CycleDetected(LearnPathError):
    """The course prerequisite relation contains a cycle."""

    def __init__(self, cycle: Sequence[str]) -> None:
        self.cycle = list(cycle)
        super().__init__(f"Prerequisite cycle detected: {' -> '.join(self.cycle)}")


# ============================================================================
# Reasoning provider
# ============================================================================


class ProviderFailure(LearnPathError):
    """The external reasoning provider did not produce a usable response."""

    code = "provider_failure"


class ProviderUnavailable(ProviderFailure):
    """Network failure, timeout, or local rate limit."""

    code = "provider_unavailable"

    def __init__(self, message: str = "Reasoning provider unavailable", retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        super().__init__(message)


class ProviderError(ProviderFailure):
    """Non-2xx response or an explicit error payload."""

    code = "provider_error"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.status_code is not None and (self.status_code == 429 or self.status_code >= 500)


# ============================================================================
# Payload validation
# ============================================================================


class InvalidPayload(LearnPathError):
    """Provider output could not be turned into a trustworthy roadmap."""

    code = "invalid_payload"


class SchemaViolation(InvalidPayload):
    """A required field is missing or has an unusable shape."""

    code = "schema_violation"

    def __init__(self, field: str, message: str | None = None) -> None:
        self.field = field
        super().__init__(message or f"Schema violation at '{field}'")


class LowConfidenceOutput(InvalidPayload):
    """Too many items needed repair to trust the payload."""

    code = "low_confidence_output"

    def __init__(self, repair_ratio: float, threshold: float, repairs: Sequence[Any] = ()) -> None:
        self.repair_ratio = repair_ratio
        self.threshold = threshold
        self.repairs = list(repairs)
        super().__init__(
            f"Repair ratio {repair_ratio:.2f} exceeds threshold {threshold:.2f}"
        )


# ============================================================================
# Adjustment
# ============================================================================


class ConcurrentAdjustment(LearnPathError):
    """Another adjustment for the same student is in flight."""

    def __init__(self, student_id: str) -> None:
        self.student_id = student_id
        super().__init__(f"Adjustment already in progress for student {student_id}")


class AdjustmentDegraded(LearnPathError):
    """Remedial generation failed; only pattern detection was recorded."""

    def __init__(self, reason: str, patterns: Sequence[Any] = ()) -> None:
        self.reason = reason
        self.patterns = list(patterns)
        super().__init__(reason)


# ============================================================================
# Service boundary
# ============================================================================


class RoadmapNotFound(LearnPathError):
    def __init__(self, student_id: str) -> None:
        self.student_id = student_id
        super().__init__(f"No roadmap found for student {student_id}")


class StudentNotFound(LearnPathError):
    def __init__(self, student_id: str) -> None:
        self.student_id = student_id
        super().__init__(f"Student {student_id} not found")
