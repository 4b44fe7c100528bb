"""Error taxonomy for allocation and resolution.

Only failures that cannot be recovered inside a service cross its boundary.
An unknown or expired code is not an error: resolution returns ``None``.
"""

__all__ = [
    "ShortenerError",
    "DestinationValidationError",
    "CollisionRetryExhausted",
    "CodeSpaceExhausted",
    "TransientStoreFailure",
]


class ShortenerError(Exception):
    """Base class for engine errors."""


class DestinationValidationError(ShortenerError, ValueError):
    """The submitted destination is not an acceptable absolute URL."""


class CollisionRetryExhausted(ShortenerError):
    """Every allocation attempt collided with an existing code.

    Frequent occurrences mean the code length or alphabet needs review.
    """

    def __init__(self, attempts: int, message: str | None = None):
        self.attempts = attempts
        super().__init__(message or f"No free short code after {attempts} attempts")


class CodeSpaceExhausted(CollisionRetryExhausted):
    """The counter has run past the largest value encodable in the code length."""

    def __init__(self, value: int, capacity: int):
        self.value = value
        self.capacity = capacity
        super().__init__(0, f"Counter value {value} exceeds code space of {capacity}")


class TransientStoreFailure(ShortenerError):
    """The mapping store timed out or was unavailable; the call may be retried."""

    def __init__(self, operation: str, message: str | None = None):
        self.operation = operation
        super().__init__(message or f"Mapping store unavailable during {operation}")
