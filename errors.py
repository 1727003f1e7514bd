class PasteError(Exception):
    """Base class for every error raised by the paste store."""


class ValidationRejected(PasteError):
    """Content was empty or exceeded a size bound."""


class CollisionExhausted(PasteError):
    """Every proposed token collided with a live record."""

    def __init__(self, token_length: int, attempts: int):
        super().__init__(f"token collision after {attempts} attempts at length {token_length}")
        self.token_length = token_length
        self.attempts = attempts


class NotFound(PasteError):
    """Token is absent, expired, evicted or burned. The cause is never exposed."""


class Rejected(PasteError):
    """An operation was declined without changing state."""


class RenewalNotAllowed(Rejected):
    """Private and burn-limited pastes cannot be renewed."""


class RenewalTooEarly(Rejected):
    """Less than half of the original duration has elapsed."""


class StoreError(PasteError):
    """The storage engine failed."""
