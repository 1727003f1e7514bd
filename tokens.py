import secrets
import string
from typing import Callable

ALPHABET = string.digits + string.ascii_lowercase + string.ascii_uppercase

# insert gives up with CollisionExhausted after this many unique-violations
MAX_TOKEN_ATTEMPTS = 5


def generate_token(length: int) -> str:
    """Random alphanumeric token drawn from the OS CSPRNG."""
    if length < 1:
        raise ValueError("token length must be positive")
    return ''.join(secrets.choice(ALPHABET) for _ in range(length))


class TokenAllocator:
    """Proposes tokens for insert; the store's unique index decides whether they stick."""

    def __init__(self, generate: Callable[[int], str] = generate_token, max_attempts: int = MAX_TOKEN_ATTEMPTS):
        self.generate = generate
        self.max_attempts = max_attempts

    def proposals(self, length: int):
        for _ in range(self.max_attempts):
            yield self.generate(length)
