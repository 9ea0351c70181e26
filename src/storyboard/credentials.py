"""
Bearer token pool with per-token health.
"""

import logging
import random
from collections.abc import Iterable

from .models import CredentialHealth

logger = logging.getLogger("storyboard")

TOKEN_PREFIX = "ya29."


def parse_bearer_tokens(raw: str, prefix: str = TOKEN_PREFIX) -> list[str]:
    """
    Extract bearer tokens from pasted text.

    Tokens are recognised by their ``prefix``; anything after the first
    whitespace following a token is ignored. Duplicates are dropped.
    """
    tokens: list[str] = []
    for part in raw.split(prefix):
        if not part.strip():
            continue
        token = prefix + part.strip().split()[0]
        if token not in tokens:
            tokens.append(token)
    return tokens


class CredentialPool:
    """Tokens keyed by value, each either VALID or INVALID."""

    def __init__(self, tokens: Iterable[str] = ()) -> None:
        self._health: dict[str, CredentialHealth] = {}
        self.load(tokens)

    def __len__(self) -> int:
        return len(self._health)

    def __contains__(self, token: str) -> bool:
        return token in self._health

    def load(self, tokens: Iterable[str]) -> None:
        """Replace the token list. Known tokens keep their health."""
        self._health = {t: self._health.get(t, CredentialHealth.VALID) for t in tokens}
        logger.debug(f"Token pool loaded: {len(self.valid_tokens())}/{len(self)} valid")

    def reset(self) -> None:
        """Mark every token VALID again."""
        for token in self._health:
            self._health[token] = CredentialHealth.VALID

    def health(self, token: str) -> CredentialHealth:
        return self._health[token]

    def mark_invalid(self, token: str) -> None:
        if token not in self._health:
            return
        if self._health[token] is CredentialHealth.VALID:
            logger.warning(f"Token {mask_token(token)} rejected by the service; disabling it")
        self._health[token] = CredentialHealth.INVALID

    def valid_tokens(self) -> list[str]:
        return [t for t, h in self._health.items() if h is CredentialHealth.VALID]

    def invalid_tokens(self) -> list[str]:
        return [t for t, h in self._health.items() if h is CredentialHealth.INVALID]

    def pick_random(self, rng: random.Random | None = None) -> str | None:
        """Pick a VALID token uniformly at random, or None when none is left."""
        valid = self.valid_tokens()
        if not valid:
            return None
        return (rng or random).choice(valid)


def mask_token(token: str) -> str:
    """Shorten a token for logs."""
    if len(token) <= 12:
        return token[:4] + "…"
    return f"{token[:8]}…{token[-4:]}"
