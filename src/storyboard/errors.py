"""
Error types raised by the storyboard pipeline.
"""


class StoryboardError(RuntimeError):
    """Base class for pipeline errors."""


class PolicyError(StoryboardError):
    """A run cannot start: no work, no valid tokens, no rules, missing key."""


class GenerationError(StoryboardError):
    """A generation service call failed."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class AuthenticationError(GenerationError):
    """The service rejected the credential (HTTP 401/403)."""


class ContractError(GenerationError):
    """The service answered with a payload of the wrong shape."""
