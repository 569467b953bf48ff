"""Error taxonomy shared by the gateway, transformer, graph and player.

Everything derives from NovelStudioError so the HTTP layer can catch one type.
Cancelling a superseded LLM request is not an error and has no class here.
"""

from __future__ import annotations


class NovelStudioError(Exception):
    """Base class for all domain errors."""


class TransportError(NovelStudioError):
    """The LLM backend could not be reached or answered with a failure."""


class ParseError(NovelStudioError):
    """The LLM response did not contain an extractable JSON payload."""

    def __init__(self, message: str, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


class ValidationError(NovelStudioError):
    """User-submitted form data is incomplete or malformed."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class StructuralError(NovelStudioError):
    """A narrative graph invariant does not hold."""

    def __init__(self, problems: list[str] | str) -> None:
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


class PlaybackError(NovelStudioError):
    """A playback transition was requested that the current state forbids."""
