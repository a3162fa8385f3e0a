"""Caller-visible exceptions.

Candidate-code failures (denied, timed out, wrong shape, totals mismatch) are
returned as values by the sandbox and the runner. Only exhaustion, where no
cached version and no generated candidate produced records, reaches the caller
as an exception.
"""

from __future__ import annotations

from collections.abc import Sequence


class ParserGenerationError(RuntimeError):
    """The generation loop finished without any submission producing records."""

    def __init__(self, message: str, *, attempts: int, last_error: str | None = None) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class ExtractionExhaustedError(RuntimeError):
    """Every cached version failed and generation produced nothing usable."""

    def __init__(
        self,
        message: str,
        *,
        tried_versions: Sequence[int] = (),
        generation_attempts: int = 0,
    ) -> None:
        super().__init__(message)
        self.tried_versions = tuple(tried_versions)
        self.generation_attempts = generation_attempts


__all__ = ["ExtractionExhaustedError", "ParserGenerationError"]
