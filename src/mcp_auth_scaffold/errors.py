from __future__ import annotations

from typing import Any


class ScaffoldError(RuntimeError):
    """Base error for the auth scaffolding pipeline.

    Subclasses carry a stable ``code`` that ends up in ``ScaffoldResult.error_code``.
    """

    default_code = "scaffold_error"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code.strip() if isinstance(code, str) and code.strip() else self.default_code
        self.details = dict(details) if isinstance(details, dict) else {}
        self.hint = hint.strip() if isinstance(hint, str) and hint.strip() else None


class ValidationFailure(ScaffoldError):
    """The project or request is unusable; raised before any mutation."""

    default_code = "validation_failed"


class ConflictFailure(ScaffoldError):
    default_code = "conflict"


class TransformFailure(ScaffoldError):
    """An entry point or config file could not be edited."""

    default_code = "transform_failed"


class PostValidationFailure(ScaffoldError):
    default_code = "post_validation_failed"


class IOFailure(ScaffoldError):
    default_code = "io_failed"

