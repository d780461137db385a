"""Exception hierarchy for the overlay secrets generator.

Callers can catch :class:`SecretsError` to handle every failure the helper
raises. Only :class:`DecryptFailureError` is recoverable; the resolver
downgrades it to a warning and continues without prior secrets.

Exceptions
----------
SecretsError
MissingCredentialsError
InvalidOverlayError
MissingTemplateError
DecryptFailureError
IncompleteRenderError
EncryptFailureError
CatalogueError

Examples
--------
>>> raise MissingCredentialsError(("AWS_ACCESS_KEY_ID", "SOPS_AGE_KEY"))
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path


class SecretsError(Exception):
    """Base error for overlay secret generation."""


class MissingCredentialsError(SecretsError):
    """Raised when required environment variables are unset or empty.

    Parameters
    ----------
    missing
        Names of every missing variable, in declaration order.
    """

    def __init__(self, missing: Sequence[str]) -> None:
        self.missing = tuple(missing)
        names = ", ".join(self.missing)
        super().__init__(f"Missing required environment variables: {names}")


class InvalidOverlayError(SecretsError):
    """Raised when the overlay name is empty or escapes the overlays root."""


class MissingTemplateError(SecretsError):
    """Raised when the overlay has no ``secrets.example.yaml``."""

    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(f"Example file not found: {path}")


class DecryptFailureError(SecretsError):
    """Raised when an existing secrets file cannot be decrypted."""


class IncompleteRenderError(SecretsError):
    """Raised when placeholders survive template substitution.

    Parameters
    ----------
    tokens
        ``(line_number, token)`` pairs for every surviving placeholder.
    """

    def __init__(self, tokens: Sequence[tuple[int, str]]) -> None:
        self.tokens = tuple(tokens)
        rendered = ", ".join(f"line {line}: {token}" for line, token in self.tokens)
        super().__init__(f"Unresolved placeholders after rendering: {rendered}")


class EncryptFailureError(SecretsError):
    """Raised when the rendered manifest cannot be encrypted."""


class CatalogueError(SecretsError):
    """Raised when the secret catalogue is malformed or ambiguous."""


__all__ = [
    "CatalogueError",
    "DecryptFailureError",
    "EncryptFailureError",
    "IncompleteRenderError",
    "InvalidOverlayError",
    "MissingCredentialsError",
    "MissingTemplateError",
    "SecretsError",
]
