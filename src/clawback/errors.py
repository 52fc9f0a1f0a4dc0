"""
Error taxonomy for clawback operations.

Every failure the engine reports on purpose derives from
ClawbackError so callers can catch the family in one place.
Filesystem preconditions (missing workspace, missing archive)
use the builtin FileNotFoundError instead.
"""

from __future__ import annotations


class ClawbackError(Exception):
    """Base class for all clawback errors."""


class PathEscape(ClawbackError):
    """A scanned, included or restored path resolves outside its root."""


class IntegrityMismatch(ClawbackError):
    """An archived file is missing or does not match its manifest checksum."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(message)
        self.path = path


class MissingManifest(ClawbackError):
    """The archive has no manifest.json, or it cannot be parsed."""


class EncryptedArchive(ClawbackError):
    """The whole archive is encrypted and no password was supplied."""


class InvalidPassword(ClawbackError):
    """Decryption failed.

    Attributes:
        reason: "malformed" when the envelope itself is unreadable,
            "authentication" when the key did not authenticate the data.
    """

    def __init__(self, message: str, reason: str = "authentication") -> None:
        super().__init__(message)
        self.reason = reason


class UsageError(ClawbackError):
    """The caller combined options in a way that cannot work."""
