"""Exception hierarchy for cdk-agc.

Library code raises these; only the CLI turns them into exit codes.
"""

from __future__ import annotations


class AgcError(Exception):
    """Base exception for cdk-agc errors."""


class OutputDirectoryNotFoundError(AgcError):
    """Raised when the directory to scan does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Directory not found: {path}")
        self.path = path


class DescriptorError(AgcError):
    """Raised when a manifest or asset descriptor cannot be parsed."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Failed to parse {path}: {reason}")
        self.path = path
        self.reason = reason


class ConfigError(ValueError, AgcError):
    """Raised when configuration is invalid."""


class ImageStoreError(AgcError):
    """Raised when the container runtime rejects a request."""


class ImageStoreUnavailableError(ImageStoreError):
    """Raised when the container runtime cannot be reached at all."""
