"""Error taxonomy shared by the clients and the migration engine."""

from __future__ import annotations


class MonstackError(RuntimeError):
    """Base class for all errors raised by monstack."""


class ConnectivityError(MonstackError):
    """A remote endpoint is unreachable or never became ready."""


class MetadataError(MonstackError, ValueError):
    """An export's metadata document is missing or cannot be parsed."""


class ArchiveIntegrityError(MonstackError):
    """An archive is corrupt or adversarial. Never suppressed."""


class PathTraversalError(ArchiveIntegrityError):
    """An archive entry resolves outside the extraction root."""

    def __init__(self, name: str) -> None:
        super().__init__(f"invalid tar entry: path traversal detected: {name}")
        self.name = name


class EntryTooLargeError(ArchiveIntegrityError):
    """An archive entry declares more bytes than the extraction cap."""

    def __init__(self, name: str, size: int, limit: int) -> None:
        super().__init__(
            f"invalid tar entry: {name} declares {size} bytes (limit {limit})"
        )
        self.name = name
        self.size = size
        self.limit = limit


class RuntimeCommandError(MonstackError):
    """A container-runtime command failed or no runtime is available."""


class MigrationError(MonstackError):
    """A migration stage failed; the message names the stage."""
