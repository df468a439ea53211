"""Typed failures raised by the server import engine.

Every error carries enough context (server ID, offending path, underlying
exception via ``__cause__``) for an outer layer to build a user-facing
message. The engine itself never presents them.
"""

from __future__ import annotations

import uuid


class ImporterError(Exception):
    """Base class for all server import failures."""

    def __init__(
        self,
        message: str,
        *,
        server_id: uuid.UUID | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(message)
        self.server_id = server_id
        self.path = path

    @property
    def kind(self) -> str:
        """Short metric-friendly name, e.g. ``path_escape``."""
        name = type(self).__name__.removesuffix("Error")
        out = []
        for i, ch in enumerate(name):
            if ch.isupper() and i:
                out.append("_")
            out.append(ch.lower())
        return "".join(out)


class CorruptArchiveError(ImporterError):
    """Raised when the bundle cannot be opened or read as a zip archive."""


class ManifestMissingError(ImporterError):
    """Raised when the bundle has no manifest document."""


class MalformedManifestError(ImporterError):
    """Raised when the manifest cannot be decoded into a server manifest."""


class ScriptContentMissingError(ImporterError):
    """Raised when a declared script has no backing entry in the bundle."""


class PathEscapeError(ImporterError):
    """Raised when a file entry would be written outside the working directory."""


class WriteFailureError(ImporterError):
    """Raised when the filesystem rejects a directory or file write."""


class PersistenceError(ImporterError):
    """Raised when committing the reconciled server fails."""
