"""Extract a bundle's file tree into a server working directory.

Materialization is all-or-nothing with respect to path safety: every
destination is resolved and checked before the first byte is written, so
a single hostile entry aborts the step with nothing on disk. Writes
themselves overwrite whatever is already at the destination.
"""

from __future__ import annotations

import os
import posixpath
import re
import shutil
import zipfile
from pathlib import Path, PurePosixPath

import structlog

from Lanforge.archive import Bundle
from Lanforge.errors import CorruptArchiveError, PathEscapeError, WriteFailureError
from Lanforge.metrics import inc_counter

log = structlog.get_logger()

_INVALID_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_DRIVE_PREFIX = re.compile(r"^[A-Za-z]:")


def sanitize_filename(name: str) -> str:
    """Strip characters that are not allowed in a single path component."""
    cleaned = _INVALID_FILENAME_CHARS.sub("", name or "")
    return cleaned.strip().rstrip(". ")


def resolve_destination(working_directory: Path, relative_path: str) -> Path:
    """Join an archive-relative path onto ``working_directory``.

    Raises:
        PathEscapeError: If the entry is absolute, carries a drive letter,
            contains a ``..`` segment, or would land outside the directory.
    """
    normalized = relative_path.replace("\\", "/")
    if normalized.startswith("/") or _DRIVE_PREFIX.match(normalized):
        raise PathEscapeError(f"Absolute bundle path {relative_path!r}", path=relative_path)
    if ".." in PurePosixPath(normalized).parts:
        raise PathEscapeError(
            f"Bundle path {relative_path!r} traverses a parent directory", path=relative_path
        )

    collapsed = posixpath.normpath(normalized.rstrip("/")) if normalized.strip("/") else "."
    base = Path(os.path.normpath(os.path.abspath(working_directory)))
    destination = Path(os.path.normpath(base / collapsed))
    if destination != base and base not in destination.parents:
        raise PathEscapeError(
            f"Bundle path {relative_path!r} resolves outside {base}", path=relative_path
        )
    return destination


def materialize(bundle: Bundle, prefix: str, working_directory: Path) -> int:
    """Write every entry under ``prefix`` into ``working_directory``.

    Returns:
        Number of files written (directory entries are not counted).

    Raises:
        PathEscapeError: Before any write, if any entry escapes the directory.
        WriteFailureError: If the filesystem rejects a directory or file.
    """
    planned = [
        (entry, resolve_destination(working_directory, entry.relative_path))
        for entry in bundle.entries(prefix)
    ]

    base = Path(working_directory)
    try:
        base.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise WriteFailureError(f"Cannot create {base}: {exc}", path=str(base)) from exc

    written = 0
    for entry, destination in planned:
        try:
            if entry.is_directory:
                destination.mkdir(parents=True, exist_ok=True)
                continue
            destination.parent.mkdir(parents=True, exist_ok=True)
            with entry.open() as src, open(destination, "wb") as dst:
                shutil.copyfileobj(src, dst)
        except zipfile.BadZipFile as exc:
            raise CorruptArchiveError(
                f"Corrupt bundle entry {entry.info.filename}", path=entry.info.filename
            ) from exc
        except OSError as exc:
            raise WriteFailureError(
                f"Cannot write {destination}: {exc}", path=str(destination)
            ) from exc
        written += 1
        log.debug("materializer.write", path=str(destination), size=entry.info.file_size)

    inc_counter("materializer.files_written", written)
    log.info(
        "materializer.complete",
        working_directory=str(base),
        entries=len(planned),
        files_written=written,
    )
    return written
