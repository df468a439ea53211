"""Read-only access to server bundles.

A bundle is a zip archive laid out as::

    Manifest.yml          desired-state document
    Scripts/{scriptId}    raw script text, one entry per script
    Files/...             working-directory tree; directory entries end in "/"

``open_bundle`` owns the underlying handle for the duration of a ``with``
block and releases it on every exit path.
"""

from __future__ import annotations

import contextlib
import zipfile
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import IO, BinaryIO, Protocol

import structlog

from Lanforge.errors import CorruptArchiveError, MalformedManifestError, ManifestMissingError

log = structlog.get_logger()

MANIFEST_FILENAME = "Manifest.yml"
FILES_PREFIX = "Files/"
SCRIPTS_PREFIX = "Scripts/"


def _normalize_name(name: str) -> str:
    return name.replace("\\", "/")


@dataclass(frozen=True)
class ArchiveEntry:
    """One entry below a prefix, with the prefix already stripped."""

    relative_path: str
    is_directory: bool
    info: zipfile.ZipInfo
    _archive: zipfile.ZipFile

    def open(self) -> IO[bytes]:
        try:
            return self._archive.open(self.info, "r")
        except (zipfile.BadZipFile, OSError, RuntimeError) as exc:
            raise CorruptArchiveError(
                f"Cannot read bundle entry {self.info.filename}", path=self.info.filename
            ) from exc


class Bundle:
    def __init__(self, archive: zipfile.ZipFile, source: str) -> None:
        self._archive = archive
        self.source = source

    def _find(self, name: str) -> zipfile.ZipInfo | None:
        for info in self._archive.infolist():
            if _normalize_name(info.filename) == name:
                return info
        return None

    def read_text(self, name: str, *, errors: str = "strict") -> str | None:
        """Return the UTF-8 text of entry ``name`` or None when absent.

        ``errors`` is passed to ``bytes.decode``; with the default a
        non-UTF-8 entry raises ``UnicodeDecodeError``.
        """
        info = self._find(name)
        if info is None or info.is_dir():
            return None
        try:
            data = self._archive.read(info)
        except (zipfile.BadZipFile, OSError, RuntimeError) as exc:
            raise CorruptArchiveError(
                f"Cannot read bundle entry {name} from {self.source}", path=name
            ) from exc
        return data.decode("utf-8-sig", errors=errors)

    def read_manifest_text(self) -> str:
        try:
            text = self.read_text(MANIFEST_FILENAME)
        except UnicodeDecodeError as exc:
            raise MalformedManifestError(
                f"{MANIFEST_FILENAME} in {self.source} is not valid UTF-8: {exc}",
                path=MANIFEST_FILENAME,
            ) from exc
        if text is None:
            raise ManifestMissingError(
                f"Bundle {self.source} has no {MANIFEST_FILENAME}", path=MANIFEST_FILENAME
            )
        return text

    def entries(self, prefix: str) -> Iterator[ArchiveEntry]:
        """Lazily yield the entries under ``prefix``.

        Each call walks the archive's central directory again, so the
        sequence can be restarted by calling ``entries`` once more.
        """
        for info in self._archive.infolist():
            name = _normalize_name(info.filename)
            if not name.startswith(prefix) or name == prefix:
                continue
            yield ArchiveEntry(
                relative_path=name[len(prefix):],
                is_directory=name.endswith("/"),
                info=info,
                _archive=self._archive,
            )

    def close(self) -> None:
        self._archive.close()


@contextlib.contextmanager
def open_bundle(ref: str | Path | BinaryIO) -> Iterator[Bundle]:
    """Open a bundle by path or binary stream; always closes it on exit."""
    source = str(ref) if isinstance(ref, (str, Path)) else getattr(ref, "name", "<stream>")
    try:
        archive = zipfile.ZipFile(ref, "r")
    except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError, ValueError) as exc:
        raise CorruptArchiveError(f"Cannot open bundle {source}: {exc}", path=str(source)) from exc
    bundle = Bundle(archive, str(source))
    log.debug("archive.opened", source=bundle.source, entries=len(archive.infolist()))
    try:
        yield bundle
    finally:
        bundle.close()
        log.debug("archive.closed", source=bundle.source)


class ArchiveLocator(Protocol):
    def resolve(self, object_key: str) -> Path: ...


class DirectoryArchiveLocator:
    """Resolve object keys to files stored flat under one directory."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def resolve(self, object_key: str) -> Path:
        key = str(object_key)
        # Keys are opaque identifiers, never paths
        if not key or "/" in key or "\\" in key or key in (".", ".."):
            raise CorruptArchiveError(f"Invalid archive object key {key!r}", path=key)
        return self.root / key
