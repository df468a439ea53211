# tests/conftest.py

import io
import os
import uuid
import zipfile
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import Any

import pytest
import yaml

# Point the app engine at a process-local in-memory DB before any app module
# creates one. Each test gets a freshly created schema.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

from Lanforge import db  # noqa: E402
from Lanforge.metrics import reset_counters  # noqa: E402

BundleFactory = Callable[..., Path]


@pytest.fixture(autouse=True)
async def _fresh_database() -> AsyncIterator[None]:
    """Build a new in-memory engine and schema for every test.

    Disposing the StaticPool engine drops the in-memory database, so no rows
    leak between tests.
    """
    reset_counters()
    await db.dispose_engine()
    await db.create_schema()
    try:
        yield None
    finally:
        await db.dispose_engine()


def server_manifest(server_id: uuid.UUID, name: str = "Quake Server", **extra: Any) -> dict:
    """Return a manifest mapping in wire (PascalCase) form."""
    data: dict[str, Any] = {"Id": str(server_id), "Name": name}
    data.update(extra)
    return data


def write_bundle(
    target: Path | io.BytesIO,
    manifest: dict | str | bytes | None,
    *,
    scripts: dict[str, str | bytes] | None = None,
    files: dict[str, bytes | str | None] | None = None,
) -> None:
    """Write a bundle zip.

    ``files`` keys are paths below ``Files/``; a value of None writes a
    directory entry (the key should then end with "/").
    """
    with zipfile.ZipFile(target, "w", zipfile.ZIP_DEFLATED) as zf:
        if manifest is not None:
            text = manifest if isinstance(manifest, (str, bytes)) else yaml.safe_dump(manifest, sort_keys=False)
            zf.writestr("Manifest.yml", text)
        for script_id, contents in (scripts or {}).items():
            zf.writestr(f"Scripts/{script_id}", contents)
        for name, contents in (files or {}).items():
            if contents is None:
                zf.writestr(zipfile.ZipInfo(f"Files/{name}"), b"")
            else:
                zf.writestr(f"Files/{name}", contents)


@pytest.fixture
def archives_root(tmp_path: Path) -> Path:
    root = tmp_path / "uploads"
    root.mkdir()
    return root


@pytest.fixture
def storage_root(tmp_path: Path) -> Path:
    return tmp_path / "servers"


@pytest.fixture
def make_bundle(archives_root: Path) -> BundleFactory:
    """Write a bundle under ``archives_root`` and return its path."""

    def _make(manifest, *, key: str | None = None, scripts=None, files=None) -> Path:
        path = archives_root / (key or uuid.uuid4().hex)
        write_bundle(path, manifest, scripts=scripts, files=files)
        return path

    return _make
