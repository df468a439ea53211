import asyncio
import contextlib
import uuid
from pathlib import Path

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import server_manifest
from Lanforge import importer as importer_module
from Lanforge import models, repos
from Lanforge.archive import DirectoryArchiveLocator
from Lanforge.config import Settings
from Lanforge.db import session_scope
from Lanforge.errors import (
    CorruptArchiveError,
    MalformedManifestError,
    ManifestMissingError,
    PathEscapeError,
    PersistenceError,
    ScriptContentMissingError,
)
from Lanforge.importer import ServerImporter, build_importer
from Lanforge.metrics import get_counter, get_counters

R1 = uuid.UUID("6f1c2e8a-2b1d-4c0e-9a53-1f0b8e7d6c5a")
C1 = uuid.UUID("0b7e6a2c-1111-4a2b-8c3d-000000000001")
C2 = uuid.UUID("0b7e6a2c-1111-4a2b-8c3d-000000000002")
S1 = uuid.UUID("0b7e6a2c-3333-4a2b-8c3d-000000000001")
GAME = uuid.UUID("0b7e6a2c-4444-4a2b-8c3d-000000000001")


def _importer(storage_root: Path, archives_root: Path, **kw) -> ServerImporter:
    return ServerImporter(
        storage_root=storage_root, locator=DirectoryArchiveLocator(archives_root), **kw
    )


async def _load(server_id: uuid.UUID) -> models.Server | None:
    async with session_scope() as s:
        return await repos.get_server(s, server_id)


def _quake(**extra) -> dict:
    extra.setdefault(
        "ServerConsoles", [{"Id": str(C1), "Name": "RCON", "Type": "RCON", "Port": 27500}]
    )
    return server_manifest(R1, **extra)


def _tree(root: Path) -> dict[str, bytes | None]:
    return {
        p.relative_to(root).as_posix(): (p.read_bytes() if p.is_file() else None)
        for p in sorted(root.rglob("*"))
    }


def _snapshot(server: models.Server) -> dict:
    return {
        "name": server.name,
        "working_directory": server.working_directory,
        "game_id": server.game_id,
        "consoles": [(c.id, c.position, c.name, c.type, c.port, c.password) for c in server.consoles],
        "http_paths": [(h.id, h.position, h.path, h.local_path) for h in server.http_paths],
        "scripts": [(s.id, s.position, s.name, s.type, s.contents) for s in server.scripts],
        "actions": [
            (a.position, a.name, a.path, a.arguments, a.primary_action, a.sort_order)
            for a in server.actions
        ],
    }


@pytest.mark.asyncio
async def test_import_new_server(make_bundle, storage_root, archives_root):
    bundle = make_bundle(_quake(), files={"data/": None, "data/readme.txt": "hello"})

    server = await _importer(storage_root, archives_root).import_server(bundle.name)

    assert server.id == R1
    assert server.working_directory == str(storage_root / "Quake Server")
    stored = await _load(R1)
    assert stored is not None
    assert stored.name == "Quake Server"
    assert [(c.id, c.port) for c in stored.consoles] == [(C1, 27500)]
    assert (storage_root / "Quake Server" / "data" / "readme.txt").read_text() == "hello"


@pytest.mark.asyncio
async def test_reimport_removes_extra_console(make_bundle, storage_root, archives_root):
    async with session_scope() as s:
        server = models.Server(id=R1, name="Quake Server")
        server.consoles = [
            models.ServerConsole(id=C1, name="RCON", type=models.ServerConsoleType.rcon, port=27500),
            models.ServerConsole(id=C2, name="Log", path="qconsole.log"),
        ]
        s.add(server)

    bundle = make_bundle(_quake())
    await _importer(storage_root, archives_root).import_server(bundle.name)

    stored = await _load(R1)
    assert [(c.id, c.port, c.position) for c in stored.consoles] == [(C1, 27500, 0)]
    async with session_scope() as s:
        assert await s.get(models.ServerConsole, C2) is None


@pytest.mark.asyncio
async def test_path_escape_commits_nothing_and_writes_nothing(
    make_bundle, storage_root, archives_root
):
    bundle = make_bundle(
        _quake(),
        files={"data/readme.txt": "hello", "data/../../escape.txt": "nope"},
    )

    with pytest.raises(PathEscapeError) as excinfo:
        await _importer(storage_root, archives_root).import_server(bundle.name)

    assert excinfo.value.server_id == R1
    assert await _load(R1) is None
    assert not (storage_root / "Quake Server" / "data" / "readme.txt").exists()
    assert not (storage_root / "escape.txt").exists()
    assert get_counter("importer.server.failed") == 1
    assert get_counter("importer.server.failed.path_escape") == 1


@pytest.mark.asyncio
async def test_reimport_is_idempotent(make_bundle, storage_root, archives_root):
    manifest = _quake(
        WorkingDirectory="C:\\Servers\\quake",
        HttpPaths=[{"Id": str(uuid.uuid4()), "Path": "/maps", "LocalPath": "C:\\Servers\\quake\\maps"}],
        Scripts=[{"Id": str(S1), "Name": "Start", "Type": "BeforeStart"}],
        Actions=[{"Name": "Play", "Path": "qwsv.exe", "IsPrimaryAction": True}],
    )
    bundle = make_bundle(
        manifest,
        scripts={str(S1): "Start-Process qwsv.exe"},
        files={"maps/": None, "maps/e1m1.bsp": b"\x00bsp", "server.cfg": "hostname lan"},
    )
    importer = _importer(storage_root, archives_root)

    await importer.import_server(bundle.name)
    first = _snapshot(await _load(R1))
    first_tree = _tree(storage_root)

    await importer.import_server(bundle.name)
    second = _snapshot(await _load(R1))

    assert second == first
    assert _tree(storage_root) == first_tree
    async with session_scope() as s:
        count = await s.execute(select(func.count()).select_from(models.Action))
        assert count.scalar_one() == 1
    assert get_counter("importer.server.created") == 1
    assert get_counter("importer.server.updated") == 1
    assert get_counter("importer.server.imported") == 2
    assert get_counters()["histo.importer.server.duration_ms.count"] == 2


@pytest.mark.asyncio
async def test_game_reference_is_soft(make_bundle, storage_root, archives_root):
    importer = _importer(storage_root, archives_root)
    bundle = make_bundle(_quake(Game={"Id": str(GAME)}))

    server = await importer.import_server(bundle.name)
    assert server.game_id is None

    async with session_scope() as s:
        await repos.create_game(s, game_id=GAME, title="Quake")

    server = await importer.import_server(bundle.name)
    assert server.game_id == GAME
    assert (await _load(R1)).game_id == GAME


@pytest.mark.asyncio
async def test_missing_script_content_commits_nothing(make_bundle, storage_root, archives_root):
    bundle = make_bundle(
        _quake(Scripts=[{"Id": str(S1), "Name": "Start"}]),
        files={"server.cfg": "x"},
    )
    with pytest.raises(ScriptContentMissingError):
        await _importer(storage_root, archives_root).import_server(bundle.name)

    assert await _load(R1) is None
    assert not storage_root.exists()


@pytest.mark.asyncio
async def test_commit_failure_surfaces_persistence_error(
    make_bundle, storage_root, archives_root, monkeypatch
):
    async def failing_commit(self):
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    @contextlib.asynccontextmanager
    async def failing_scope():
        async with session_scope() as s:
            monkeypatch.setattr(AsyncSession, "commit", failing_commit)
            yield repos.SqlPersistenceGateway(s)

    bundle = make_bundle(_quake())
    importer = _importer(storage_root, archives_root, gateway_scope=failing_scope)
    with pytest.raises(PersistenceError) as excinfo:
        await importer.import_server(bundle.name)
    monkeypatch.undo()

    assert excinfo.value.server_id == R1
    assert isinstance(excinfo.value.__cause__, OperationalError)
    assert await _load(R1) is None
    assert get_counter("importer.server.failed.persistence") == 1


@pytest.mark.asyncio
async def test_unreadable_bundle(archives_root, storage_root):
    (archives_root / "junk").write_bytes(b"not a zip at all")
    with pytest.raises(CorruptArchiveError):
        await _importer(storage_root, archives_root).import_server("junk")
    with pytest.raises(CorruptArchiveError):
        await _importer(storage_root, archives_root).import_server("no-such-key")
    assert get_counter("importer.server.failed.corrupt_archive") == 2


@pytest.mark.asyncio
async def test_manifest_problems(make_bundle, storage_root, archives_root):
    importer = _importer(storage_root, archives_root)

    missing = make_bundle(None, files={"server.cfg": "x"})
    with pytest.raises(ManifestMissingError):
        await importer.import_server(missing.name)

    malformed = make_bundle("Name: no id\n")
    with pytest.raises(MalformedManifestError):
        await importer.import_server(malformed.name)

    assert not storage_root.exists()


@pytest.mark.asyncio
async def test_concurrent_imports_of_one_server_are_serialized(
    make_bundle, storage_root, archives_root
):
    server_id = uuid.uuid4()
    active = 0
    peak = 0

    @contextlib.asynccontextmanager
    async def tracking_scope():
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        try:
            async with repos.gateway_scope() as gateway:
                await asyncio.sleep(0.01)
                yield gateway
        finally:
            active -= 1

    importer = _importer(storage_root, archives_root, gateway_scope=tracking_scope)
    keys = [
        make_bundle(server_manifest(server_id, name=f"Server {i}")).name for i in range(5)
    ]
    results = await asyncio.gather(*(importer.import_server(k) for k in keys))

    assert peak == 1
    assert {r.id for r in results} == {server_id}
    assert get_counter("importer.server.created") == 1
    assert get_counter("importer.server.updated") == 4
    stored = await _load(server_id)
    assert stored.name in {f"Server {i}" for i in range(5)}
    assert server_id not in importer_module._locks


@pytest.mark.asyncio
async def test_build_importer_uses_configured_paths(make_bundle, storage_root, archives_root):
    settings = Settings(servers_storage_path=storage_root, archives_path=archives_root)
    importer = build_importer(settings)
    bundle = make_bundle(_quake())

    server = await importer.import_server(bundle.name)
    assert server.working_directory == str(storage_root / "Quake Server")
    assert (storage_root / "Quake Server").is_dir()


@pytest.mark.asyncio
async def test_non_utf8_script_imports_with_replacement(make_bundle, storage_root, archives_root):
    bundle = make_bundle(
        _quake(Scripts=[{"Id": str(S1), "Name": "Greet"}]),
        scripts={str(S1): b"Write-Host 'Caf\xe9'"},
    )
    await _importer(storage_root, archives_root).import_server(bundle.name)

    stored = await _load(R1)
    assert stored.scripts[0].contents == "Write-Host 'Caf\ufffd'"


@pytest.mark.asyncio
async def test_non_utf8_manifest_fails_typed(make_bundle, storage_root, archives_root):
    bundle = make_bundle(f"Id: {R1}\nName: Caf\xe9\n".encode("latin-1"))
    with pytest.raises(MalformedManifestError) as excinfo:
        await _importer(storage_root, archives_root).import_server(bundle.name)

    assert excinfo.value.path == "Manifest.yml"
    assert get_counter("importer.server.failed.malformed_manifest") == 1
    assert await _load(R1) is None
