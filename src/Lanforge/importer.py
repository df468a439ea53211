"""Server bundle import orchestration.

One call to ``ServerImporter.import_server`` is one unit of work:

1. resolve the object key to a bundle and open it
2. decode ``Manifest.yml``
3. take the per-server lock (imports of one server ID never overlap)
4. reconcile the server graph in memory
5. extract ``Files/`` into the server's working directory
6. commit through the persistence gateway

A failure in steps 1-5 leaves persisted state untouched because the
gateway session rolls back. Steps 5 and 6 are not atomic together: a crash
between them can leave extracted files without an updated record. Both
steps are idempotent, so re-running the same import converges.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from pathlib import Path

import structlog
from structlog.contextvars import bound_contextvars

from Lanforge import models
from Lanforge.archive import FILES_PREFIX, ArchiveLocator, DirectoryArchiveLocator, open_bundle
from Lanforge.config import Settings
from Lanforge.errors import ImporterError
from Lanforge.manifest import decode_manifest
from Lanforge.materializer import materialize
from Lanforge.metrics import inc_counter, timed
from Lanforge.reconciler import PersistenceGateway, reconcile
from Lanforge.repos import gateway_scope

log = structlog.get_logger()

GatewayScope = Callable[[], AbstractAsyncContextManager[PersistenceGateway]]

_locks: dict[uuid.UUID, asyncio.Lock] = {}
# Tasks holding or waiting on each lock; the lock is dropped when this reaches 0
_lock_users: dict[uuid.UUID, int] = {}


@asynccontextmanager
async def server_lock(server_id: uuid.UUID) -> AsyncIterator[None]:
    """Serialize work on ``server_id`` within this process."""
    lock = _locks.setdefault(server_id, asyncio.Lock())
    _lock_users[server_id] = _lock_users.get(server_id, 0) + 1
    try:
        async with lock:
            yield
    finally:
        _lock_users[server_id] -= 1
        if not _lock_users[server_id]:
            del _lock_users[server_id]
            del _locks[server_id]


class ServerImporter:
    """Import server bundles into the local library.

    Collaborators are passed in explicitly: ``storage_root`` is the base of
    every derived working directory, ``locator`` turns object keys into
    bundle paths and ``gateway_scope`` opens a persistence unit of work.
    """

    def __init__(
        self,
        *,
        storage_root: Path,
        locator: ArchiveLocator,
        gateway_scope: GatewayScope = gateway_scope,
    ) -> None:
        self.storage_root = Path(storage_root)
        self.locator = locator
        self.gateway_scope = gateway_scope

    async def import_server(self, object_key: str) -> models.Server:
        """Import the bundle stored under ``object_key``.

        Returns:
            The committed server, including its resolved working directory.

        Raises:
            ImporterError: Any typed import failure; see ``Lanforge.errors``.
        """
        with bound_contextvars(object_key=str(object_key)):
            log.info("importer.server.start")
            try:
                with timed("importer.server.duration_ms"):
                    server = await self._run(object_key)
            except ImporterError as exc:
                inc_counter("importer.server.failed")
                inc_counter(f"importer.server.failed.{exc.kind}")
                log.warning(
                    "importer.server.failed",
                    kind=exc.kind,
                    error=str(exc),
                    server_id=str(exc.server_id) if exc.server_id else None,
                    path=exc.path,
                )
                raise
            inc_counter("importer.server.imported")
            log.info(
                "importer.server.complete",
                server_id=str(server.id),
                working_directory=server.working_directory,
            )
            return server

    async def _run(self, object_key: str) -> models.Server:
        bundle_path = self.locator.resolve(object_key)
        with open_bundle(bundle_path) as bundle:
            manifest = decode_manifest(bundle.read_manifest_text())

            async with server_lock(manifest.id):
                with bound_contextvars(server_id=str(manifest.id)):
                    async with self.gateway_scope() as gateway:
                        result = await reconcile(manifest, bundle, gateway, self.storage_root)
                        server = result.server
                        try:
                            files_written = await asyncio.to_thread(
                                materialize, bundle, FILES_PREFIX, Path(server.working_directory)
                            )
                        except ImporterError as exc:
                            exc.server_id = exc.server_id or server.id
                            raise
                        server = await gateway.commit(server)

        inc_counter("importer.server.created" if result.created else "importer.server.updated")
        log.info(
            "importer.server.committed",
            created=result.created,
            files_written=files_written,
            changes=result.changes,
        )
        return server


def build_importer(settings: Settings) -> ServerImporter:
    """Wire a ``ServerImporter`` from application settings."""
    return ServerImporter(
        storage_root=Path(settings.servers_storage_path),
        locator=DirectoryArchiveLocator(Path(settings.archives_path)),
    )
