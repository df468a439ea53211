"""Reconcile a decoded server manifest into the persisted entity graph.

Every nested collection is handled in two passes:

1. ``plan_collection`` reads current and desired items and produces a
   ``ReconciliationPlan`` of updates, additions and removals, matched on
   stable ID only.
2. ``apply_plan`` builds a fresh list (kept items in their existing order,
   then additions in manifest order) which replaces the relationship
   collection. Items left out are deleted by the ORM's delete-orphan
   cascade.

Actions are the exception: they are rebuilt from the manifest on every
import with no per-item diff.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Generic, Protocol, TypeVar

import structlog

from Lanforge import models
from Lanforge.archive import SCRIPTS_PREFIX, Bundle
from Lanforge.errors import ScriptContentMissingError
from Lanforge.manifest import (
    ManifestAction,
    ManifestConsole,
    ManifestHttpPath,
    ManifestScript,
    ServerManifest,
    to_autostart_method,
    to_console_type,
    to_script_type,
    to_termination_method,
)
from Lanforge.materializer import sanitize_filename

log = structlog.get_logger()

C = TypeVar("C")
D = TypeVar("D")


class PersistenceGateway(Protocol):
    async def load_server(self, server_id: uuid.UUID) -> models.Server | None: ...

    async def game_exists(self, game_id: uuid.UUID) -> bool: ...

    async def commit(self, server: models.Server) -> models.Server: ...


@dataclass(frozen=True)
class ReconciliationPlan(Generic[C, D]):
    updates: tuple[tuple[C, D], ...] = ()
    additions: tuple[D, ...] = ()
    removals: tuple[C, ...] = ()

    @property
    def counts(self) -> dict[str, int]:
        return {
            "updated": len(self.updates),
            "added": len(self.additions),
            "removed": len(self.removals),
        }


def plan_collection(current: Sequence[C], desired: Sequence[D]) -> ReconciliationPlan[C, D]:
    """Match ``current`` and ``desired`` items by ``id`` without mutating either."""
    desired_by_id = {d.id: d for d in desired}  # type: ignore[attr-defined]
    current_ids = {c.id for c in current}  # type: ignore[attr-defined]

    updates: list[tuple[C, D]] = []
    removals: list[C] = []
    for item in current:
        match = desired_by_id.get(item.id)  # type: ignore[attr-defined]
        if match is not None:
            updates.append((item, match))
        else:
            removals.append(item)

    additions = tuple(d for d in desired if d.id not in current_ids)  # type: ignore[attr-defined]
    return ReconciliationPlan(updates=tuple(updates), additions=additions, removals=tuple(removals))


def apply_plan(
    plan: ReconciliationPlan[C, D],
    *,
    update: Callable[[C, D], None],
    create: Callable[[D], C],
) -> list[C]:
    """Apply ``plan`` and return the resulting collection as a new list."""
    kept: list[C] = []
    for current, desired in plan.updates:
        update(current, desired)
        kept.append(current)
    return kept + [create(d) for d in plan.additions]


@dataclass
class ReconcileResult:
    server: models.Server
    created: bool
    changes: dict[str, dict[str, int]] = field(default_factory=dict)


def working_directory_for(storage_root: Path, server: models.Server) -> Path:
    name = sanitize_filename(server.name) or str(server.id)
    return Path(storage_root) / name


# --- Consoles ---


def _update_console(console: models.ServerConsole, desired: ManifestConsole) -> None:
    console.name = desired.name
    console.type = to_console_type(desired.type)
    console.path = desired.path
    console.host = desired.host
    console.port = desired.port
    # The credential is local unless the manifest explicitly carries one
    if "password" in desired.model_fields_set:
        console.password = desired.password


def _create_console(desired: ManifestConsole) -> models.ServerConsole:
    console = models.ServerConsole(id=desired.id, password=None)
    _update_console(console, desired)
    return console


# --- HTTP paths ---


def rebase_local_path(local_path: str, exported_dir: str, working_directory: str) -> str:
    """Move ``local_path`` from ``exported_dir`` into ``working_directory``.

    Only paths equal to ``exported_dir`` or below it (next character is a
    separator) are rebased; the remainder is rejoined with local separators.
    Anything else is returned unchanged.
    """
    root = exported_dir.rstrip("\\/")
    if not root or not local_path.startswith(root):
        return local_path
    tail = local_path[len(root):]
    if tail and tail[0] not in "\\/":
        return local_path
    parts = [p for p in tail.replace("\\", "/").split("/") if p]
    return str(Path(working_directory, *parts))


def _http_path_updater(
    manifest: ServerManifest, server: models.Server
) -> tuple[
    Callable[[models.ServerHttpPath, ManifestHttpPath], None],
    Callable[[ManifestHttpPath], models.ServerHttpPath],
]:
    exported_dir = manifest.working_directory or ""

    def local_path(desired: ManifestHttpPath) -> str:
        return rebase_local_path(desired.local_path, exported_dir, server.working_directory)

    def update(http_path: models.ServerHttpPath, desired: ManifestHttpPath) -> None:
        http_path.path = desired.path
        http_path.local_path = local_path(desired)

    def create(desired: ManifestHttpPath) -> models.ServerHttpPath:
        http_path = models.ServerHttpPath(id=desired.id)
        update(http_path, desired)
        return http_path

    return update, create


# --- Scripts ---


def read_script_contents(
    bundle: Bundle, scripts: Sequence[ManifestScript], *, server_id: uuid.UUID
) -> dict[uuid.UUID, str]:
    """Read every declared script's text from ``Scripts/{id}``."""
    contents: dict[uuid.UUID, str] = {}
    for script in scripts:
        name = f"{SCRIPTS_PREFIX}{script.id}"
        # Exports from Windows hosts may carry codepage text; keep it readable
        text = bundle.read_text(name, errors="replace")
        if text is None:
            raise ScriptContentMissingError(
                f"Script {script.id} has no bundle entry {name}", server_id=server_id, path=name
            )
        contents[script.id] = text
    return contents


def _script_updater(
    contents: dict[uuid.UUID, str],
) -> tuple[
    Callable[[models.Script, ManifestScript], None],
    Callable[[ManifestScript], models.Script],
]:
    def update(script: models.Script, desired: ManifestScript) -> None:
        script.contents = contents[desired.id]
        script.name = desired.name
        script.description = desired.description
        script.requires_admin = desired.requires_admin
        script.type = to_script_type(desired.type)

    def create(desired: ManifestScript) -> models.Script:
        script = models.Script(id=desired.id)
        if desired.created_on is not None:
            script.created_on = desired.created_on
        update(script, desired)
        return script

    return update, create


# --- Actions ---


def build_action(desired: ManifestAction) -> models.Action:
    return models.Action(
        name=desired.name,
        arguments=desired.arguments,
        path=desired.path,
        working_directory=desired.working_directory,
        primary_action=desired.is_primary_action,
        sort_order=desired.sort_order,
    )


def _replace_collection(server: models.Server, attr: str, items: list) -> None:
    setattr(server, attr, items)
    # Kept rows retain stale positions until the whole list is renumbered
    getattr(server, attr).reorder()


def apply_root_attributes(
    server: models.Server, manifest: ServerManifest, storage_root: Path
) -> None:
    server.name = manifest.name
    server.autostart = manifest.autostart
    server.autostart_method = to_autostart_method(manifest.autostart_method)
    server.autostart_delay = manifest.autostart_delay
    server.process_termination_method = to_termination_method(manifest.process_termination_method)
    server.on_start_script_path = manifest.on_start_script_path
    server.on_stop_script_path = manifest.on_stop_script_path
    server.working_directory = str(working_directory_for(storage_root, server))


async def reconcile(
    manifest: ServerManifest,
    bundle: Bundle,
    gateway: PersistenceGateway,
    storage_root: Path,
) -> ReconcileResult:
    """Load-or-create the manifest's server and align it with the manifest.

    Nothing is committed here; the caller decides when the reconciled graph
    is persisted.

    Raises:
        ScriptContentMissingError: If a declared script has no bundle entry.
    """
    # Fails before the loaded graph is touched
    script_contents = read_script_contents(bundle, manifest.scripts, server_id=manifest.id)

    server = await gateway.load_server(manifest.id)
    created = server is None
    if server is None:
        server = models.Server(id=manifest.id)

    apply_root_attributes(server, manifest, storage_root)

    game_id = manifest.game_id
    if game_id is not None and await gateway.game_exists(game_id):
        server.game_id = game_id
    else:
        if game_id is not None:
            log.info("reconciler.game.unknown", server_id=str(server.id), game_id=str(game_id))
        server.game_id = None

    console_plan = plan_collection(list(server.consoles), manifest.server_consoles)
    http_plan = plan_collection(list(server.http_paths), manifest.http_paths)
    script_plan = plan_collection(list(server.scripts), manifest.scripts)

    _replace_collection(
        server,
        "consoles",
        apply_plan(console_plan, update=_update_console, create=_create_console),
    )

    update_http, create_http = _http_path_updater(manifest, server)
    _replace_collection(
        server, "http_paths", apply_plan(http_plan, update=update_http, create=create_http)
    )

    update_script, create_script = _script_updater(script_contents)
    _replace_collection(
        server, "scripts", apply_plan(script_plan, update=update_script, create=create_script)
    )

    previous_actions = len(server.actions)
    _replace_collection(server, "actions", [build_action(a) for a in manifest.actions])

    changes = {
        "consoles": console_plan.counts,
        "http_paths": http_plan.counts,
        "scripts": script_plan.counts,
        "actions": {"removed": previous_actions, "added": len(manifest.actions)},
    }
    log.info(
        "reconciler.server.reconciled",
        server_id=str(server.id),
        created=created,
        working_directory=server.working_directory,
        game_linked=server.game_id is not None,
        changes=changes,
    )
    return ReconcileResult(server=server, created=created, changes=changes)
