"""Server manifest decoding.

The manifest is the YAML desired-state document exported alongside a
server bundle. Keys are PascalCase on the wire and enumerations are
written by member name, e.g.::

    Id: 6f1c...
    Name: Quake Server
    AutostartMethod: OnApplicationStart
    ServerConsoles:
      - Id: 0b7e...
        Type: RCON
        Port: 27500

``decode_manifest`` is pure: text in, immutable ``ServerManifest`` out.
Wire enumerations are mapped onto the persisted ones in ``models`` through
explicit tables that are checked for completeness at import time.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_pascal

from Lanforge import models
from Lanforge.errors import MalformedManifestError


class AutostartMethod(str, enum.Enum):
    OnApplicationStart = "OnApplicationStart"
    OnPlayerActivity = "OnPlayerActivity"


class ConsoleType(str, enum.Enum):
    LogFile = "LogFile"
    RCON = "RCON"


class ScriptKind(str, enum.Enum):
    Install = "Install"
    Uninstall = "Uninstall"
    NameChange = "NameChange"
    KeyChange = "KeyChange"
    SaveUpload = "SaveUpload"
    SaveDownload = "SaveDownload"
    DetectInstall = "DetectInstall"
    BeforeStart = "BeforeStart"
    AfterStop = "AfterStop"


class TerminationMethod(str, enum.Enum):
    Close = "Close"
    Kill = "Kill"
    SIGINT = "SIGINT"
    SIGKILL = "SIGKILL"
    SIGTERM = "SIGTERM"
    SIGHUP = "SIGHUP"


_AUTOSTART_METHODS = {
    AutostartMethod.OnApplicationStart: models.ServerAutostartMethod.on_application_start,
    AutostartMethod.OnPlayerActivity: models.ServerAutostartMethod.on_player_activity,
}

_CONSOLE_TYPES = {
    ConsoleType.LogFile: models.ServerConsoleType.log_file,
    ConsoleType.RCON: models.ServerConsoleType.rcon,
}

_SCRIPT_TYPES = {
    ScriptKind.Install: models.ScriptType.install,
    ScriptKind.Uninstall: models.ScriptType.uninstall,
    ScriptKind.NameChange: models.ScriptType.name_change,
    ScriptKind.KeyChange: models.ScriptType.key_change,
    ScriptKind.SaveUpload: models.ScriptType.save_upload,
    ScriptKind.SaveDownload: models.ScriptType.save_download,
    ScriptKind.DetectInstall: models.ScriptType.detect_install,
    ScriptKind.BeforeStart: models.ScriptType.before_start,
    ScriptKind.AfterStop: models.ScriptType.after_stop,
}

_TERMINATION_METHODS = {
    TerminationMethod.Close: models.ProcessTerminationMethod.close,
    TerminationMethod.Kill: models.ProcessTerminationMethod.kill,
    TerminationMethod.SIGINT: models.ProcessTerminationMethod.sigint,
    TerminationMethod.SIGKILL: models.ProcessTerminationMethod.sigkill,
    TerminationMethod.SIGTERM: models.ProcessTerminationMethod.sigterm,
    TerminationMethod.SIGHUP: models.ProcessTerminationMethod.sighup,
}


def _check_exhaustive(table: dict, wire: type[enum.Enum], persisted: type[enum.Enum]) -> None:
    missing = set(wire) - set(table)
    unmapped = set(persisted) - set(table.values())
    if missing or unmapped:
        raise RuntimeError(
            f"{wire.__name__} -> {persisted.__name__} mapping incomplete: "
            f"missing={sorted(m.name for m in missing)} unmapped={sorted(m.name for m in unmapped)}"
        )


_check_exhaustive(_AUTOSTART_METHODS, AutostartMethod, models.ServerAutostartMethod)
_check_exhaustive(_CONSOLE_TYPES, ConsoleType, models.ServerConsoleType)
_check_exhaustive(_SCRIPT_TYPES, ScriptKind, models.ScriptType)
_check_exhaustive(_TERMINATION_METHODS, TerminationMethod, models.ProcessTerminationMethod)


def to_autostart_method(value: AutostartMethod) -> models.ServerAutostartMethod:
    return _AUTOSTART_METHODS[value]


def to_console_type(value: ConsoleType) -> models.ServerConsoleType:
    return _CONSOLE_TYPES[value]


def to_script_type(value: ScriptKind) -> models.ScriptType:
    return _SCRIPT_TYPES[value]


def to_termination_method(value: TerminationMethod) -> models.ProcessTerminationMethod:
    return _TERMINATION_METHODS[value]


class _ManifestModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_pascal,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    @model_validator(mode="before")
    @classmethod
    def drop_nulls(cls, data: Any) -> Any:
        # Empty YAML scalars load as None; treat them as absent so defaults apply
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


class ManifestConsole(_ManifestModel):
    id: uuid.UUID
    name: str = ""
    type: ConsoleType = ConsoleType.LogFile
    path: str | None = None
    host: str | None = None
    port: int | None = None
    password: str | None = None


class ManifestHttpPath(_ManifestModel):
    id: uuid.UUID
    path: str = ""
    local_path: str = ""


class ManifestScript(_ManifestModel):
    id: uuid.UUID
    name: str = ""
    description: str | None = None
    type: ScriptKind = ScriptKind.Install
    requires_admin: bool = False
    created_on: datetime | None = None


class ManifestAction(_ManifestModel):
    id: uuid.UUID | None = None
    name: str = ""
    arguments: str | None = None
    path: str | None = None
    working_directory: str | None = None
    is_primary_action: bool = False
    sort_order: int = 0


class GameReference(_ManifestModel):
    id: uuid.UUID | None = None


class ServerManifest(_ManifestModel):
    id: uuid.UUID
    name: str = ""
    autostart: bool = False
    autostart_method: AutostartMethod = AutostartMethod.OnApplicationStart
    autostart_delay: int = 0
    working_directory: str | None = None
    process_termination_method: TerminationMethod = TerminationMethod.Close
    on_start_script_path: str | None = None
    on_stop_script_path: str | None = None
    game: GameReference | None = None
    server_consoles: tuple[ManifestConsole, ...] = ()
    http_paths: tuple[ManifestHttpPath, ...] = ()
    scripts: tuple[ManifestScript, ...] = ()
    actions: tuple[ManifestAction, ...] = ()

    @field_validator("id")
    @classmethod
    def reject_nil_id(cls, v: uuid.UUID) -> uuid.UUID:
        if v.int == 0:
            raise ValueError("server Id must not be the nil UUID")
        return v

    @model_validator(mode="after")
    def unique_item_ids(self) -> ServerManifest:
        for label, items in (
            ("ServerConsoles", self.server_consoles),
            ("HttpPaths", self.http_paths),
            ("Scripts", self.scripts),
        ):
            seen: set[uuid.UUID] = set()
            for item in items:
                if item.id in seen:
                    raise ValueError(f"duplicate Id {item.id} in {label}")
                seen.add(item.id)
        return self

    @property
    def game_id(self) -> uuid.UUID | None:
        """Referenced game ID, or None when absent or the nil UUID."""
        if self.game is None or self.game.id is None or self.game.id.int == 0:
            return None
        return self.game.id


def decode_manifest(text: str) -> ServerManifest:
    """Decode manifest YAML into a ``ServerManifest``.

    Raises:
        MalformedManifestError: If the text is not YAML, is not a mapping,
            lacks a server Id, or fails field validation.
    """
    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise MalformedManifestError(f"Manifest is not valid YAML: {exc}") from exc
    if not isinstance(raw, dict):
        raise MalformedManifestError("Manifest root must be a mapping")
    try:
        return ServerManifest.model_validate(raw)
    except ValidationError as exc:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in exc.errors()
        )
        raise MalformedManifestError(f"Manifest validation failed: {errors}") from exc
