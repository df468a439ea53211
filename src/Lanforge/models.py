# models.py

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy import Enum as SAEnum
from sqlalchemy.ext.orderinglist import ordering_list
from sqlalchemy.orm import Mapped, mapped_column, relationship

from Lanforge.db import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ServerAutostartMethod(str, enum.Enum):
    on_application_start = "on_application_start"
    on_player_activity = "on_player_activity"


class ServerConsoleType(str, enum.Enum):
    log_file = "log_file"
    rcon = "rcon"


class ScriptType(str, enum.Enum):
    install = "install"
    uninstall = "uninstall"
    name_change = "name_change"
    key_change = "key_change"
    save_upload = "save_upload"
    save_download = "save_download"
    detect_install = "detect_install"
    before_start = "before_start"
    after_stop = "after_stop"


class ProcessTerminationMethod(str, enum.Enum):
    close = "close"
    kill = "kill"
    sigint = "sigint"
    sigkill = "sigkill"
    sigterm = "sigterm"
    sighup = "sighup"


class Game(Base):
    __tablename__ = "games"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    title: Mapped[str] = mapped_column(String(255))
    created_on: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class Server(Base):
    __tablename__ = "servers"
    # Caller-assigned; imports reuse the exporting host's identity
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    autostart: Mapped[bool] = mapped_column(Boolean, default=False)
    autostart_method: Mapped[ServerAutostartMethod] = mapped_column(
        SAEnum(ServerAutostartMethod, name="server_autostart_method"),
        default=ServerAutostartMethod.on_application_start,
    )
    autostart_delay: Mapped[int] = mapped_column(Integer, default=0)
    working_directory: Mapped[str] = mapped_column(String(1024), default="")
    process_termination_method: Mapped[ProcessTerminationMethod] = mapped_column(
        SAEnum(ProcessTerminationMethod, name="process_termination_method"),
        default=ProcessTerminationMethod.close,
    )
    on_start_script_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    on_stop_script_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    # Weak reference: only set when the game is known locally
    game_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("games.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_on: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_on: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    consoles: Mapped[list[ServerConsole]] = relationship(
        back_populates="server",
        cascade="all, delete-orphan",
        order_by="ServerConsole.position",
        collection_class=ordering_list("position"),
    )
    http_paths: Mapped[list[ServerHttpPath]] = relationship(
        back_populates="server",
        cascade="all, delete-orphan",
        order_by="ServerHttpPath.position",
        collection_class=ordering_list("position"),
    )
    scripts: Mapped[list[Script]] = relationship(
        back_populates="server",
        cascade="all, delete-orphan",
        order_by="Script.position",
        collection_class=ordering_list("position"),
    )
    actions: Mapped[list[Action]] = relationship(
        back_populates="server",
        cascade="all, delete-orphan",
        order_by="Action.position",
        collection_class=ordering_list("position"),
    )


class ServerConsole(Base):
    __tablename__ = "server_consoles"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    server_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("servers.id", ondelete="CASCADE"), index=True
    )
    position: Mapped[int] = mapped_column(Integer, default=0)
    name: Mapped[str] = mapped_column(String(255), default="")
    type: Mapped[ServerConsoleType] = mapped_column(
        SAEnum(ServerConsoleType, name="server_console_type"), default=ServerConsoleType.log_file
    )
    path: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    host: Mapped[str | None] = mapped_column(String(255), nullable=True)
    port: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Local credential; manifests normally omit it
    password: Mapped[str | None] = mapped_column(String(255), nullable=True)

    server: Mapped[Server] = relationship(back_populates="consoles")


class ServerHttpPath(Base):
    __tablename__ = "server_http_paths"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    server_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("servers.id", ondelete="CASCADE"), index=True
    )
    position: Mapped[int] = mapped_column(Integer, default=0)
    path: Mapped[str] = mapped_column(String(1024), default="")
    local_path: Mapped[str] = mapped_column(String(1024), default="")

    server: Mapped[Server] = relationship(back_populates="http_paths")


class Script(Base):
    __tablename__ = "scripts"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    server_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("servers.id", ondelete="CASCADE"), index=True
    )
    position: Mapped[int] = mapped_column(Integer, default=0)
    name: Mapped[str] = mapped_column(String(255), default="")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[ScriptType] = mapped_column(
        SAEnum(ScriptType, name="script_type"), default=ScriptType.install
    )
    requires_admin: Mapped[bool] = mapped_column(Boolean, default=False)
    contents: Mapped[str] = mapped_column(Text, default="")
    created_on: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    server: Mapped[Server] = relationship(back_populates="scripts")


class Action(Base):
    __tablename__ = "actions"
    # Surrogate key; actions are rebuilt from the manifest on every import
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    server_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("servers.id", ondelete="CASCADE"), index=True
    )
    position: Mapped[int] = mapped_column(Integer, default=0)
    name: Mapped[str] = mapped_column(String(255), default="")
    arguments: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    path: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    working_directory: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    primary_action: Mapped[bool] = mapped_column(Boolean, default=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)

    server: Mapped[Server] = relationship(back_populates="actions")
