"""create games, servers and server child tables

Revision ID: a0c1f2d3e4b5
Revises:
Create Date: 2026-10-18
"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "a0c1f2d3e4b5"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_autostart_method = sa.Enum(
    "on_application_start", "on_player_activity", name="server_autostart_method"
)
_termination_method = sa.Enum(
    "close", "kill", "sigint", "sigkill", "sigterm", "sighup", name="process_termination_method"
)
_console_type = sa.Enum("log_file", "rcon", name="server_console_type")
_script_type = sa.Enum(
    "install",
    "uninstall",
    "name_change",
    "key_change",
    "save_upload",
    "save_download",
    "detect_install",
    "before_start",
    "after_stop",
    name="script_type",
)


def upgrade() -> None:
    op.create_table(
        "games",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("created_on", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_table(
        "servers",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("autostart", sa.Boolean(), nullable=False),
        sa.Column("autostart_method", _autostart_method, nullable=False),
        sa.Column("autostart_delay", sa.Integer(), nullable=False),
        sa.Column("working_directory", sa.String(length=1024), nullable=False),
        sa.Column("process_termination_method", _termination_method, nullable=False),
        sa.Column("on_start_script_path", sa.String(length=1024), nullable=True),
        sa.Column("on_stop_script_path", sa.String(length=1024), nullable=True),
        sa.Column("game_id", sa.Uuid(), nullable=True),
        sa.Column("created_on", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_on", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["game_id"], ["games.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_servers_game_id", "servers", ["game_id"])

    op.create_table(
        "server_consoles",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("server_id", sa.Uuid(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("type", _console_type, nullable=False),
        sa.Column("path", sa.String(length=1024), nullable=True),
        sa.Column("host", sa.String(length=255), nullable=True),
        sa.Column("port", sa.Integer(), nullable=True),
        sa.Column("password", sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(["server_id"], ["servers.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_server_consoles_server_id", "server_consoles", ["server_id"])

    op.create_table(
        "server_http_paths",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("server_id", sa.Uuid(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("path", sa.String(length=1024), nullable=False),
        sa.Column("local_path", sa.String(length=1024), nullable=False),
        sa.ForeignKeyConstraint(["server_id"], ["servers.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_server_http_paths_server_id", "server_http_paths", ["server_id"])

    op.create_table(
        "scripts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("server_id", sa.Uuid(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", _script_type, nullable=False),
        sa.Column("requires_admin", sa.Boolean(), nullable=False),
        sa.Column("contents", sa.Text(), nullable=False),
        sa.Column("created_on", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["server_id"], ["servers.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_scripts_server_id", "scripts", ["server_id"])

    op.create_table(
        "actions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("server_id", sa.Uuid(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("arguments", sa.String(length=1024), nullable=True),
        sa.Column("path", sa.String(length=1024), nullable=True),
        sa.Column("working_directory", sa.String(length=1024), nullable=True),
        sa.Column("primary_action", sa.Boolean(), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["server_id"], ["servers.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_actions_server_id", "actions", ["server_id"])


def downgrade() -> None:
    op.drop_index("ix_actions_server_id", table_name="actions")
    op.drop_table("actions")
    op.drop_index("ix_scripts_server_id", table_name="scripts")
    op.drop_table("scripts")
    op.drop_index("ix_server_http_paths_server_id", table_name="server_http_paths")
    op.drop_table("server_http_paths")
    op.drop_index("ix_server_consoles_server_id", table_name="server_consoles")
    op.drop_table("server_consoles")
    op.drop_index("ix_servers_game_id", table_name="servers")
    op.drop_table("servers")
    op.drop_table("games")
    bind = op.get_bind()
    for enum_type in (_script_type, _console_type, _termination_method, _autostart_method):
        enum_type.drop(bind, checkfirst=True)
