"""Settings loader for Lanforge.

Values come from, highest priority first: explicit init kwargs, ``.env``,
the process environment, ``config.toml`` in the working directory, and
secret files. A minimal ``config.toml``::

    [servers]
    storage_path = "D:/LAN/Servers"

    [archives]
    path = "D:/LAN/Uploads"

    [logging]
    level = "INFO"
    console = true
    to_file = "WARNING"
"""

from pathlib import Path
from typing import Any

import tomllib
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

CONFIG_FILE = Path("config.toml")

# (table, key) in config.toml -> Settings field
_TOML_FIELDS: dict[tuple[str, str], str] = {
    ("app", "env"): "env",
    ("database", "url"): "database_url",
    ("servers", "storage_path"): "servers_storage_path",
    ("archives", "path"): "archives_path",
    ("logging", "enabled"): "logging_enabled",
    ("logging", "level"): "logging_level",
    ("logging", "file_path"): "logging_file_path",
    ("logging", "max_bytes"): "logging_max_bytes",
    ("logging", "backup_count"): "logging_backup_count",
}


def _handler_level(value: Any, overall: str) -> str:
    # Handlers accept a level name, or a bool meaning "overall level" / "off"
    if isinstance(value, bool):
        return overall if value else "NONE"
    if isinstance(value, str):
        return value
    return overall


def _toml_settings_source() -> dict[str, Any]:
    """Map ``config.toml`` onto Settings fields; absent keys keep their defaults."""
    if not CONFIG_FILE.exists():
        return {}
    with CONFIG_FILE.open("rb") as f:
        doc = tomllib.load(f)

    out: dict[str, Any] = {}
    for (table, key), field_name in _TOML_FIELDS.items():
        section = doc.get(table) or {}
        if section.get(key) is not None:
            out[field_name] = section[key]

    log_cfg = doc.get("logging") or {}
    overall = out.get("logging_level", "INFO")
    out["logging_console"] = _handler_level(log_cfg.get("console"), overall)
    out["logging_file"] = _handler_level(log_cfg.get("to_file"), overall)
    return out


class Settings(BaseSettings):
    env: str = Field(default="dev")
    database_url: str = Field(default="sqlite+aiosqlite:///./lanforge.sqlite3")

    # Base directory under which every server's working directory is derived
    servers_storage_path: Path = Path("Servers")
    # Directory holding uploaded bundles, addressed by object key
    archives_path: Path = Path("Uploads")

    logging_enabled: bool = True
    logging_level: str = "INFO"
    # Per-handler level names; NONE disables the handler
    logging_console: str = "INFO"
    logging_file: str = "INFO"
    logging_file_path: str = "logs/lanforge.jsonl"
    logging_max_bytes: int = 5_000_000
    logging_backup_count: int = 5

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        env_file=".env",
        extra="ignore",
    )

    @field_validator("logging_level", "logging_console", "logging_file")
    @classmethod
    def upper_level_name(cls, v: str) -> str:
        return v.upper()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            dotenv_settings,
            env_settings,
            _toml_settings_source,
            file_secret_settings,
        )


def load_settings() -> Settings:
    return Settings()
