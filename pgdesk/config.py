"""User settings read from ``~/.config/pgdesk/config.toml``."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import tomllib

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

CONFIG_DIR = Path.home() / ".config" / "pgdesk"
CONFIG_FILE = CONFIG_DIR / "config.toml"

DEFAULT_QUERY_TIMEOUT = 30.0
DEFAULT_FALLBACK_DATABASE = "postgres"

LOG = logging.getLogger(__name__)


class LayoutState(BaseModel):
    """Sidebar sizing remembered between runs."""

    model_config = ConfigDict(extra="ignore")

    sidebar_width: int | None = Field(default=None, gt=0)


class AppConfig(BaseModel):
    """Settings for the UI, the query deadline and profile storage."""

    model_config = ConfigDict(extra="ignore")

    theme: str = "dark"
    query_timeout: float = Field(default=DEFAULT_QUERY_TIMEOUT, gt=0)
    fallback_database: str = Field(default=DEFAULT_FALLBACK_DATABASE, min_length=1)
    data_dir: Path = Field(default_factory=lambda: CONFIG_DIR)
    result_limit: int = Field(default=200, gt=0)
    layout: LayoutState = Field(default_factory=LayoutState)

    @field_validator("data_dir", mode="after")
    @classmethod
    def _expand_data_dir(cls, value: Path) -> Path:
        return value.expanduser()

    def with_theme(self, theme: str) -> AppConfig:
        return self.model_copy(update={"theme": theme})

    def with_layout(self, **updates: object) -> AppConfig:
        """Copy with ``layout`` fields replaced."""

        return self.model_copy(update={"layout": self.layout.model_copy(update=updates)})


def load_config() -> AppConfig:
    """Read the config file; any problem yields the defaults."""

    try:
        with CONFIG_FILE.open("rb") as handle:
            document = tomllib.load(handle)
    except FileNotFoundError:
        return AppConfig()
    except (tomllib.TOMLDecodeError, OSError) as exc:
        LOG.warning("Ignoring unreadable config file %s: %s", CONFIG_FILE, exc)
        return AppConfig()
    try:
        return AppConfig.model_validate(document)
    except ValidationError as exc:
        LOG.warning("Ignoring invalid config values in %s: %s", CONFIG_FILE, exc)
        return AppConfig()


def save_config(config: AppConfig) -> None:
    """Write ``config`` back as TOML, creating the directory if needed."""

    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    values = config.model_dump(mode="json", exclude={"layout"})
    lines = [f"{key} = {_toml_value(value)}" for key, value in values.items()]
    layout = config.layout.model_dump(exclude_none=True)
    if layout:
        lines += ["", "[layout]", *(f"{key} = {_toml_value(value)}" for key, value in layout.items())]
    CONFIG_FILE.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _toml_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


__all__ = [
    "AppConfig",
    "CONFIG_FILE",
    "DEFAULT_FALLBACK_DATABASE",
    "DEFAULT_QUERY_TIMEOUT",
    "LayoutState",
    "load_config",
    "save_config",
]
