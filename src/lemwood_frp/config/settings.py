"""Launcher configuration resolved from the environment."""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = "~/.local/share/lemwood-frp"
DEFAULT_MIN_BINARY_BYTES = 100 * 1024


class LauncherSettings(BaseSettings):
    """Directories, limits and timeouts for provisioning and supervision.

    Only genuinely configurable values live here; fixed layout names (``bin``,
    ``proot``, ``termux``, ``configs``) are derived below.
    """

    model_config = SettingsConfigDict(
        env_prefix="",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
    )

    # --- Storage ---
    data_dir: Path = Field(default=Path(DEFAULT_DATA_DIR), alias="LEMWOOD_FRP_DATA_DIR")
    assets_dir: Path = Field(default=Path("assets"), alias="LEMWOOD_FRP_ASSETS_DIR")
    configs_file: Path | None = Field(default=None, alias="LEMWOOD_FRP_CONFIGS_FILE")

    # --- Host ---
    host_abis_raw: str = Field(
        default="",
        alias="LEMWOOD_FRP_HOST_ABIS",
        description="Comma separated ABI list overriding host detection.",
    )

    # --- Supervision ---
    stop_timeout_seconds: float = Field(default=5.0, alias="LEMWOOD_FRP_STOP_TIMEOUT_SECONDS", gt=0)
    max_output_lines: int = Field(default=1000, alias="LEMWOOD_FRP_MAX_OUTPUT_LINES", ge=1)
    max_processes: int = Field(default=16, alias="LEMWOOD_FRP_MAX_PROCESSES", ge=1)
    min_binary_bytes: int = Field(
        default=DEFAULT_MIN_BINARY_BYTES,
        alias="LEMWOOD_FRP_MIN_BINARY_BYTES",
        ge=0,
    )

    # --- Control API ---
    listen_host: str = Field(default="127.0.0.1", alias="LEMWOOD_FRP_HOST")
    listen_port: int = Field(default=7500, alias="LEMWOOD_FRP_PORT")

    @field_validator("data_dir", "assets_dir", mode="after")
    @classmethod
    def _expand(cls, value: Path) -> Path:
        return value.expanduser()

    @property
    def host_abis(self) -> tuple[str, ...]:
        return tuple(part.strip() for part in self.host_abis_raw.split(",") if part.strip())

    @property
    def exec_dir(self) -> Path:
        return self.data_dir / "bin"

    @property
    def config_dir(self) -> Path:
        return self.data_dir / "configs"

    @property
    def proot_dir(self) -> Path:
        return self.data_dir / "proot"

    @property
    def termux_root(self) -> Path:
        return self.data_dir / "termux"

    @classmethod
    def load(cls) -> LauncherSettings:
        instance = cls()
        logger = logging.getLogger("lemwood_frp.settings")
        logger.info("launcher settings loaded: %r", instance)
        return instance


__all__ = ["DEFAULT_MIN_BINARY_BYTES", "LauncherSettings"]
