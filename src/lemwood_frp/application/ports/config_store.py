"""Port describing the read-only configuration store."""

from __future__ import annotations

from typing import Protocol

from lemwood_frp.domain.proxy import ProxyConfig


class ConfigStorePort(Protocol):
    """Source of proxy definitions; the launcher never writes back."""

    def get_config(self, config_id: str) -> ProxyConfig | None:
        """Return the configuration for ``config_id`` or ``None``."""

    def list_configs(self) -> tuple[ProxyConfig, ...]:
        """Return every known configuration."""


__all__ = ["ConfigStorePort"]
