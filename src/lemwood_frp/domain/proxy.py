"""Proxy definitions handed to the launcher by the configuration store."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ProxyRole(str, Enum):
    """Which executable a configuration drives."""

    CLIENT = "client"
    SERVER = "server"

    @property
    def executable(self) -> str:
        return "frpc" if self is ProxyRole.CLIENT else "frps"


HTTP_PROXY_TYPES: frozenset[str] = frozenset({"http", "https"})


def _check_port(name: str, value: int | None) -> None:
    if value is None:
        return
    if not 1 <= value <= 65535:
        raise ValueError(f"{name} must be within 1..65535 (got {value})")


@dataclass(frozen=True, slots=True)
class ProxyConfig:
    """Immutable snapshot of one client or server proxy definition."""

    id: str
    role: ProxyRole
    server_addr: str
    server_port: int
    name: str = ""
    token: str | None = None
    local_ip: str | None = None
    local_port: int | None = None
    remote_port: int | None = None
    proxy_type: str = "tcp"
    custom_domain: str | None = None
    subdomain: str | None = None
    enabled: bool = True
    auto_start: bool = False

    def __post_init__(self) -> None:
        if not self.id or not self.id.strip():
            raise ValueError("id must be a non-empty string")
        # The id names the generated config file.
        if "/" in self.id or "\\" in self.id or self.id in (".", ".."):
            raise ValueError(f"id must be usable as a file name (got {self.id!r})")
        if self.role is ProxyRole.CLIENT and not self.server_addr.strip():
            raise ValueError("server_addr must be provided for client configs")
        _check_port("server_port", self.server_port)
        _check_port("local_port", self.local_port)
        _check_port("remote_port", self.remote_port)
        if self.role is ProxyRole.CLIENT and self.local_port is None:
            raise ValueError("client configs require local_port")

    @property
    def display_name(self) -> str:
        return self.name.strip() or self.id

    @property
    def executable(self) -> str:
        return self.role.executable

    @property
    def is_http_like(self) -> bool:
        return self.proxy_type.strip().lower() in HTTP_PROXY_TYPES


__all__ = ["HTTP_PROXY_TYPES", "ProxyConfig", "ProxyRole"]
