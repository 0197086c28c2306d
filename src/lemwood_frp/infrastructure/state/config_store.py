"""Configuration store adapters: in-memory and JSON file."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path
from threading import Lock

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from lemwood_frp.application.ports.config_store import ConfigStorePort
from lemwood_frp.domain.proxy import ProxyConfig, ProxyRole

logger = logging.getLogger(__name__)


class InMemoryConfigStore(ConfigStorePort):
    """Holds configurations in memory for the lifetime of the process."""

    def __init__(self, configs: Iterable[ProxyConfig] = ()) -> None:
        self._configs: dict[str, ProxyConfig] = {}
        self._lock = Lock()
        for config in configs:
            self.put(config)

    def put(self, config: ProxyConfig) -> None:
        with self._lock:
            self._configs[config.id] = config

    def get_config(self, config_id: str) -> ProxyConfig | None:
        with self._lock:
            return self._configs.get(config_id)

    def list_configs(self) -> tuple[ProxyConfig, ...]:
        with self._lock:
            return tuple(self._configs.values())


class ProxyConfigRecord(BaseModel):
    """JSON shape of one exported configuration (camelCase keys)."""

    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    id: str
    name: str = ""
    type: ProxyRole
    server_addr: str = Field(default="", alias="serverAddr")
    server_port: int = Field(alias="serverPort")
    token: str | None = None
    local_ip: str | None = Field(default=None, alias="localIP")
    local_port: int | None = Field(default=None, alias="localPort")
    remote_port: int | None = Field(default=None, alias="remotePort")
    proxy_type: str = Field(default="tcp", alias="proxyType")
    custom_domain: str | None = Field(default=None, alias="customDomain")
    subdomain: str | None = None
    is_enabled: bool = Field(default=True, alias="isEnabled")
    auto_start: bool = Field(default=False, alias="autoStart")

    def to_domain(self) -> ProxyConfig:
        return ProxyConfig(
            id=self.id,
            name=self.name,
            role=self.type,
            server_addr=self.server_addr,
            server_port=self.server_port,
            token=self.token,
            local_ip=self.local_ip,
            local_port=self.local_port,
            remote_port=self.remote_port,
            proxy_type=self.proxy_type,
            custom_domain=self.custom_domain,
            subdomain=self.subdomain,
            enabled=self.is_enabled,
            auto_start=self.auto_start,
        )


_PAYLOAD = TypeAdapter(object)


def _parse_record(item: object) -> ProxyConfig:
    # Exports carry the role as "CLIENT"/"SERVER".
    if isinstance(item, dict) and isinstance(item.get("type"), str):
        item = {**item, "type": item["type"].lower()}
    return ProxyConfigRecord.model_validate(item).to_domain()


class JsonFileConfigStore(ConfigStorePort):
    """Reads a JSON array of configurations; the file is re-read on each query.

    A record that fails validation is skipped with a warning so one bad entry
    never hides the others. A file that is not a JSON array raises
    ``ValueError``.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> tuple[ProxyConfig, ...]:
        if not self._path.exists():
            logger.warning("config file does not exist", extra={"data": {"path": self._path}})
            return ()
        raw = self._path.read_text(encoding="utf-8")
        if not raw.strip():
            return ()
        try:
            payload = _PAYLOAD.validate_json(raw)
        except ValidationError as exc:
            raise ValueError(f"invalid config file {self._path}: {exc}") from exc
        if not isinstance(payload, list):
            raise ValueError(f"invalid config file {self._path}: expected a JSON array")

        configs: list[ProxyConfig] = []
        for index, item in enumerate(payload):
            try:
                configs.append(_parse_record(item))
            except (ValidationError, ValueError) as exc:
                logger.warning(
                    "skipping invalid config record",
                    extra={
                        "data": {
                            "path": self._path,
                            "index": index,
                            "id": item.get("id") if isinstance(item, dict) else None,
                            "error": str(exc),
                        }
                    },
                )
        return tuple(configs)

    def get_config(self, config_id: str) -> ProxyConfig | None:
        for config in self._load():
            if config.id == config_id:
                return config
        return None

    def list_configs(self) -> tuple[ProxyConfig, ...]:
        return self._load()


__all__ = ["InMemoryConfigStore", "JsonFileConfigStore", "ProxyConfigRecord"]
