"""Dataclass schemas for the launcher control API."""

from __future__ import annotations

from dataclasses import dataclass

from lemwood_frp.domain.proxy import ProxyConfig
from lemwood_frp.domain.run_state import RunState


@dataclass(frozen=True, slots=True)
class RunStateModel:
    config_id: str
    phase: str
    pid: int | None = None
    start_time: str | None = None
    exit_code: int | None = None
    error_message: str | None = None
    strategy: str | None = None

    @classmethod
    def from_state(cls, state: RunState) -> RunStateModel:
        return cls(
            config_id=state.config_id,
            phase=state.phase.value,
            pid=state.pid,
            start_time=state.start_time.isoformat() if state.start_time else None,
            exit_code=state.exit_code,
            error_message=state.error_message,
            strategy=state.strategy.value if state.strategy else None,
        )


@dataclass(frozen=True, slots=True)
class ProxyModel:
    id: str
    name: str
    role: str
    server_addr: str
    server_port: int
    proxy_type: str
    enabled: bool
    auto_start: bool
    state: RunStateModel

    @classmethod
    def from_config(cls, config: ProxyConfig, state: RunState) -> ProxyModel:
        return cls(
            id=config.id,
            name=config.display_name,
            role=config.role.value,
            server_addr=config.server_addr,
            server_port=config.server_port,
            proxy_type=config.proxy_type,
            enabled=config.enabled,
            auto_start=config.auto_start,
            state=RunStateModel.from_state(state),
        )


@dataclass(frozen=True, slots=True)
class StopAllResponse:
    stopped: list[RunStateModel]


@dataclass(frozen=True, slots=True)
class DiagnosticsResponse:
    report: str


__all__ = ["DiagnosticsResponse", "ProxyModel", "RunStateModel", "StopAllResponse"]
