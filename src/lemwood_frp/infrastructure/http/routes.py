"""HTTP route definitions for the launcher control API."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Depends, FastAPI, HTTPException

from lemwood_frp.domain.proxy import ProxyConfig
from lemwood_frp.infrastructure.http.schemas import (
    DiagnosticsResponse,
    ProxyModel,
    RunStateModel,
    StopAllResponse,
)
from lemwood_frp.runtime.service import LauncherService

logger = logging.getLogger("lemwood_frp.http")


@dataclass(frozen=True)
class ProxyControlDeps:
    service: LauncherService


def add_proxy_routes(app: FastAPI, deps_provider: Callable[[], ProxyControlDeps]) -> None:
    def get_deps() -> ProxyControlDeps:
        return deps_provider()

    def require_config(config_id: str, deps: ProxyControlDeps) -> ProxyConfig:
        config = deps.service.config_store.get_config(config_id)
        if config is None:
            raise HTTPException(status_code=404, detail=f"unknown config {config_id}")
        return config

    @app.get(
        "/v1/proxies",
        response_model=list[ProxyModel],
        description="List every configured proxy with its current run state.",
    )
    def list_proxies(
        deps: ProxyControlDeps = Depends(get_deps),  # noqa: B008
    ) -> list[ProxyModel]:
        service = deps.service
        return [
            ProxyModel.from_config(config, service.status(config.id))
            for config in service.config_store.list_configs()
        ]

    @app.get(
        "/v1/proxies/{config_id}",
        response_model=ProxyModel,
        description="Return one proxy and its current run state.",
    )
    def get_proxy(
        config_id: str,
        deps: ProxyControlDeps = Depends(get_deps),  # noqa: B008
    ) -> ProxyModel:
        config = require_config(config_id, deps)
        return ProxyModel.from_config(config, deps.service.status(config_id))

    @app.post(
        "/v1/proxies/stop-all",
        response_model=StopAllResponse,
        description="Stop every running proxy process.",
    )
    def stop_all(
        deps: ProxyControlDeps = Depends(get_deps),  # noqa: B008
    ) -> StopAllResponse:
        states = deps.service.stop_all()
        return StopAllResponse(stopped=[RunStateModel.from_state(state) for state in states.values()])

    @app.post(
        "/v1/proxies/{config_id}/start",
        response_model=RunStateModel,
        description="Launch the proxy; an already running proxy is left untouched.",
    )
    def start_proxy(
        config_id: str,
        deps: ProxyControlDeps = Depends(get_deps),  # noqa: B008
    ) -> RunStateModel:
        require_config(config_id, deps)
        state = deps.service.start(config_id)
        logger.info(
            "start requested",
            extra={"data": {"config_id": config_id, "phase": state.phase}},
        )
        return RunStateModel.from_state(state)

    @app.post(
        "/v1/proxies/{config_id}/stop",
        response_model=RunStateModel,
        description="Stop the proxy; a proxy that is not running is left untouched.",
    )
    def stop_proxy(
        config_id: str,
        deps: ProxyControlDeps = Depends(get_deps),  # noqa: B008
    ) -> RunStateModel:
        require_config(config_id, deps)
        return RunStateModel.from_state(deps.service.stop(config_id))

    @app.get(
        "/v1/diagnostics",
        response_model=DiagnosticsResponse,
        description="Return a plain-text diagnostics report about sandboxes, binaries and processes.",
    )
    def diagnostics(
        deps: ProxyControlDeps = Depends(get_deps),  # noqa: B008
    ) -> DiagnosticsResponse:
        return DiagnosticsResponse(report=deps.service.diagnose())


__all__ = ["ProxyControlDeps", "add_proxy_routes"]
