"""FastAPI control API and command line entrypoint for the proxy launcher."""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from lemwood_frp.config.settings import LauncherSettings
from lemwood_frp.domain.run_state import RunPhase
from lemwood_frp.errors import ConfigNotFoundError
from lemwood_frp.infrastructure.http.routes import ProxyControlDeps, add_proxy_routes
from lemwood_frp.infrastructure.state.config_store import InMemoryConfigStore, JsonFileConfigStore
from lemwood_frp.observability.logging import configure_logging
from lemwood_frp.runtime.service import LauncherService
from lemwood_frp.runtime.supervisor import SupervisedProcess

logger = logging.getLogger("lemwood_frp")

LOG_FILE_NAME = "logs/lemwood-frp.log"


def build_service(settings: LauncherSettings) -> LauncherService:
    if settings.configs_file is not None:
        store: JsonFileConfigStore | InMemoryConfigStore = JsonFileConfigStore(settings.configs_file)
    else:
        logger.warning("LEMWOOD_FRP_CONFIGS_FILE not set; no proxy configurations available")
        store = InMemoryConfigStore()
    return LauncherService(settings, store)


def create_app(service: LauncherService | None = None, *, autostart: bool = True) -> FastAPI:
    """Build the control API; the lifespan bootstraps, auto-starts and finally stops everything."""

    launcher = service if service is not None else build_service(LauncherSettings.load())
    deps = ProxyControlDeps(service=launcher)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        del app
        logger.info("lemwood-frp starting up")
        if autostart:
            launcher.bootstrap()
            launcher.start_auto_start()
        yield
        logger.info("lemwood-frp shutting down")
        launcher.shutdown()

    app = FastAPI(title="Lemwood FRP Launcher", version="0.1.0", lifespan=lifespan)

    @app.get("/healthz", tags=["health"], description="Launcher health check.")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    add_proxy_routes(app, lambda: deps)
    return app


def _run_foreground(service: LauncherService, config_id: str) -> int:
    service.bootstrap()
    state = service.start(config_id)
    if state.phase is RunPhase.ERROR:
        print(f"{config_id}: {state.error_message}", file=sys.stderr)
        return 1
    handle = service.registry.handle(config_id)
    try:
        if isinstance(handle, SupervisedProcess):
            handle.wait()
    except KeyboardInterrupt:
        service.stop(config_id)
    final = service.status(config_id)
    print(f"{config_id}: {final.phase.value} (exit code {final.exit_code})")
    return 0 if final.phase is RunPhase.STOPPED else 1


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Provision, launch and supervise frpc/frps proxies.")
    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Run the control API with uvicorn.")
    serve.add_argument("--host", default=None, help="Host interface (default: LEMWOOD_FRP_HOST).")
    serve.add_argument("--port", type=int, default=None, help="Port (default: LEMWOOD_FRP_PORT).")

    run = subparsers.add_parser("run", help="Start one configuration in the foreground.")
    run.add_argument("config_id")

    render = subparsers.add_parser("render", help="Print the generated config file for a configuration.")
    render.add_argument("config_id")

    subparsers.add_parser("diagnose", help="Print a diagnostics report.")

    args = parser.parse_args(list(argv) if argv is not None else None)
    if args.command is None:
        parser.print_help()
        return 0

    settings = LauncherSettings.load()
    configure_logging(log_file=Path(settings.data_dir) / LOG_FILE_NAME)

    if args.command == "serve":
        import uvicorn

        host = args.host or settings.listen_host
        port = args.port or settings.listen_port
        logger.info("starting uvicorn on %s:%s", host, port)
        uvicorn.run(
            "lemwood_frp.app:create_app",
            factory=True,
            host=host,
            port=port,
            log_level="info",
            log_config=None,
        )
        return 0

    service = build_service(settings)
    try:
        if args.command == "run":
            return _run_foreground(service, args.config_id)
        if args.command == "render":
            try:
                print(service.render(args.config_id), end="")
            except ConfigNotFoundError as exc:
                print(exc.message, file=sys.stderr)
                return 1
            return 0
        print(service.diagnose())
        return 0
    finally:
        service.shutdown()


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
