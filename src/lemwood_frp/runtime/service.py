"""Caller-facing launcher: provision, launch, supervise and stop proxies."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Callable, Mapping
from concurrent.futures import Executor, ThreadPoolExecutor
from contextlib import suppress
from pathlib import Path
from typing import Final

from lemwood_frp.application.ports.config_store import ConfigStorePort
from lemwood_frp.config.settings import LauncherSettings
from lemwood_frp.domain.proxy import ProxyConfig, ProxyRole
from lemwood_frp.domain.run_state import RunState
from lemwood_frp.errors import (
    CapacityExceededError,
    ConfigNotFoundError,
    ConfigUnavailableError,
    ErrorCode,
    LauncherError,
    LaunchError,
    ProvisionError,
)
from lemwood_frp.launch.strategies import LaunchRequest, LaunchStrategySelector
from lemwood_frp.launch.synthesizer import synthesize, write_config_file
from lemwood_frp.observability.sink import LoggingSink, LogLevel, LogSink
from lemwood_frp.platform.arch import ArchitectureResolution, host_abis, resolve_architecture
from lemwood_frp.provisioning.assets import AssetSource, DirectoryAssetSource
from lemwood_frp.provisioning.binaries import BinaryProvisioner
from lemwood_frp.provisioning.bootstrap import BootstrapReport, SandboxBootstrapper
from lemwood_frp.runtime.diagnostics import build_report
from lemwood_frp.runtime.registry import LifecycleRegistry
from lemwood_frp.runtime.supervisor import SupervisedProcess

logger = logging.getLogger(__name__)

TAG: Final[str] = "service"
FRP_CATEGORY: Final[str] = "frp"


def _as_launch_error(exc: Exception) -> LauncherError:
    if isinstance(exc, LauncherError):
        return exc
    return LaunchError(f"launch aborted: {exc}")


class LauncherService:
    """Wires provisioning, launch selection and supervision per configuration.

    ``start`` and ``stop`` for one config id are serialized through the
    registry's per-id lock; different ids proceed independently. Failures are
    reported as ``RunState`` records with ``phase=ERROR`` rather than raised.
    """

    def __init__(
        self,
        settings: LauncherSettings,
        config_store: ConfigStorePort,
        *,
        assets: AssetSource | None = None,
        sink: LogSink | None = None,
        registry: LifecycleRegistry | None = None,
        executor: Executor | None = None,
        popen: Callable[..., subprocess.Popen[str]] | None = None,
        command_runner: Callable[..., subprocess.CompletedProcess[str]] | None = None,
        set_executable: Callable[[Path], bool] | None = None,
        base_env: Mapping[str, str] | None = None,
    ) -> None:
        self._settings = settings
        self._store = config_store
        self._assets = assets or DirectoryAssetSource(settings.assets_dir)
        self._sink = sink or LoggingSink()
        self._registry = registry or LifecycleRegistry()
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=2 * settings.max_processes,
            thread_name_prefix="lemwood-frp",
        )
        self._provisioner = BinaryProvisioner(
            self._assets,
            min_size_bytes=settings.min_binary_bytes,
            set_executable=set_executable,
            command_runner=command_runner,
        )
        self._bootstrapper = SandboxBootstrapper(
            self._provisioner,
            self._assets,
            full_env_root=settings.termux_root,
            root_emulation_dir=settings.proot_dir,
        )
        self._selector = LaunchStrategySelector(
            self._bootstrapper,
            popen=popen,
            command_runner=command_runner,
            base_env=base_env,
            sink=self._sink,
        )

    # --- Collaborators ---

    @property
    def settings(self) -> LauncherSettings:
        return self._settings

    @property
    def registry(self) -> LifecycleRegistry:
        return self._registry

    @property
    def provisioner(self) -> BinaryProvisioner:
        return self._provisioner

    @property
    def bootstrapper(self) -> SandboxBootstrapper:
        return self._bootstrapper

    @property
    def selector(self) -> LaunchStrategySelector:
        return self._selector

    @property
    def config_store(self) -> ConfigStorePort:
        return self._store

    def architecture(self) -> ArchitectureResolution:
        return resolve_architecture(host_abis(self._settings.host_abis))

    # --- Preparation ---

    def bootstrap(self) -> tuple[BootstrapReport, ...]:
        """Prepare both sandboxes and both proxy binaries; failures are reported, not raised."""

        arch = self.architecture().architecture
        reports = (
            self._bootstrapper.prepare_full_environment(arch),
            self._bootstrapper.prepare_root_emulation(arch),
        )
        for role in ProxyRole:
            try:
                self._provision(role)
            except ProvisionError as exc:
                self._sink.emit(LogLevel.WARNING, TAG, f"{role.executable} not provisioned: {exc}")
        for report in reports:
            logger.info(
                "sandbox bootstrap finished",
                extra={
                    "data": {
                        "kind": report.kind,
                        "ready": report.ready,
                        "skipped": list(report.skipped),
                        "error": report.error,
                    }
                },
            )
        return reports

    def _provision(self, role: ProxyRole) -> Path:
        return self._provisioner.ensure(
            role.executable,
            self.architecture().architecture,
            category=FRP_CATEGORY,
            target_dir=self._settings.exec_dir,
        )

    # --- Lifecycle ---

    def start(self, config_id: str) -> RunState:
        """Launch ``config_id`` and return its state once a handle exists or launch failed."""

        with self._registry.lock_for(config_id):
            if self._registry.handle(config_id) is not None:
                current = self._registry.status(config_id)
                self._sink.emit(
                    LogLevel.WARNING,
                    TAG,
                    f"{ErrorCode.ALREADY_RUNNING.value}: process already running (pid={current.pid})",
                    config_id,
                )
                return current

            try:
                config = self._store.get_config(config_id)
            except (OSError, ValueError) as exc:
                return self._fail(
                    config_id,
                    ConfigUnavailableError(f"configuration store could not be read: {exc}"),
                )
            if config is None:
                return self._fail(config_id, ConfigNotFoundError(f"no configuration with id {config_id}"))
            if not self._registry.try_reserve(config_id, self._settings.max_processes):
                return self._fail(
                    config_id,
                    CapacityExceededError(
                        f"supervision capacity of {self._settings.max_processes} processes reached"
                    ),
                )
            try:
                return self._launch(config)
            finally:
                self._registry.release(config_id)

    def _launch(self, config: ProxyConfig) -> RunState:
        self._registry.record(RunState.starting(config.id))
        self._sink.emit(LogLevel.INFO, TAG, f"starting {config.executable} ({config.display_name})", config.id)
        try:
            binary = self._provision(config.role)
            config_file = write_config_file(config, self._settings.config_dir)
        except ProvisionError as exc:
            return self._fail(config.id, exc)
        except OSError as exc:
            return self._fail(config.id, ProvisionError(f"could not write config file: {exc}"))

        request = LaunchRequest(
            config_id=config.id,
            binary=binary,
            config_file=config_file,
            exec_dir=self._settings.exec_dir,
            config_dir=self._settings.config_dir,
        )
        try:
            result = self._selector.launch(request)
        except (LauncherError, OSError) as exc:
            return self._fail(config.id, _as_launch_error(exc))
        winner = result.winner
        if winner is None or winner.process is None:
            return self._fail(config.id, LaunchError(result.error_message()))

        supervised = SupervisedProcess(
            config.id,
            winner.process,
            strategy=winner.strategy,
            registry=self._registry,
            executor=self._executor,
            sink=self._sink,
            max_output_lines=self._settings.max_output_lines,
            drain_timeout=self._settings.stop_timeout_seconds,
        )
        try:
            return supervised.attach()
        except (RuntimeError, OSError) as exc:
            self._registry.complete(config.id, supervised, RunState.starting(config.id))
            with suppress(OSError):
                winner.process.kill()
            return self._fail(config.id, LaunchError(f"could not supervise process: {exc}"))

    def _fail(self, config_id: str, error: LauncherError) -> RunState:
        state = RunState.failed(config_id, error.message)
        self._registry.record(state)
        self._sink.emit(LogLevel.ERROR, TAG, f"{error.code.value}: {error.message}", config_id)
        return state

    def stop(self, config_id: str) -> RunState:
        """Stop ``config_id``; a config with no running process is left untouched."""

        with self._registry.lock_for(config_id):
            handle = self._registry.handle(config_id)
            if handle is None:
                self._sink.emit(
                    LogLevel.WARNING,
                    TAG,
                    f"{ErrorCode.NOT_RUNNING.value}: no running process",
                    config_id,
                )
                return self._registry.status(config_id)
            exit_code = handle.stop(self._settings.stop_timeout_seconds)
            logger.info(
                "process stopped",
                extra={"data": {"config_id": config_id, "exit_code": exit_code}},
            )
            return self._registry.status(config_id)

    def stop_all(self) -> dict[str, RunState]:
        """Stop every running process; one failure does not prevent the others."""

        results: dict[str, RunState] = {}
        failures: dict[str, str] = {}
        for config_id in self._registry.running_ids():
            try:
                results[config_id] = self.stop(config_id)
            except (OSError, RuntimeError) as exc:
                failures[config_id] = str(exc)
                logger.exception("failed to stop process", extra={"data": {"config_id": config_id}})
                self._sink.emit(LogLevel.ERROR, TAG, f"stop failed: {exc}", config_id)
                results[config_id] = self._registry.status(config_id)
        if failures:
            logger.warning("stop_all finished with failures", extra={"data": {"failures": failures}})
        return results

    def start_auto_start(self) -> dict[str, RunState]:
        """Start every enabled configuration flagged for automatic start."""

        results: dict[str, RunState] = {}
        for config in self._store.list_configs():
            if config.enabled and config.auto_start:
                results[config.id] = self.start(config.id)
        logger.info("auto-start finished", extra={"data": {"started": sorted(results)}})
        return results

    # --- Queries ---

    def status(self, config_id: str) -> RunState:
        return self._registry.status(config_id)

    def list_running(self) -> dict[str, RunState]:
        return self._registry.list_running()

    def render(self, config_id: str) -> str:
        config = self._store.get_config(config_id)
        if config is None:
            raise ConfigNotFoundError(f"no configuration with id {config_id}")
        return synthesize(config)

    def diagnose(self) -> str:
        return build_report(self)

    def shutdown(self) -> None:
        self.stop_all()
        if self._owns_executor and isinstance(self._executor, ThreadPoolExecutor):
            self._executor.shutdown(wait=False)


__all__ = ["FRP_CATEGORY", "LauncherService"]
