"""Launch strategy construction and fallback selection.

Strategies are tried strictly in ``LaunchStrategy`` declaration order. Each
attempt produces an explicit ``LaunchAttempt`` result; the selector advances on
a failed readiness check or an OS-level spawn error and stops at the first
process handle.
"""

from __future__ import annotations

import os
import shlex
import subprocess
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Final

from lemwood_frp.domain.run_state import LaunchStrategy
from lemwood_frp.observability.sink import LoggingSink, LogLevel, LogSink
from lemwood_frp.provisioning.binaries import is_executable
from lemwood_frp.provisioning.bootstrap import SandboxBootstrapper, SandboxDescriptor, system_shell

TAG: Final[str] = "launcher"
STRATEGY_ORDER: Final[tuple[LaunchStrategy, ...]] = tuple(LaunchStrategy)
_ANDROID_BIN_DIRS: Final[str] = "/system/bin:/system/xbin"
_ANDROID_LIB_DIRS: Final[str] = "/system/lib:/system/lib64"


@dataclass(frozen=True, slots=True)
class LaunchRequest:
    """Everything a strategy needs to start one configuration's executable."""

    config_id: str
    binary: Path
    config_file: Path
    exec_dir: Path
    config_dir: Path


@dataclass(frozen=True, slots=True)
class LaunchCommand:
    """Argv, working directory and environment overrides for one strategy."""

    strategy: LaunchStrategy
    argv: tuple[str, ...]
    cwd: Path
    env: Mapping[str, str] = field(default_factory=dict)

    def render(self) -> str:
        return shlex.join(self.argv)


@dataclass(frozen=True, slots=True)
class LaunchAttempt:
    """Explicit (handle, error) result of trying one strategy."""

    strategy: LaunchStrategy
    process: subprocess.Popen[str] | None = None
    command: LaunchCommand | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.process is not None


@dataclass(frozen=True, slots=True)
class LaunchResult:
    """Outcome of walking the strategy chain."""

    attempts: tuple[LaunchAttempt, ...]

    @property
    def winner(self) -> LaunchAttempt | None:
        for attempt in self.attempts:
            if attempt.succeeded:
                return attempt
        return None

    @property
    def succeeded(self) -> bool:
        return self.winner is not None

    def error_message(self) -> str:
        reasons = "; ".join(f"{a.strategy.value}: {a.error}" for a in self.attempts if a.error)
        return f"all launch strategies failed ({reasons})" if reasons else "no launch strategy attempted"


class LaunchStrategySelector:
    """Chooses between the full environment, root emulation and direct execution."""

    def __init__(
        self,
        bootstrapper: SandboxBootstrapper,
        *,
        popen: Callable[..., subprocess.Popen[str]] | None = None,
        command_runner: Callable[..., subprocess.CompletedProcess[str]] | None = None,
        base_env: Mapping[str, str] | None = None,
        sink: LogSink | None = None,
    ) -> None:
        self._bootstrapper = bootstrapper
        self._popen = popen or self._default_popen
        self._run = command_runner or self._default_run
        self._base_env = base_env
        self._sink = sink or LoggingSink("lemwood_frp.launch")

    # --- Queries ---

    def readiness(self, strategy: LaunchStrategy) -> SandboxDescriptor | None:
        """Descriptor gating ``strategy``; ``None`` means no sandbox is involved."""

        if strategy is LaunchStrategy.FULL_ENVIRONMENT:
            return self._bootstrapper.full_environment()
        if strategy is LaunchStrategy.ROOT_EMULATION:
            return self._bootstrapper.root_emulation()
        return None

    def recommend(self) -> LaunchStrategy:
        """First strategy whose sandbox is currently ready."""

        for strategy in STRATEGY_ORDER:
            descriptor = self.readiness(strategy)
            if descriptor is None or descriptor.ready:
                return strategy
        return LaunchStrategy.DIRECT

    def build_command(self, strategy: LaunchStrategy, request: LaunchRequest) -> LaunchCommand:
        if strategy is LaunchStrategy.FULL_ENVIRONMENT:
            return self._full_environment_command(request)
        if strategy is LaunchStrategy.ROOT_EMULATION:
            return self._root_emulation_command(request)
        return LaunchCommand(
            strategy=LaunchStrategy.DIRECT,
            argv=(str(request.binary), "-c", str(request.config_file)),
            cwd=request.exec_dir,
        )

    # --- Launch ---

    def launch(
        self,
        request: LaunchRequest,
        strategies: Sequence[LaunchStrategy] = STRATEGY_ORDER,
    ) -> LaunchResult:
        attempts: list[LaunchAttempt] = []
        for strategy in strategies:
            attempt = self.attempt(strategy, request)
            attempts.append(attempt)
            if attempt.succeeded:
                break
        result = LaunchResult(attempts=tuple(attempts))
        if not result.succeeded:
            self._sink.emit(LogLevel.ERROR, TAG, result.error_message(), request.config_id)
        return result

    def attempt(self, strategy: LaunchStrategy, request: LaunchRequest) -> LaunchAttempt:
        descriptor = self.readiness(strategy)
        if descriptor is not None and not descriptor.ready:
            self._sink.emit(
                LogLevel.DEBUG,
                TAG,
                f"skipping {strategy.value}: {descriptor.describe()}",
                request.config_id,
            )
            return LaunchAttempt(strategy=strategy, error=descriptor.describe())
        if not is_executable(request.binary):
            message = f"target binary missing or not executable: {request.binary}"
            self._sink.emit(LogLevel.ERROR, TAG, message, request.config_id)
            return LaunchAttempt(strategy=strategy, error=message)

        command = self.build_command(strategy, request)
        if strategy is LaunchStrategy.FULL_ENVIRONMENT:
            self._run_startup_script(command, request.config_id)
        elif strategy is LaunchStrategy.ROOT_EMULATION:
            try:
                Path(command.env["PROOT_TMP_DIR"]).mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                message = f"temp dir unavailable: {exc}"
                self._sink.emit(LogLevel.WARNING, TAG, f"{strategy.value} {message}", request.config_id)
                return LaunchAttempt(strategy=strategy, command=command, error=message)

        self._sink.emit(
            LogLevel.INFO,
            TAG,
            f"starting via {strategy.value}: {command.render()}",
            request.config_id,
        )
        try:
            process = self._popen(
                list(command.argv),
                cwd=str(command.cwd),
                env=self._environment(command.env),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                bufsize=1,
            )
        except OSError as exc:
            message = f"spawn failed: {exc}"
            self._sink.emit(LogLevel.WARNING, TAG, f"{strategy.value} {message}", request.config_id)
            return LaunchAttempt(strategy=strategy, command=command, error=message)
        return LaunchAttempt(strategy=strategy, process=process, command=command)

    # --- Command builders ---

    def _full_environment_command(self, request: LaunchRequest) -> LaunchCommand:
        root = self._bootstrapper.full_env_root
        interpreter = self._bootstrapper.interpreter
        script = " && ".join(
            [
                f"source {shlex.quote(str(self._bootstrapper.environment_script))}",
                f"cd {shlex.quote(str(request.exec_dir))}",
                f"exec {shlex.quote(str(request.binary))} -c {shlex.quote(str(request.config_file))}",
            ]
        )
        inherited_path = self._inherited("PATH")
        inherited_libs = self._inherited("LD_LIBRARY_PATH")
        env = {
            "TERMUX_PREFIX": str(root),
            "TERMUX_HOME": str(root / "home"),
            "PATH": ":".join(p for p in (f"{root}/bin", _ANDROID_BIN_DIRS, inherited_path) if p),
            "LD_LIBRARY_PATH": ":".join(
                p for p in (f"{root}/lib", _ANDROID_LIB_DIRS, inherited_libs) if p
            ),
            "HOME": str(root / "home"),
            "TMPDIR": str(root / "tmp"),
            "SHELL": str(interpreter),
        }
        return LaunchCommand(
            strategy=LaunchStrategy.FULL_ENVIRONMENT,
            argv=(str(interpreter), "-c", script),
            cwd=request.exec_dir,
            env=env,
        )

    def _root_emulation_command(self, request: LaunchRequest) -> LaunchCommand:
        proot = self._bootstrapper.root_emulation_binary
        argv = (
            str(proot),
            "-r",
            "/",
            "-b",
            str(request.exec_dir),
            "-b",
            str(request.config_dir),
            "-w",
            str(request.exec_dir),
            str(request.binary),
            "-c",
            str(request.config_file),
        )
        env = {
            "PROOT_NO_SECCOMP": "1",
            "PROOT_TMP_DIR": str(proot.parent / "tmp"),
        }
        return LaunchCommand(
            strategy=LaunchStrategy.ROOT_EMULATION,
            argv=argv,
            cwd=request.exec_dir,
            env=env,
        )

    def _run_startup_script(self, command: LaunchCommand, config_id: str) -> None:
        args = [system_shell(), str(self._bootstrapper.startup_script)]
        try:
            result = self._run(
                args,
                cwd=str(self._bootstrapper.full_env_root),
                env=self._environment(command.env),
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as exc:
            self._sink.emit(LogLevel.WARNING, TAG, f"startup script could not run: {exc}", config_id)
            return
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            self._sink.emit(
                LogLevel.WARNING,
                TAG,
                f"startup script exited with {result.returncode}: {stderr}",
                config_id,
            )

    def _inherited(self, key: str) -> str:
        source = self._base_env if self._base_env is not None else os.environ
        return source.get(key, "")

    def _environment(self, overrides: Mapping[str, str]) -> dict[str, str]:
        env = dict(self._base_env if self._base_env is not None else os.environ)
        env.update(overrides)
        return env

    @staticmethod
    def _default_popen(
        *args: Any,
        **kwargs: Any,
    ) -> subprocess.Popen[str]:  # pragma: no cover - thin wrapper
        return subprocess.Popen(*args, **kwargs)  # noqa: S603

    @staticmethod
    def _default_run(
        *args: Any,
        **kwargs: Any,
    ) -> subprocess.CompletedProcess[str]:  # pragma: no cover - thin wrapper
        return subprocess.run(*args, **kwargs)  # noqa: S603


__all__ = [
    "LaunchAttempt",
    "LaunchCommand",
    "LaunchRequest",
    "LaunchResult",
    "LaunchStrategy",
    "LaunchStrategySelector",
    "STRATEGY_ORDER",
]
