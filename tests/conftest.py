from __future__ import annotations

import subprocess
import sys
from collections.abc import Callable, Iterator
from pathlib import Path
from subprocess import CompletedProcess

import pytest

from lemwood_frp.config.settings import LauncherSettings
from lemwood_frp.domain.proxy import ProxyConfig
from lemwood_frp.infrastructure.state.config_store import InMemoryConfigStore
from lemwood_frp.observability.sink import LogLevel
from lemwood_frp.runtime.service import LauncherService

ELF_HEADER = b"\x7fELF\x02\x01\x01\x00"
MIN_BINARY_BYTES = 1024
LONG_RUNNING = "import time\nprint('start frpc success', flush=True)\ntime.sleep(60)\n"


def make_elf(size: int = 4096) -> bytes:
    return ELF_HEADER + b"\x00" * (size - len(ELF_HEADER))


class RecordingSink:
    def __init__(self) -> None:
        self.records: list[tuple[LogLevel, str, str, str | None]] = []

    def emit(self, level: LogLevel, tag: str, message: str, config_id: str | None = None) -> None:
        self.records.append((level, tag, message, config_id))

    def messages(self, level: LogLevel | None = None) -> list[str]:
        return [message for lvl, _, message, _ in self.records if level is None or lvl is level]


class RecordingRunner:
    def __init__(self, returncode: int = 0, side_effect: Callable[[list[str]], None] | None = None) -> None:
        self.commands: list[tuple[list[str], dict[str, object]]] = []
        self.returncode = returncode
        self.side_effect = side_effect

    def __call__(self, args: list[str], **kwargs: object) -> CompletedProcess[str]:
        self.commands.append((list(args), dict(kwargs)))
        if self.side_effect is not None:
            self.side_effect(list(args))
        stderr = "" if self.returncode == 0 else "boom"
        return CompletedProcess(args=args, returncode=self.returncode, stdout="", stderr=stderr)


class PythonPopen:
    """Stands in for ``subprocess.Popen``: records argv and runs a Python script instead."""

    def __init__(self, script: str, *, fail: Callable[[list[str]], bool] | None = None) -> None:
        self.script = script
        self.fail = fail
        self.calls: list[tuple[list[str], dict[str, object]]] = []
        self.processes: list[subprocess.Popen[str]] = []

    def __call__(self, argv: list[str], **kwargs: object) -> subprocess.Popen[str]:
        self.calls.append((list(argv), dict(kwargs)))
        if self.fail is not None and self.fail(list(argv)):
            raise OSError(8, "Exec format error")
        process = subprocess.Popen([sys.executable, "-c", self.script], **kwargs)  # noqa: S603
        self.processes.append(process)
        return process

    def cleanup(self) -> None:
        for process in self.processes:
            if process.poll() is None:
                process.kill()
                process.wait()


@pytest.fixture
def elf_bytes() -> Callable[..., bytes]:
    return make_elf


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def runner() -> RecordingRunner:
    return RecordingRunner()


@pytest.fixture
def make_runner() -> type[RecordingRunner]:
    return RecordingRunner


@pytest.fixture
def python_popen() -> Iterator[Callable[..., PythonPopen]]:
    created: list[PythonPopen] = []

    def factory(script: str, *, fail: Callable[[list[str]], bool] | None = None) -> PythonPopen:
        popen = PythonPopen(script, fail=fail)
        created.append(popen)
        return popen

    yield factory
    for popen in created:
        popen.cleanup()


@pytest.fixture
def asset_root(tmp_path: Path) -> Path:
    root = tmp_path / "assets"
    root.mkdir()
    return root


@pytest.fixture
def write_asset(asset_root: Path) -> Callable[..., Path]:
    def write(category: str, arch: str, name: str, payload: bytes | None = None) -> Path:
        path = asset_root / category / arch / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(make_elf() if payload is None else payload)
        return path

    return write


@pytest.fixture
def settings(tmp_path: Path, asset_root: Path) -> LauncherSettings:
    return LauncherSettings(
        _env_file=None,
        data_dir=tmp_path / "data",
        assets_dir=asset_root,
        host_abis_raw="arm64-v8a",
        min_binary_bytes=MIN_BINARY_BYTES,
        stop_timeout_seconds=3.0,
        max_processes=4,
    )


@pytest.fixture
def frp_assets(write_asset: Callable[..., Path]) -> None:
    write_asset("frp", "arm64", "frpc")
    write_asset("frp", "arm64", "frps")


@pytest.fixture
def make_service(
    settings: LauncherSettings,
    runner: RecordingRunner,
    sink: RecordingSink,
    python_popen: Callable[..., PythonPopen],
) -> Iterator[Callable[..., LauncherService]]:
    services: list[LauncherService] = []

    def build(
        configs: list[ProxyConfig],
        *,
        script: str = LONG_RUNNING,
        fail: Callable[[list[str]], bool] | None = None,
        overrides: dict[str, object] | None = None,
    ) -> LauncherService:
        service = LauncherService(
            settings.model_copy(update=overrides or {}),
            InMemoryConfigStore(configs),
            sink=sink,
            popen=python_popen(script, fail=fail),
            command_runner=runner,
        )
        services.append(service)
        return service

    yield build
    for service in services:
        service.shutdown()
