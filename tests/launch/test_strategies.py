from __future__ import annotations

import subprocess
from collections.abc import Callable
from pathlib import Path

import pytest

from lemwood_frp.domain.run_state import LaunchStrategy
from lemwood_frp.launch.strategies import (
    STRATEGY_ORDER,
    LaunchRequest,
    LaunchStrategySelector,
)
from lemwood_frp.observability.sink import LogLevel
from lemwood_frp.provisioning.assets import DirectoryAssetSource
from lemwood_frp.provisioning.binaries import BinaryProvisioner
from lemwood_frp.provisioning.bootstrap import SandboxBootstrapper, system_shell


class FakeProcess:
    def __init__(self, argv: list[str]) -> None:
        self.argv = argv
        self.pid = 4242


class RecordingPopen:
    def __init__(self, fail: Callable[[list[str]], bool] = lambda argv: False) -> None:
        self.calls: list[tuple[list[str], dict[str, object]]] = []
        self.fail = fail

    def __call__(self, argv: list[str], **kwargs: object) -> FakeProcess:
        self.calls.append((list(argv), dict(kwargs)))
        if self.fail(argv):
            raise OSError(13, "Permission denied")
        return FakeProcess(argv)


def _executable(path: Path, content: bytes = b"\x7fELF") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    path.chmod(0o755)
    return path


@pytest.fixture
def bootstrapper(tmp_path: Path, asset_root: Path) -> SandboxBootstrapper:
    assets = DirectoryAssetSource(asset_root)
    return SandboxBootstrapper(
        BinaryProvisioner(assets, min_size_bytes=0),
        assets,
        full_env_root=tmp_path / "termux",
        root_emulation_dir=tmp_path / "proot",
    )


@pytest.fixture
def request_(tmp_path: Path) -> LaunchRequest:
    exec_dir = tmp_path / "bin"
    config_dir = tmp_path / "configs"
    config_dir.mkdir()
    config_file = config_dir / "cfgA.toml"
    config_file.write_text("bindPort = 7000\n", encoding="utf-8")
    return LaunchRequest(
        config_id="cfgA",
        binary=_executable(exec_dir / "frpc"),
        config_file=config_file,
        exec_dir=exec_dir,
        config_dir=config_dir,
    )


def _make_full_environment_ready(bootstrapper: SandboxBootstrapper) -> None:
    _executable(bootstrapper.interpreter)
    bootstrapper.environment_script.parent.mkdir(parents=True, exist_ok=True)
    bootstrapper.environment_script.write_text(bootstrapper.render_environment_script(), encoding="utf-8")
    _executable(bootstrapper.startup_script, b"#!/bin/sh\n")


def _make_root_emulation_ready(bootstrapper: SandboxBootstrapper) -> None:
    _executable(bootstrapper.root_emulation_binary)


def _selector(bootstrapper, popen, runner, sink, **kwargs) -> LaunchStrategySelector:
    return LaunchStrategySelector(
        bootstrapper,
        popen=popen,
        command_runner=runner,
        base_env={"PATH": "/usr/bin", "LANG": "C"},
        sink=sink,
        **kwargs,
    )


def test_strategy_order_is_fixed() -> None:
    assert STRATEGY_ORDER == (
        LaunchStrategy.FULL_ENVIRONMENT,
        LaunchStrategy.ROOT_EMULATION,
        LaunchStrategy.DIRECT,
    )


def test_full_environment_wins_and_direct_is_never_tried(bootstrapper, request_, runner, sink) -> None:
    _make_full_environment_ready(bootstrapper)
    _make_root_emulation_ready(bootstrapper)
    popen = RecordingPopen()

    result = _selector(bootstrapper, popen, runner, sink).launch(request_)

    assert result.winner is not None
    assert result.winner.strategy is LaunchStrategy.FULL_ENVIRONMENT
    assert [attempt.strategy for attempt in result.attempts] == [LaunchStrategy.FULL_ENVIRONMENT]
    assert len(popen.calls) == 1
    argv, kwargs = popen.calls[0]
    assert argv[:2] == [str(bootstrapper.interpreter), "-c"]
    assert f"exec {request_.binary} -c {request_.config_file}" in argv[2]
    assert kwargs["stderr"] is subprocess.STDOUT
    assert kwargs["stdout"] is subprocess.PIPE
    assert kwargs["text"] is True
    assert kwargs["cwd"] == str(request_.exec_dir)
    env = kwargs["env"]
    assert env["LANG"] == "C"
    assert env["TERMUX_PREFIX"] == str(bootstrapper.full_env_root)
    assert env["PATH"].startswith(f"{bootstrapper.full_env_root}/bin:")
    assert env["PATH"].endswith(":/usr/bin")
    assert env["SHELL"] == str(bootstrapper.interpreter)
    assert runner.commands[0][0] == [system_shell(), str(bootstrapper.startup_script)]


def test_root_emulation_used_when_full_environment_missing(bootstrapper, request_, runner, sink) -> None:
    _make_root_emulation_ready(bootstrapper)
    popen = RecordingPopen()

    result = _selector(bootstrapper, popen, runner, sink).launch(request_)

    assert result.winner is not None
    assert result.winner.strategy is LaunchStrategy.ROOT_EMULATION
    assert result.attempts[0].strategy is LaunchStrategy.FULL_ENVIRONMENT
    assert result.attempts[0].error is not None
    argv, kwargs = popen.calls[0]
    assert argv == [
        str(bootstrapper.root_emulation_binary),
        "-r",
        "/",
        "-b",
        str(request_.exec_dir),
        "-b",
        str(request_.config_dir),
        "-w",
        str(request_.exec_dir),
        str(request_.binary),
        "-c",
        str(request_.config_file),
    ]
    assert kwargs["env"]["PROOT_NO_SECCOMP"] == "1"
    assert Path(kwargs["env"]["PROOT_TMP_DIR"]).is_dir()
    assert runner.commands == []


def test_spawn_error_falls_back_to_next_strategy(bootstrapper, request_, runner, sink) -> None:
    _make_full_environment_ready(bootstrapper)
    _make_root_emulation_ready(bootstrapper)
    interpreter = str(bootstrapper.interpreter)
    popen = RecordingPopen(fail=lambda argv: argv[0] == interpreter)

    result = _selector(bootstrapper, popen, runner, sink).launch(request_)

    assert [attempt.strategy for attempt in result.attempts] == [
        LaunchStrategy.FULL_ENVIRONMENT,
        LaunchStrategy.ROOT_EMULATION,
    ]
    assert "Permission denied" in (result.attempts[0].error or "")
    assert result.winner is not None
    assert result.winner.strategy is LaunchStrategy.ROOT_EMULATION


def test_direct_used_when_no_sandbox_ready(bootstrapper, request_, runner, sink) -> None:
    popen = RecordingPopen()

    result = _selector(bootstrapper, popen, runner, sink).launch(request_)

    assert result.winner is not None
    assert result.winner.strategy is LaunchStrategy.DIRECT
    assert popen.calls[0][0] == [str(request_.binary), "-c", str(request_.config_file)]


def test_unusable_root_emulation_temp_dir_falls_back_to_direct(bootstrapper, request_, runner, sink) -> None:
    _make_root_emulation_ready(bootstrapper)
    (bootstrapper.root_emulation_binary.parent / "tmp").write_text("not a directory", encoding="utf-8")
    popen = RecordingPopen()

    result = _selector(bootstrapper, popen, runner, sink).launch(request_)

    assert [attempt.strategy for attempt in result.attempts] == [
        LaunchStrategy.FULL_ENVIRONMENT,
        LaunchStrategy.ROOT_EMULATION,
        LaunchStrategy.DIRECT,
    ]
    assert "temp dir unavailable" in (result.attempts[1].error or "")
    assert result.winner is not None
    assert result.winner.strategy is LaunchStrategy.DIRECT
    assert len(popen.calls) == 1


def test_all_strategies_failing_yields_explicit_result(bootstrapper, request_, runner, sink) -> None:
    popen = RecordingPopen(fail=lambda argv: True)

    result = _selector(bootstrapper, popen, runner, sink).launch(request_)

    assert result.succeeded is False
    assert len(result.attempts) == 3
    message = result.error_message()
    assert message.startswith("all launch strategies failed")
    for strategy in STRATEGY_ORDER:
        assert strategy.value in message
    assert message in sink.messages(LogLevel.ERROR)


def test_binary_must_be_executable_before_any_attempt(bootstrapper, request_, runner, sink) -> None:
    request_.binary.chmod(0o644)
    popen = RecordingPopen()

    result = _selector(bootstrapper, popen, runner, sink).launch(request_)

    assert result.succeeded is False
    assert popen.calls == []
    assert "not executable" in (result.attempts[-1].error or "")


def test_failing_startup_script_is_only_a_warning(bootstrapper, request_, make_runner, sink) -> None:
    _make_full_environment_ready(bootstrapper)
    popen = RecordingPopen()

    result = _selector(bootstrapper, popen, make_runner(returncode=2), sink).launch(request_)

    assert result.winner is not None
    assert result.winner.strategy is LaunchStrategy.FULL_ENVIRONMENT
    assert any("startup script exited with 2" in message for message in sink.messages(LogLevel.WARNING))


def test_recommend_reflects_current_readiness(bootstrapper, runner, sink) -> None:
    selector = _selector(bootstrapper, RecordingPopen(), runner, sink)
    assert selector.recommend() is LaunchStrategy.DIRECT

    _make_root_emulation_ready(bootstrapper)
    assert selector.recommend() is LaunchStrategy.ROOT_EMULATION

    _make_full_environment_ready(bootstrapper)
    assert selector.recommend() is LaunchStrategy.FULL_ENVIRONMENT


def test_launch_command_render_is_shell_quoted(bootstrapper, request_, runner, sink) -> None:
    command = _selector(bootstrapper, RecordingPopen(), runner, sink).build_command(
        LaunchStrategy.DIRECT, request_
    )

    assert command.render() == f"{request_.binary} -c {request_.config_file}"
    assert dict(command.env) == {}
