from __future__ import annotations

from pathlib import Path

import pytest

from lemwood_frp.domain.run_state import LaunchStrategy
from lemwood_frp.platform.arch import Architecture
from lemwood_frp.provisioning.assets import DirectoryAssetSource
from lemwood_frp.provisioning.binaries import BinaryProvisioner, is_executable
from lemwood_frp.provisioning.bootstrap import (
    FULL_ENV_DIRS,
    FULL_ENV_TOOLS,
    SandboxBootstrapper,
)


@pytest.fixture
def bootstrapper(tmp_path: Path, asset_root: Path) -> SandboxBootstrapper:
    assets = DirectoryAssetSource(asset_root)
    provisioner = BinaryProvisioner(assets, min_size_bytes=1024)
    return SandboxBootstrapper(
        provisioner,
        assets,
        full_env_root=tmp_path / "termux",
        root_emulation_dir=tmp_path / "proot",
    )


def _write_tools(write_asset, tools=FULL_ENV_TOOLS) -> None:
    for tool in tools:
        write_asset("termux", "arm64", tool)


def test_readiness_is_false_before_preparation(bootstrapper: SandboxBootstrapper) -> None:
    full_env = bootstrapper.full_environment()
    root_emulation = bootstrapper.root_emulation()

    assert full_env.ready is False
    assert full_env.root_exists is False
    assert "does not exist" in full_env.describe()
    assert root_emulation.ready is False
    assert root_emulation.kind is LaunchStrategy.ROOT_EMULATION


def test_prepare_full_environment_builds_ready_tree(bootstrapper, write_asset) -> None:
    _write_tools(write_asset)
    write_asset("termux", "arm64", "startup.sh", b"#!/bin/sh\nexit 0\n")

    report = bootstrapper.prepare_full_environment(Architecture.ARM64)

    root = bootstrapper.full_env_root
    assert report.ready is True
    assert report.skipped == ()
    assert report.error is None
    assert all((root / name).is_dir() for name in FULL_ENV_DIRS)
    assert all(is_executable(root / "bin" / tool) for tool in FULL_ENV_TOOLS)
    assert bootstrapper.startup_script.read_bytes() == b"#!/bin/sh\nexit 0\n"
    assert is_executable(bootstrapper.startup_script)
    assert bootstrapper.full_environment().ready is True


def test_environment_script_exports_sandbox_paths(bootstrapper, write_asset) -> None:
    _write_tools(write_asset)

    bootstrapper.prepare_full_environment(Architecture.ARM64)

    content = bootstrapper.environment_script.read_text(encoding="utf-8")
    root = bootstrapper.full_env_root
    for name in ("PATH", "LD_LIBRARY_PATH", "TERMUX_PREFIX", "HOME", "TMPDIR"):
        assert f"export {name}=" in content
    assert f"export HOME={root / 'home'}" in content


def test_missing_startup_asset_generates_default_script(bootstrapper, write_asset) -> None:
    _write_tools(write_asset)

    report = bootstrapper.prepare_full_environment(Architecture.ARM64)

    assert report.ready is True
    script = bootstrapper.startup_script.read_text(encoding="utf-8")
    assert script.startswith("#!/bin/sh\n")
    assert str(bootstrapper.environment_script) in script


def test_missing_tools_are_skipped_and_block_readiness(bootstrapper, write_asset) -> None:
    _write_tools(write_asset, tools=("sh", "ls", "cat"))

    report = bootstrapper.prepare_full_environment(Architecture.ARM64)

    assert report.skipped == ("bash", "echo")
    assert report.ready is False
    assert report.error is not None
    assert bootstrapper.interpreter in bootstrapper.full_environment().missing


def test_missing_optional_tool_leaves_full_environment_usable(bootstrapper, write_asset) -> None:
    _write_tools(write_asset, tools=("bash", "sh", "ls", "cat"))

    report = bootstrapper.prepare_full_environment(Architecture.ARM64)

    assert report.skipped == ("echo",)
    assert report.ready is True
    assert report.error is None
    assert not (bootstrapper.full_env_root / "bin" / "echo").exists()
    assert bootstrapper.full_environment().ready is True


def test_readiness_is_recomputed_on_every_query(bootstrapper, write_asset) -> None:
    _write_tools(write_asset)
    bootstrapper.prepare_full_environment(Architecture.ARM64)
    assert bootstrapper.full_environment().ready is True

    bootstrapper.interpreter.unlink()

    assert bootstrapper.full_environment().ready is False


def test_prepare_root_emulation_provisions_proot(bootstrapper, write_asset) -> None:
    write_asset("proot", "armv7", "proot")

    report = bootstrapper.prepare_root_emulation(Architecture.ARMV7)

    assert report.ready is True
    assert is_executable(bootstrapper.root_emulation_binary)
    assert bootstrapper.root_emulation().ready is True


def test_prepare_root_emulation_reports_missing_asset(bootstrapper) -> None:
    report = bootstrapper.prepare_root_emulation(Architecture.ARM64)

    assert report.ready is False
    assert "proot/arm64/proot" in (report.error or "")
