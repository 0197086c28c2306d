"""Plain-text diagnostics report about the host, sandboxes and running processes."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from lemwood_frp.domain.proxy import ProxyRole
from lemwood_frp.domain.run_state import LaunchStrategy
from lemwood_frp.provisioning.binaries import BinaryReport, inspect_binary, is_executable
from lemwood_frp.provisioning.bootstrap import FULL_ENV_DIRS, FULL_ENV_TOOLS, SandboxDescriptor

if TYPE_CHECKING:
    from lemwood_frp.runtime.service import LauncherService

_ENV_EXPORTS = ("PATH", "LD_LIBRARY_PATH", "TERMUX_PREFIX", "HOME", "TMPDIR")

_STRATEGY_NOTES = {
    LaunchStrategy.FULL_ENVIRONMENT: "full environment is ready; binaries run with its shell and libraries",
    LaunchStrategy.ROOT_EMULATION: "full environment unavailable; proot will emulate a root filesystem",
    LaunchStrategy.DIRECT: "no sandbox is ready; binaries are executed directly",
}


def _flag(value: bool) -> str:
    return "yes" if value else "no"


def _section(title: str, lines: Iterable[str]) -> list[str]:
    return [f"== {title} ==", *(f"  {line}" for line in lines), ""]


def _describe_binary(report: BinaryReport) -> str:
    if not report.exists:
        return f"{report.path}: missing"
    return (
        f"{report.path}: size={report.size_bytes} executable={_flag(report.executable)} "
        f"elf={_flag(report.is_elf)} header=[{report.header_hex}]"
    )


def _environment_script_lines(path: Path) -> list[str]:
    if not path.is_file():
        return [f"{path}: missing"]
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        return [f"{path}: unreadable ({exc})"]
    missing = [name for name in _ENV_EXPORTS if f"export {name}=" not in content]
    if missing:
        return [f"{path}: missing exports {', '.join(missing)}"]
    return [f"{path}: ok ({len(content)} bytes)"]


def _full_environment_lines(descriptor: SandboxDescriptor, env_script: Path) -> list[str]:
    root = descriptor.root
    lines = [f"root: {root} exists={_flag(descriptor.root_exists)} ready={_flag(descriptor.ready)}"]
    for name in FULL_ENV_DIRS:
        lines.append(f"dir {name}/: {_flag((root / name).is_dir())}")
    for marker in descriptor.markers:
        lines.append(
            f"file {marker.path}: exists={_flag(marker.exists)} executable={_flag(marker.executable)}"
        )
    available = [tool for tool in FULL_ENV_TOOLS if is_executable(root / "bin" / tool)]
    lines.append(f"tools: {', '.join(available) if available else 'none'}")
    lines.extend(_environment_script_lines(env_script))
    return lines


def _directory_listing(path: Path) -> list[str]:
    if not path.is_dir():
        return [f"{path}: missing"]
    entries = sorted(path.iterdir())
    if not entries:
        return [f"{path}: empty"]
    lines = []
    for entry in entries:
        if entry.is_file():
            lines.append(f"{entry.name} size={entry.stat().st_size} executable={_flag(is_executable(entry))}")
        else:
            lines.append(f"{entry.name}/")
    return lines


def build_report(service: LauncherService) -> str:
    """Collect a read-only snapshot; nothing is provisioned or started."""

    settings = service.settings
    bootstrapper = service.bootstrapper
    resolution = service.architecture()
    full_env = bootstrapper.full_environment()
    root_emulation = bootstrapper.root_emulation()

    host = [
        f"reported ABIs: {', '.join(resolution.abis) if resolution.abis else 'none'}",
        f"resolved architecture: {resolution.architecture.value}"
        + (" (fallback)" if resolution.fallback else ""),
        f"data dir: {settings.data_dir}",
    ]

    proot = inspect_binary(bootstrapper.root_emulation_binary)
    proot_lines = [
        f"ready={_flag(root_emulation.ready)}",
        _describe_binary(proot),
    ]
    if proot.exists and proot.size_bytes <= service.provisioner.min_size_bytes:
        proot_lines.append(
            f"size {proot.size_bytes} is below the {service.provisioner.min_size_bytes} byte minimum"
        )

    binaries = [_describe_binary(inspect_binary(settings.exec_dir / role.executable)) for role in ProxyRole]

    processes = []
    for config_id, (state, handle) in sorted(service.registry.snapshot().items()):
        if handle is None:
            continue
        processes.append(
            f"{config_id}: phase={state.phase.value} pid={state.pid if state.pid else 'unknown'} "
            f"alive={_flag(handle.alive)} strategy={state.strategy.value if state.strategy else 'unknown'}"
        )

    recommended = service.selector.recommend()
    sections = [
        f"lemwood-frp diagnostics {datetime.now(UTC).isoformat()}",
        "",
        *_section("host", host),
        *_section("full environment", _full_environment_lines(full_env, bootstrapper.environment_script)),
        *_section("root emulation", proot_lines),
        *_section("binaries", binaries),
        *_section("execution directory", _directory_listing(settings.exec_dir)),
        *_section("running processes", processes or ["none"]),
        *_section("recommended strategy", [recommended.value, _STRATEGY_NOTES[recommended]]),
    ]
    return "\n".join(sections)


__all__ = ["build_report"]
