"""Preparation and readiness checks for the alternative execution sandboxes."""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final

from lemwood_frp.domain.run_state import LaunchStrategy
from lemwood_frp.errors import ProvisionError
from lemwood_frp.platform.arch import Architecture
from lemwood_frp.provisioning.assets import AssetSource, asset_path
from lemwood_frp.provisioning.binaries import BinaryProvisioner, is_executable

logger = logging.getLogger(__name__)

FULL_ENV_CATEGORY: Final[str] = "termux"
ROOT_EMULATION_CATEGORY: Final[str] = "proot"
ROOT_EMULATION_BINARY: Final[str] = "proot"

FULL_ENV_DIRS: Final[tuple[str, ...]] = ("bin", "lib", "etc", "usr", "tmp", "home")
FULL_ENV_TOOLS: Final[tuple[str, ...]] = ("bash", "sh", "ls", "cat", "echo")
INTERPRETER: Final[str] = "bin/bash"
ENVIRONMENT_SCRIPT: Final[str] = "etc/environment.sh"
STARTUP_SCRIPT: Final[str] = "startup.sh"

_ANDROID_SHELL = Path("/system/bin/sh")


def system_shell() -> str:
    """Return the host's POSIX shell, preferring Android's."""

    return str(_ANDROID_SHELL) if _ANDROID_SHELL.exists() else "/bin/sh"


@dataclass(frozen=True, slots=True)
class SandboxMarker:
    """One file whose presence (and optionally execute bit) gates readiness."""

    path: Path
    exists: bool
    executable: bool
    requires_executable: bool

    @property
    def satisfied(self) -> bool:
        return self.exists and (self.executable or not self.requires_executable)


@dataclass(frozen=True, slots=True)
class SandboxDescriptor:
    """Point-in-time view of one candidate execution environment."""

    kind: LaunchStrategy
    root: Path
    root_exists: bool
    markers: tuple[SandboxMarker, ...] = ()

    @property
    def ready(self) -> bool:
        return self.root_exists and all(marker.satisfied for marker in self.markers)

    @property
    def missing(self) -> tuple[Path, ...]:
        return tuple(marker.path for marker in self.markers if not marker.satisfied)

    def describe(self) -> str:
        if self.ready:
            return f"{self.kind.value} ready at {self.root}"
        if not self.root_exists:
            return f"{self.kind.value} root {self.root} does not exist"
        missing = ", ".join(str(path) for path in self.missing)
        return f"{self.kind.value} missing or not executable: {missing}"


@dataclass(frozen=True, slots=True)
class BootstrapReport:
    """Outcome of preparing one sandbox."""

    kind: LaunchStrategy
    ready: bool
    skipped: tuple[str, ...] = field(default_factory=tuple)
    error: str | None = None


def _marker(path: Path, *, requires_executable: bool) -> SandboxMarker:
    return SandboxMarker(
        path=path,
        exists=path.is_file(),
        executable=is_executable(path),
        requires_executable=requires_executable,
    )


class SandboxBootstrapper:
    """Builds the full-environment tree and provisions the root-emulation tool.

    Readiness queries touch the filesystem on every call; nothing is cached
    across launches. Preparation is never retried here.
    """

    def __init__(
        self,
        provisioner: BinaryProvisioner,
        assets: AssetSource,
        *,
        full_env_root: Path,
        root_emulation_dir: Path,
    ) -> None:
        self._provisioner = provisioner
        self._assets = assets
        self._full_env_root = full_env_root
        self._root_emulation_dir = root_emulation_dir

    @property
    def full_env_root(self) -> Path:
        return self._full_env_root

    @property
    def root_emulation_binary(self) -> Path:
        return self._root_emulation_dir / ROOT_EMULATION_BINARY

    @property
    def interpreter(self) -> Path:
        return self._full_env_root / INTERPRETER

    @property
    def environment_script(self) -> Path:
        return self._full_env_root / ENVIRONMENT_SCRIPT

    @property
    def startup_script(self) -> Path:
        return self._full_env_root / STARTUP_SCRIPT

    # --- Readiness ---

    def full_environment(self) -> SandboxDescriptor:
        return SandboxDescriptor(
            kind=LaunchStrategy.FULL_ENVIRONMENT,
            root=self._full_env_root,
            root_exists=self._full_env_root.is_dir(),
            markers=(
                _marker(self.interpreter, requires_executable=True),
                _marker(self.environment_script, requires_executable=False),
                _marker(self.startup_script, requires_executable=True),
            ),
        )

    def root_emulation(self) -> SandboxDescriptor:
        return SandboxDescriptor(
            kind=LaunchStrategy.ROOT_EMULATION,
            root=self._root_emulation_dir,
            root_exists=self._root_emulation_dir.is_dir(),
            markers=(_marker(self.root_emulation_binary, requires_executable=True),),
        )

    # --- Preparation ---

    def prepare_full_environment(self, arch: Architecture) -> BootstrapReport:
        root = self._full_env_root
        logger.info("preparing full environment", extra={"data": {"root": root, "arch": arch}})
        try:
            for name in FULL_ENV_DIRS:
                (root / name).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.error("could not create full environment tree: %s", exc, extra={"data": {"root": root}})
            return BootstrapReport(kind=LaunchStrategy.FULL_ENVIRONMENT, ready=False, error=str(exc))

        skipped = self._install_tools(arch)
        try:
            self.environment_script.write_text(self.render_environment_script(), encoding="utf-8")
            self._install_startup_script(arch)
        except (OSError, ProvisionError) as exc:
            logger.error("full environment scripts failed: %s", exc, extra={"data": {"root": root}})
            return BootstrapReport(
                kind=LaunchStrategy.FULL_ENVIRONMENT,
                ready=False,
                skipped=skipped,
                error=str(exc),
            )

        descriptor = self.full_environment()
        if not descriptor.ready:
            logger.warning("full environment incomplete: %s", descriptor.describe())
        return BootstrapReport(
            kind=LaunchStrategy.FULL_ENVIRONMENT,
            ready=descriptor.ready,
            skipped=skipped,
            error=None if descriptor.ready else descriptor.describe(),
        )

    def prepare_root_emulation(self, arch: Architecture) -> BootstrapReport:
        try:
            self._provisioner.ensure(
                ROOT_EMULATION_BINARY,
                arch,
                category=ROOT_EMULATION_CATEGORY,
                target_dir=self._root_emulation_dir,
            )
        except ProvisionError as exc:
            logger.warning("root emulation unavailable: %s", exc)
            return BootstrapReport(kind=LaunchStrategy.ROOT_EMULATION, ready=False, error=str(exc))
        descriptor = self.root_emulation()
        return BootstrapReport(
            kind=LaunchStrategy.ROOT_EMULATION,
            ready=descriptor.ready,
            error=None if descriptor.ready else descriptor.describe(),
        )

    def render_environment_script(self) -> str:
        root = self._full_env_root
        lines = [
            f"export PATH={shlex.quote(str(root / 'bin'))}:\"$PATH\"",
            f"export LD_LIBRARY_PATH={shlex.quote(str(root / 'lib'))}:\"$LD_LIBRARY_PATH\"",
            f"export TERMUX_PREFIX={shlex.quote(str(root))}",
            f"export HOME={shlex.quote(str(root / 'home'))}",
            f"export TMPDIR={shlex.quote(str(root / 'tmp'))}",
        ]
        return "\n".join(lines) + "\n"

    def render_startup_script(self) -> str:
        return (
            "#!/bin/sh\n"
            f". {shlex.quote(str(self.environment_script))}\n"
            'mkdir -p "$HOME" "$TMPDIR"\n'
        )

    def _install_tools(self, arch: Architecture) -> tuple[str, ...]:
        skipped: list[str] = []
        for tool in FULL_ENV_TOOLS:
            try:
                self._provisioner.ensure(
                    tool,
                    arch,
                    category=FULL_ENV_CATEGORY,
                    target_dir=self._full_env_root / "bin",
                )
            except ProvisionError as exc:
                logger.warning("skipping full environment tool %s: %s", tool, exc)
                skipped.append(tool)
        return tuple(skipped)

    def _install_startup_script(self, arch: Architecture) -> None:
        source = asset_path(FULL_ENV_CATEGORY, arch.value, STARTUP_SCRIPT)
        if self._assets.exists(source):
            self._provisioner.copy_asset(source, self.startup_script)
        else:
            logger.info("no bundled startup script; writing default", extra={"data": {"source": source}})
            self.startup_script.write_text(self.render_startup_script(), encoding="utf-8")
        self._provisioner.make_executable(self.startup_script)


__all__ = [
    "BootstrapReport",
    "ENVIRONMENT_SCRIPT",
    "FULL_ENV_DIRS",
    "FULL_ENV_TOOLS",
    "INTERPRETER",
    "STARTUP_SCRIPT",
    "SandboxBootstrapper",
    "SandboxDescriptor",
    "SandboxMarker",
    "system_shell",
]
