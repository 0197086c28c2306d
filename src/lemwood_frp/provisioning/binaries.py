"""Copy bundled executables into writable storage and make them runnable."""

from __future__ import annotations

import logging
import os
import stat
import subprocess
import tempfile
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Any, Final

from lemwood_frp.config.settings import DEFAULT_MIN_BINARY_BYTES
from lemwood_frp.errors import ProvisionError
from lemwood_frp.platform.arch import Architecture
from lemwood_frp.provisioning.assets import AssetSource, asset_path

logger = logging.getLogger(__name__)

ELF_MAGIC: Final[bytes] = b"\x7fELF"
COPY_CHUNK_BYTES: Final[int] = 8 * 1024
HEADER_PREVIEW_BYTES: Final[int] = 16
EXECUTABLE_MODE: Final[int] = 0o755


@dataclass(frozen=True, slots=True)
class BinaryReport:
    """Read-only facts about a file on disk, used by readiness checks and diagnostics."""

    path: Path
    exists: bool
    executable: bool = False
    size_bytes: int = 0
    is_elf: bool = False
    header_hex: str = ""

    @property
    def usable(self) -> bool:
        return self.exists and self.executable


def is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


def read_header(path: Path, size: int = HEADER_PREVIEW_BYTES) -> bytes:
    with path.open("rb") as handle:
        return handle.read(size)


def inspect_binary(path: Path) -> BinaryReport:
    """Return a ``BinaryReport`` for ``path`` without modifying anything."""

    if not path.is_file():
        return BinaryReport(path=path, exists=False)
    try:
        header = read_header(path)
        size = path.stat().st_size
    except OSError as exc:
        logger.warning("could not read binary header: %s", exc, extra={"data": {"path": path}})
        return BinaryReport(path=path, exists=True, executable=is_executable(path))
    return BinaryReport(
        path=path,
        exists=True,
        executable=is_executable(path),
        size_bytes=size,
        is_elf=header[: len(ELF_MAGIC)] == ELF_MAGIC,
        header_hex=" ".join(f"0x{byte:02X}" for byte in header),
    )


def _default_set_executable(path: Path) -> bool:
    mode = path.stat().st_mode
    path.chmod(mode | EXECUTABLE_MODE | stat.S_IXUSR)
    return os.access(path, os.X_OK)


class BinaryProvisioner:
    """Materializes architecture-specific executables from an asset source.

    ``ensure`` is idempotent: a file that already passes validation is never
    copied again.
    """

    def __init__(
        self,
        assets: AssetSource,
        *,
        min_size_bytes: int = DEFAULT_MIN_BINARY_BYTES,
        set_executable: Callable[[Path], bool] | None = None,
        command_runner: Callable[..., subprocess.CompletedProcess[str]] | None = None,
    ) -> None:
        if min_size_bytes < 0:
            raise ValueError("min_size_bytes must be >= 0")
        self._assets = assets
        self._min_size = min_size_bytes
        self._set_executable = set_executable or _default_set_executable
        self._run = command_runner or self._default_run
        self._locks_guard = Lock()
        self._target_locks: dict[str, Lock] = {}

    @property
    def min_size_bytes(self) -> int:
        return self._min_size

    def is_valid(self, path: Path) -> bool:
        """True when ``path`` exceeds the size threshold and starts with the ELF magic."""

        if not path.is_file():
            return False
        try:
            if path.stat().st_size <= self._min_size:
                return False
            return read_header(path, len(ELF_MAGIC)) == ELF_MAGIC
        except OSError:
            return False

    def ensure(
        self,
        name: str,
        arch: Architecture,
        *,
        category: str,
        target_dir: Path,
    ) -> Path:
        """Return the path of a valid, executable copy of ``<category>/<arch>/<name>``.

        Concurrent calls for the same target are serialized; the second caller
        finds the first caller's copy already valid.
        """

        target = target_dir / name
        with self._lock_for(target):
            return self._ensure_locked(target, asset_path(category, arch.value, name))

    def _lock_for(self, target: Path) -> Lock:
        key = str(target.absolute())
        with self._locks_guard:
            return self._target_locks.setdefault(key, Lock())

    def _ensure_locked(self, target: Path, source: str) -> Path:
        if self.is_valid(target):
            if not is_executable(target):
                logger.info("restoring execute permission", extra={"data": {"path": target}})
                self.make_executable(target)
            return target

        if target.exists():
            logger.warning(
                "existing binary failed validation; re-copying",
                extra={"data": {"path": target, "header": inspect_binary(target).header_hex}},
            )
            target.unlink(missing_ok=True)

        try:
            copied = self.copy_asset(source, target)
        except OSError as exc:
            raise ProvisionError(f"failed to copy {source} to {target}: {exc}") from exc

        if not self.is_valid(target):
            raise ProvisionError(
                f"copied binary is invalid: {target} (size_bytes={copied} "
                f"min_bytes={self._min_size} header={inspect_binary(target).header_hex})"
            )
        self.make_executable(target)
        logger.info(
            "provisioned binary",
            extra={"data": {"source": source, "path": target, "size_bytes": copied}},
        )
        return target

    def copy_asset(self, source: str, target: Path) -> int:
        """Copy ``source`` to ``target`` through a private temp file; return the byte count.

        Raises ``ProvisionError`` when the asset does not exist; other I/O
        failures propagate as ``OSError``.
        """

        try:
            reader = self._assets.open(source)
        except FileNotFoundError as exc:
            raise ProvisionError(f"bundled asset not found: {source}") from exc

        total = 0
        with reader:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
            temp_path = Path(temp_name)
            try:
                with os.fdopen(fd, "wb") as writer:
                    while True:
                        chunk = reader.read(COPY_CHUNK_BYTES)
                        if not chunk:
                            break
                        writer.write(chunk)
                        total += len(chunk)
                temp_path.replace(target)
            except BaseException:
                temp_path.unlink(missing_ok=True)
                raise
        logger.debug("copied asset", extra={"data": {"source": source, "path": target, "bytes": total}})
        return total

    def make_executable(self, path: Path) -> None:
        """Set the execute bit, falling back to ``chmod 755`` when the API call fails."""

        try:
            if self._set_executable(path):
                return
            logger.warning("set executable reported failure", extra={"data": {"path": path}})
        except OSError as exc:
            logger.warning(
                "set executable raised: %s",
                exc,
                extra={"data": {"path": path}},
            )

        args = ["chmod", "755", str(path)]
        try:
            result = self._run(args, capture_output=True, text=True, check=False)
        except OSError as exc:
            raise ProvisionError(f"chmod fallback could not run for {path}: {exc}") from exc
        stderr = (result.stderr or "").strip()
        if result.returncode != 0:
            raise ProvisionError(
                f"chmod 755 failed for {path} (returncode={result.returncode}) stderr={stderr}"
            )
        if not is_executable(path):
            raise ProvisionError(f"{path} is still not executable after chmod 755")
        logger.info("execute permission set via chmod fallback", extra={"data": {"path": path}})

    @staticmethod
    def _default_run(
        *args: Any,
        **kwargs: Any,
    ) -> subprocess.CompletedProcess[str]:  # pragma: no cover - thin wrapper
        return subprocess.run(*args, **kwargs)  # noqa: S603


__all__ = [
    "BinaryProvisioner",
    "BinaryReport",
    "COPY_CHUNK_BYTES",
    "ELF_MAGIC",
    "inspect_binary",
    "is_executable",
]
