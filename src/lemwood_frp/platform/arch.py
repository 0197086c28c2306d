"""Host CPU architecture detection."""

from __future__ import annotations

import logging
import platform
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Final

logger = logging.getLogger(__name__)


class Architecture(str, Enum):
    """Target architectures we ship binaries for, in preference order."""

    ARM64 = "arm64"
    ARMV7 = "armv7"
    X86_64 = "x86_64"
    X86 = "x86"


ARCHITECTURE_PRIORITY: Final[tuple[Architecture, ...]] = (
    Architecture.ARM64,
    Architecture.ARMV7,
    Architecture.X86_64,
    Architecture.X86,
)
DEFAULT_ARCHITECTURE: Final[Architecture] = Architecture.ARM64

# Android ABI names first, then what ``uname -m`` reports on Linux hosts.
_ABI_ALIASES: Final[dict[str, Architecture]] = {
    "arm64-v8a": Architecture.ARM64,
    "arm64": Architecture.ARM64,
    "aarch64": Architecture.ARM64,
    "armv8l": Architecture.ARMV7,
    "armeabi-v7a": Architecture.ARMV7,
    "armv7": Architecture.ARMV7,
    "armv7l": Architecture.ARMV7,
    "x86_64": Architecture.X86_64,
    "amd64": Architecture.X86_64,
    "x86": Architecture.X86,
    "i386": Architecture.X86,
    "i686": Architecture.X86,
}


@dataclass(frozen=True, slots=True)
class ArchitectureResolution:
    """Result of mapping reported ABIs onto a supported architecture."""

    architecture: Architecture
    abis: tuple[str, ...]
    fallback: bool = False


def normalize_abi(abi: str) -> Architecture | None:
    return _ABI_ALIASES.get(abi.strip().lower())


def resolve_architecture(abis: Sequence[str]) -> ArchitectureResolution:
    """Pick the highest-priority architecture any reported ABI maps to.

    Returns ``arm64`` with ``fallback=True`` when nothing matches; binaries may
    then fail to run on the host, which is reported rather than corrected.
    """

    reported = tuple(abis)
    candidates = {arch for arch in (normalize_abi(abi) for abi in reported) if arch is not None}
    for arch in ARCHITECTURE_PRIORITY:
        if arch in candidates:
            return ArchitectureResolution(architecture=arch, abis=reported)

    logger.warning(
        "no supported architecture in reported ABIs; defaulting to %s",
        DEFAULT_ARCHITECTURE.value,
        extra={"data": {"abis": list(reported)}},
    )
    return ArchitectureResolution(architecture=DEFAULT_ARCHITECTURE, abis=reported, fallback=True)


def host_abis(override: Iterable[str] = ()) -> tuple[str, ...]:
    """Return the ABI list to resolve: the override when given, else the host machine."""

    explicit = tuple(abi for abi in override if abi)
    if explicit:
        return explicit
    machine = platform.machine()
    return (machine,) if machine else ()


__all__ = [
    "ARCHITECTURE_PRIORITY",
    "Architecture",
    "ArchitectureResolution",
    "DEFAULT_ARCHITECTURE",
    "host_abis",
    "normalize_abi",
    "resolve_architecture",
]
