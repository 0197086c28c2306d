"""Read-only bundled asset sources addressed by ``<category>/<arch>/<name>``."""

from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import BinaryIO, Protocol


def asset_path(category: str, arch: str, name: str) -> str:
    return PurePosixPath(category, arch, name).as_posix()


class AssetSource(Protocol):
    """Opens bundled payloads for copying into writable storage."""

    def open(self, path: str) -> BinaryIO:
        """Return a binary stream; raise ``FileNotFoundError`` when absent."""

    def exists(self, path: str) -> bool:
        """Return True when the asset is bundled."""


class DirectoryAssetSource:
    """Asset source backed by a directory tree on disk."""

    def __init__(self, root: Path) -> None:
        self._root = root

    @property
    def root(self) -> Path:
        return self._root

    def _resolve(self, path: str) -> Path:
        relative = PurePosixPath(path)
        if relative.is_absolute() or ".." in relative.parts:
            raise ValueError(f"asset path must be relative without '..': {path}")
        return self._root.joinpath(*relative.parts)

    def open(self, path: str) -> BinaryIO:
        return self._resolve(path).open("rb")

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()


__all__ = ["AssetSource", "DirectoryAssetSource", "asset_path"]
