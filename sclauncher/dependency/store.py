"""Archive naming and on-disk layout for the sc dependency."""
from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path

MANIFEST_FILENAME = "versions.json"

# Manifest platform keys; anything that isn't macOS or Windows gets the linux build
_PLATFORM_SUFFIXES = {
    "osx": ("osx", ".zip"),
    "win32": ("win32", ".zip"),
}


def detect_platform() -> str:
    """Return the versions.json platform key for the running interpreter."""
    if sys.platform == "darwin":
        return "osx"
    if sys.platform == "win32":
        return "win32"
    return "linux"


@dataclass(frozen=True)
class DependencyDescriptor:
    """Which sc build to use.

    ``checksum`` is the manifest's sha1 and is only set when ``version`` was
    resolved from the manifest.
    """

    version: str
    platform: str
    checksum: str | None = None


class ArchiveStore:
    """Pure path and name computations for one (platform, version) pair."""

    def __init__(self, work_dir: str | Path, descriptor: DependencyDescriptor) -> None:
        self.work_dir = Path(work_dir)
        self.descriptor = descriptor

    def folder_name(self) -> str:
        suffix, _ = _PLATFORM_SUFFIXES.get(self.descriptor.platform, ("linux", ".tar.gz"))
        return f"sc-{self.descriptor.version}-{suffix}"

    def archive_name(self) -> str:
        _, ext = _PLATFORM_SUFFIXES.get(self.descriptor.platform, ("linux", ".tar.gz"))
        return self.folder_name() + ext

    def binary_path(self) -> Path:
        exe = ".exe" if self.descriptor.platform == "win32" else ""
        return self.work_dir / self.folder_name() / "bin" / f"sc{exe}"

    def archive_path(self) -> Path:
        return self.work_dir / self.archive_name()

    def manifest_path(self) -> Path:
        return self.work_dir / MANIFEST_FILENAME

    @property
    def is_tarball(self) -> bool:
        return self.archive_name().endswith(".tar.gz")
