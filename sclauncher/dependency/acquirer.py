"""sc dependency acquisition: manifest, download, verify, unpack, chmod.

Several acquirers (other processes, or other tasks in this loop) may share
one work directory.  The only coordination is the archive file itself: the
first acquirer creates it synchronously before its first ``await`` and
everyone who finds it already present polls for the unpacked binary instead
of downloading again.  There is no lock, so a placeholder left by an
acquirer that died hard has to be removed by clearing the work directory.
SIGTERM and SIGHUP during a download cancel it and remove the archive
before the signal's default action runs.
"""
from __future__ import annotations

import asyncio
import atexit
import functools
import hashlib
import json
import logging
import os
import signal
import stat
import tarfile
import zipfile
from pathlib import Path

import aiohttp

from sclauncher.config import DEFAULT_BASE_URL, LATEST
from sclauncher.core.errors import (
    ChecksumMismatch,
    DownloadFailed,
    ManifestFetchFailed,
    PermissionFixFailed,
    UnpackFailed,
)
from sclauncher.dependency.store import (
    MANIFEST_FILENAME,
    ArchiveStore,
    DependencyDescriptor,
    detect_platform,
)

logger = logging.getLogger(__name__)

MANIFEST_TIMEOUT = 30.0
POLL_INTERVAL = 1.0
_CHUNK_SIZE = 64 * 1024


def _sha1_of_file(path: Path) -> str:
    h = hashlib.sha1()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def _extract(archive: Path, dest: Path, tarball: bool) -> None:
    if tarball:
        with tarfile.open(archive, "r:gz") as tf:
            tf.extractall(dest, filter="data")
    else:
        with zipfile.ZipFile(archive) as zf:
            zf.extractall(dest)


def _remove_archive(path: Path) -> None:
    """Drop a partial archive so the next run doesn't wait on it forever."""
    try:
        path.unlink()
        logger.info("Removing %s", path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Could not remove %s: %s", path, e)


_INTERRUPT_SIGNALS = tuple(
    getattr(signal, name) for name in ("SIGTERM", "SIGHUP") if hasattr(signal, name)
)


def _cancel_on_signals(received: list[int]) -> list[int]:
    """Cancel the current task on SIGTERM/SIGHUP, unless someone else handles them.

    Returns the signals that got a handler.
    """
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()
    handled: list[int] = []
    for sig in _INTERRUPT_SIGNALS:
        if signal.getsignal(sig) is not signal.SIG_DFL:
            continue

        def on_signal(sig: int = sig) -> None:
            logger.warning("Received %s during download", signal.Signals(sig).name)
            received.append(sig)
            if task is not None:
                task.cancel()

        try:
            loop.add_signal_handler(sig, on_signal)
        except (NotImplementedError, RuntimeError, ValueError):
            # Windows, or not the main thread
            continue
        handled.append(sig)
    return handled


def _restore_signals(handled: list[int]) -> None:
    loop = asyncio.get_running_loop()
    for sig in handled:
        loop.remove_signal_handler(sig)


class DependencyAcquirer:
    """Makes sure the sc binary for one version exists under ``work_dir``."""

    def __init__(
        self,
        work_dir: str | Path,
        version: str = LATEST,
        *,
        platform: str | None = None,
        proxy: str | None = None,
        base_url: str = DEFAULT_BASE_URL,
        poll_interval: float = POLL_INTERVAL,
    ) -> None:
        self.work_dir = Path(work_dir)
        self.version = version
        self.platform = platform or detect_platform()
        self.proxy = proxy
        self.base_url = base_url.rstrip("/")
        self.poll_interval = poll_interval

    def store_for(self, descriptor: DependencyDescriptor) -> ArchiveStore:
        return ArchiveStore(self.work_dir, descriptor)

    async def ensure(self) -> Path:
        """Download, verify and unpack sc if needed.  Returns the binary path.

        Raises an :class:`~sclauncher.core.errors.AcquireError` subclass on
        failure.  Nothing is retried here.
        """
        self.work_dir.mkdir(parents=True, exist_ok=True)

        descriptor = await self.resolve()
        store = self.store_for(descriptor)
        binary = store.binary_path()

        if not binary.exists():
            if not store.archive_path().exists():
                await self._fetch_and_unpack(store)
            else:
                await self._wait_for_binary(binary, store.archive_path())

        self._set_execute_permissions(binary)
        return binary

    # ------------------------------------------------------------------
    # Manifest
    # ------------------------------------------------------------------

    async def resolve(self) -> DependencyDescriptor:
        """Work out the version and checksum to use."""
        if self.version != LATEST:
            logger.warning(
                "Checksum check for manually overwritten sc versions isn't supported."
            )
            return DependencyDescriptor(version=self.version, platform=self.platform)

        manifest = self.work_dir / MANIFEST_FILENAME
        if not manifest.exists():
            await self._fetch_manifest(manifest)

        try:
            versions = json.loads(manifest.read_text())["Sauce Connect"]
            return DependencyDescriptor(
                version=versions["version"],
                platform=self.platform,
                checksum=versions[self.platform]["sha1"],
            )
        except (OSError, json.JSONDecodeError, KeyError, TypeError) as e:
            raise ManifestFetchFailed(f"Malformed manifest {manifest}: {e}") from e

    async def _fetch_manifest(self, path: Path) -> None:
        url = f"{self.base_url}/versions.json"
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    url,
                    proxy=self.proxy,
                    timeout=aiohttp.ClientTimeout(total=MANIFEST_TIMEOUT),
                ) as resp:
                    if resp.status != 200:
                        raise ManifestFetchFailed(f"Fetching {url} failed: {resp.status}")
                    body = await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ManifestFetchFailed(f"Fetching {url} failed: {e}") from e

        path.write_bytes(body)
        logger.debug("Cached manifest at %s", path)

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    async def _fetch_and_unpack(self, store: ArchiveStore) -> None:
        archive = store.archive_path()

        # Must stay ahead of the first await: other acquirers treat the file
        # as "download in progress".
        archive.write_bytes(b"")

        logger.info("Missing Sauce Connect local proxy, downloading dependency")
        logger.info("This will only happen once.")

        cleanup = functools.partial(_remove_archive, archive)
        atexit.register(cleanup)
        received: list[int] = []
        handled = _cancel_on_signals(received)
        try:
            await self._download(store.archive_name(), archive)
            if store.descriptor.checksum:
                await self._verify_checksum(archive, store.descriptor.checksum)
            await self._unpack(store)
        except BaseException:
            _remove_archive(archive)
            raise
        finally:
            atexit.unregister(cleanup)
            _restore_signals(handled)
            if received:
                # Let the signal do what it would have done, minus the archive
                _remove_archive(archive)
                signal.raise_signal(received[0])

        logger.info("Removing %s", store.archive_name())
        archive.unlink(missing_ok=True)
        logger.info("Sauce Connect downloaded correctly")

    async def _download(self, archive_name: str, dest: Path) -> None:
        url = f"{self.base_url}/downloads/{archive_name}"
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=30, sock_read=30)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url, proxy=self.proxy) as resp:
                    if resp.status != 200:
                        raise DownloadFailed(f"Downloading {url} failed: {resp.status}")
                    if resp.content_length:
                        logger.info(
                            "Downloading %.1fMB", resp.content_length / (1024 * 1024)
                        )
                    with open(dest, "wb") as f:
                        async for chunk in resp.content.iter_chunked(_CHUNK_SIZE):
                            f.write(chunk)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise DownloadFailed(f"Downloading {url} failed: {e}") from e

    async def _verify_checksum(self, archive: Path, expected: str) -> None:
        actual = await asyncio.to_thread(_sha1_of_file, archive)
        if actual != expected.lower():
            raise ChecksumMismatch(expected, actual)
        logger.debug("Checksum of %s verified", archive.name)

    async def _unpack(self, store: ArchiveStore) -> None:
        logger.info("Unzipping %s", store.archive_name())
        try:
            await asyncio.to_thread(
                _extract, store.archive_path(), self.work_dir, store.is_tarball,
            )
        except (tarfile.TarError, zipfile.BadZipFile, OSError) as e:
            raise UnpackFailed(f"Couldn't unpack archive: {e}") from e

    async def _wait_for_binary(self, binary: Path, archive: Path) -> None:
        """Poll until another acquirer has unpacked *binary*.

        Gives up with :class:`DownloadFailed` once *archive* disappears without
        a binary, i.e. the other acquirer failed and cleaned up after itself.
        A placeholder left by a crashed process is still waited on forever.
        """
        logger.info("Sauce Connect is being downloaded elsewhere, waiting for %s", binary)
        while not binary.exists():
            if not archive.exists() and not binary.exists():
                raise DownloadFailed(
                    f"{archive.name} was removed before {binary} appeared"
                )
            await asyncio.sleep(self.poll_interval)

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    @staticmethod
    def _set_execute_permissions(binary: Path) -> None:
        if os.name == "nt":
            return
        try:
            mode = stat.S_IMODE(binary.stat().st_mode)
        except OSError as e:
            raise PermissionFixFailed(f"Couldn't read sc permissions: {e}") from e
        if mode != 0o755:
            try:
                binary.chmod(0o755)
            except OSError as e:
                raise PermissionFixFailed(f"Couldn't set permissions: {e}") from e
