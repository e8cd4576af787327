"""Launcher facade: download sc, start it, stop it, clean up."""
from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path

from sclauncher.config import LauncherConfig
from sclauncher.core.lifecycle import LifecycleGuard, guard as default_guard
from sclauncher.core.retry import try_run
from sclauncher.dependency.acquirer import DependencyAcquirer
from sclauncher.dependency.store import DependencyDescriptor, detect_platform
from sclauncher.tunnel.supervisor import TunnelProcess, TunnelSupervisor

logger = logging.getLogger(__name__)


class SauceConnectLauncher:
    """One work directory, one sc binary, at most one running tunnel."""

    def __init__(
        self,
        config: LauncherConfig,
        guard: LifecycleGuard | None = None,
        platform: str | None = None,
    ) -> None:
        self.config = config
        self._guard = guard or default_guard
        self._acquirer = DependencyAcquirer(
            config.work_dir,
            config.sc_version,
            platform=platform or detect_platform(),
            proxy=config.proxy,
            base_url=config.base_url,
        )
        self._exe: Path | None = Path(config.exe) if config.exe else None
        self._supervisor = TunnelSupervisor(config, exe=self._exe, guard=self._guard)

    @property
    def exe(self) -> Path | None:
        return self._exe

    @property
    def tunnel(self) -> TunnelProcess | None:
        return self._supervisor.tunnel

    @property
    def archive_name(self) -> str:
        """Archive name for the configured version (``latest`` until resolved)."""
        descriptor = DependencyDescriptor(
            version=self.config.sc_version, platform=self._acquirer.platform,
        )
        return self._acquirer.store_for(descriptor).archive_name()

    async def download(self) -> Path:
        """Make sure sc is on disk.  Skipped when an explicit exe is configured."""
        if self.config.exe:
            return Path(self.config.exe)
        self._exe = await try_run(
            self._acquirer.ensure,
            retries=self.config.download_retries,
            retry_delay=self.config.download_retry_timeout,
            label="Sauce Connect download",
        )
        self._supervisor.exe = self._exe
        return self._exe

    async def run(self) -> TunnelProcess:
        """Start sc (with retries) and return once the tunnel is ready.

        Raises ``RuntimeError`` while a tunnel from an earlier call is alive.
        """
        return await try_run(
            self._supervisor.connect,
            retries=self.config.connect_retries,
            retry_delay=self.config.connect_retry_timeout,
            label="Sauce Connect tunnel",
        )

    async def download_and_run(self) -> TunnelProcess:
        await self.download()
        return await self.run()

    async def kill(self) -> None:
        """Terminate the active tunnel, if any, and wait for it to exit."""
        await self._guard.kill()

    async def clean(self) -> None:
        """Kill the tunnel and delete the work directory."""
        await self.kill()
        work_dir = self.config.work_dir
        if work_dir.exists():
            await asyncio.to_thread(shutil.rmtree, work_dir)
            logger.info("Removed %s", work_dir)
