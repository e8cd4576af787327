"""sc process supervision: launch, classify output, detect readiness, close."""
from __future__ import annotations

import asyncio
import codecs
import logging
import signal
from enum import Enum
from pathlib import Path
from typing import Callable

import aiohttp

from sclauncher.config import LauncherConfig
from sclauncher.core.errors import ConnectError, LaunchFailed, SpawnError
from sclauncher.core.lifecycle import LifecycleGuard, guard as default_guard
from sclauncher.tunnel.args import build_args, redact_command_line
from sclauncher.tunnel.output import OutputClassifier, OutputState
from sclauncher.tunnel.ready import ReadyFileWatcher, ready_file_path

logger = logging.getLogger(__name__)

_READ_SIZE = 4096
_DELETE_TIMEOUT = 30.0


class TunnelState(Enum):
    STARTING = "starting"
    LAUNCHED = "launched"
    READY = "ready"
    FAILED = "failed"
    EXITED = "exited"


class TunnelProcess:
    """A running sc child plus what its output has revealed so far."""

    def __init__(
        self, process: asyncio.subprocess.Process, supervisor: TunnelSupervisor,
    ) -> None:
        self.process = process
        self.state = TunnelState.LAUNCHED
        self.output = OutputState()
        self._supervisor = supervisor
        self._exited = asyncio.Event()
        self._exit_callbacks: list[Callable[[], None]] = []
        self._kill_handle: asyncio.TimerHandle | None = None
        self._tasks: list[asyncio.Task] = []

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def tunnel_id(self) -> str | None:
        return self.output.tunnel_id

    @property
    def port(self) -> int | None:
        return self.output.port

    @property
    def error(self) -> ConnectError | None:
        return self.output.error

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    @property
    def is_alive(self) -> bool:
        return not self._exited.is_set() and self.process.returncode is None

    @property
    def kill_scheduled(self) -> bool:
        return self._kill_handle is not None

    def on_exit(self, callback: Callable[[], None]) -> None:
        """Run *callback* once the child has exited (now, if it already has)."""
        if self._exited.is_set():
            callback()
        else:
            self._exit_callbacks.append(callback)

    def terminate(self) -> None:
        """Send SIGTERM if the child is still running."""
        if not self.is_alive:
            return
        try:
            self.process.terminate()
        except ProcessLookupError:
            pass

    def schedule_kill(self, delay: float) -> None:
        """SIGTERM after *delay* seconds unless sc exits by itself first."""
        self.cancel_kill()
        self._kill_handle = asyncio.get_running_loop().call_later(delay, self.terminate)

    def cancel_kill(self) -> None:
        if self._kill_handle:
            self._kill_handle.cancel()
            self._kill_handle = None

    async def wait(self) -> int | None:
        await self._exited.wait()
        return self.process.returncode

    async def close(self, callback: Callable[[], None] | None = None) -> None:
        await self._supervisor.close(self, callback)

    def _mark_exited(self) -> None:
        self.cancel_kill()
        self.state = TunnelState.EXITED
        self._exited.set()
        callbacks, self._exit_callbacks = self._exit_callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("sc exit callback failed")


def _signal_name(returncode: int | None) -> str | None:
    if returncode is None or returncode >= 0:
        return None
    try:
        return signal.Signals(-returncode).name
    except ValueError:
        return str(-returncode)


class TunnelSupervisor:
    """Starts sc and owns at most one :class:`TunnelProcess` at a time."""

    def __init__(
        self,
        config: LauncherConfig,
        exe: str | Path | None = None,
        guard: LifecycleGuard | None = None,
    ) -> None:
        self.config = config
        self.exe = exe or config.exe
        self._guard = guard or default_guard
        self._tunnel: TunnelProcess | None = None

    @property
    def tunnel(self) -> TunnelProcess | None:
        return self._tunnel

    async def connect(self) -> TunnelProcess:
        """Start sc and wait until its ready file appears.

        Raises a :class:`~sclauncher.core.errors.ConnectError` subclass if sc
        reports an error, exits early, or can't be spawned.
        """
        if self._tunnel and self._tunnel.is_alive:
            raise RuntimeError("Sauce Connect tunnel is already running")
        # One guard tracks one child; another supervisor's live tunnel counts too
        active = self._guard.active
        if active is not None and active.is_alive:
            raise RuntimeError(f"Sauce Connect tunnel is already running (PID {active.pid})")
        if not self.exe:
            raise SpawnError("No sc executable configured (download it first)")

        logger.info("Opening local tunnel using Sauce Connect")

        loop = asyncio.get_running_loop()
        result: asyncio.Future[TunnelProcess] = loop.create_future()
        tunnel: TunnelProcess | None = None

        def complete(
            value: TunnelProcess | None = None, error: BaseException | None = None,
        ) -> None:
            # sc can fail and become ready in either order; first one wins
            if result.done():
                return
            if error is not None:
                result.set_exception(error)
            else:
                result.set_result(value)

        def ready() -> None:
            assert tunnel is not None
            tunnel.state = TunnelState.READY
            watcher.stop()
            logger.info("Testing tunnel ready")
            self._guard.install()
            complete(tunnel)

        readyfile = ready_file_path(self.config.ready_file_id)
        args = [*build_args(self.config), "--readyfile", str(readyfile)]
        watcher = ReadyFileWatcher(readyfile, ready, interval=self.config.ready_poll_interval)
        watcher.remove_stale()

        logger.info("Starting sc with args: %s", redact_command_line(" ".join(args)))

        try:
            process = await asyncio.create_subprocess_exec(
                str(self.exe), *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error("Sauce connect process errored: %s", e)
            watcher.stop()
            raise SpawnError(f"Could not start {self.exe}: {e}") from e

        tunnel = TunnelProcess(process, self)
        self._tunnel = tunnel
        self._guard.attach(tunnel)
        watcher.start()

        tunnel._tasks.append(asyncio.create_task(self._monitor(tunnel, watcher, complete)))
        if process.stderr:
            tunnel._tasks.append(asyncio.create_task(self._drain_stderr(process.stderr)))

        try:
            return await result
        except asyncio.CancelledError:
            tunnel.terminate()
            raise

    async def _monitor(
        self,
        tunnel: TunnelProcess,
        watcher: ReadyFileWatcher,
        complete: Callable[..., None],
    ) -> None:
        """Classify stdout until EOF, then handle the exit."""
        classifier = OutputClassifier(tunnel.output, verbose=self.config.verbose)
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        stdout = tunnel.process.stdout

        try:
            while stdout:
                chunk = await stdout.read(_READ_SIZE)
                if not chunk:
                    break
                classifier.feed(decoder.decode(chunk))
        except Exception:
            logger.exception("Reading sc output failed")
            tunnel.terminate()

        returncode = await tunnel.process.wait()
        self._on_exit(tunnel, watcher, complete, returncode)

    def _on_exit(
        self,
        tunnel: TunnelProcess,
        watcher: ReadyFileWatcher,
        complete: Callable[..., None],
        returncode: int,
    ) -> None:
        tunnel.cancel_kill()
        watcher.stop()
        self._guard.detach(tunnel)
        if self._tunnel is tunnel:
            self._tunnel = None

        if tunnel.error is not None:
            if tunnel.state is not TunnelState.READY:
                tunnel.state = TunnelState.FAILED
            complete(error=tunnel.error)
        elif tunnel.state is not TunnelState.READY:
            tunnel.state = TunnelState.FAILED
            exit_code = returncode if returncode >= 0 else None
            failure = LaunchFailed(exit_code, _signal_name(returncode))
            logger.warning("%s", failure)
            complete(error=failure)
        else:
            logger.info("Closing Sauce Connect Tunnel")

        tunnel._mark_exited()

    @staticmethod
    async def _drain_stderr(stream: asyncio.StreamReader) -> None:
        """Read stderr line-by-line into the debug log."""
        while True:
            line = await stream.readline()
            if not line:
                break
            text = line.decode("utf-8", errors="replace").strip()
            if text:
                logger.debug("sc(err): %s", text)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def close(
        self, tunnel: TunnelProcess, callback: Callable[[], None] | None = None,
    ) -> None:
        """Ask Sauce Labs to close the tunnel, then make sure sc exits.

        Returns (and runs *callback*) once the child has actually exited.
        """
        if callback:
            tunnel.on_exit(callback)

        if not tunnel.is_alive:
            await tunnel.wait()
            return

        if tunnel.tunnel_id:
            await self._delete_tunnel(tunnel)
        else:
            tunnel.terminate()

        await tunnel.wait()

    async def _delete_tunnel(self, tunnel: TunnelProcess) -> None:
        username = self.config.username
        url = (
            f"{self.config.api_url.rstrip('/')}/rest/v1/{username}"
            f"/tunnels/{tunnel.tunnel_id}"
        )
        try:
            async with aiohttp.ClientSession() as session:
                async with session.delete(
                    url,
                    auth=aiohttp.BasicAuth(username, self.config.access_key),
                    proxy=self.config.proxy,
                    timeout=aiohttp.ClientTimeout(total=_DELETE_TIMEOUT),
                ) as resp:
                    logger.debug("Tunnel delete returned %d", resp.status)
                    # Give sc some time to shut down by itself
                    if tunnel.is_alive:
                        tunnel.schedule_kill(self.config.kill_timeout)
                    await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("Closing tunnel %s failed: %s", tunnel.tunnel_id, e)
            tunnel.terminate()
