"""Lifecycle guard: makes sure the sc child doesn't outlive this process.

The guard only holds a weak reference to the active tunnel; the supervisor
that started it owns it.  ``install()`` registers an ``atexit`` handler
(once) that sends SIGTERM to whatever tunnel is still attached.  SIGKILL of
this process can't be caught; sc is left running in that case.
"""
from __future__ import annotations

import atexit
import logging
import os
import signal
import weakref
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from sclauncher.tunnel.supervisor import TunnelProcess

logger = logging.getLogger(__name__)


class LifecycleGuard:
    def __init__(self) -> None:
        self._active: weakref.ref[TunnelProcess] | None = None
        self._installed = False

    @property
    def active(self) -> TunnelProcess | None:
        return self._active() if self._active else None

    @property
    def installed(self) -> bool:
        return self._installed

    def attach(self, tunnel: TunnelProcess) -> None:
        """Make *tunnel* the one to terminate on exit."""
        self._active = weakref.ref(tunnel)

    def detach(self, tunnel: TunnelProcess) -> None:
        if self.active is tunnel:
            self._active = None

    def install(self) -> bool:
        """Register the exit hook.  Returns False if it was already registered."""
        if self._installed:
            return False
        self._installed = True
        atexit.register(self.kill_on_exit)
        return True

    def kill_on_exit(self) -> None:
        """Synchronous, best-effort SIGTERM of the active tunnel (atexit)."""
        tunnel = self.active
        if tunnel is None or not tunnel.is_alive:
            return
        logger.info("Shutting down")
        try:
            os.kill(tunnel.pid, signal.SIGTERM)
            logger.debug("Sent SIGTERM to sc PID %d", tunnel.pid)
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug("Failed to signal sc PID %d: %s", tunnel.pid, e)

    async def kill(self, callback: Callable[[], None] | None = None) -> None:
        """Terminate the active tunnel and wait until it has exited."""
        tunnel = self.active
        if tunnel is not None and tunnel.is_alive:
            tunnel.terminate()
            await tunnel.wait()
        self._active = None
        if callback:
            callback()


# Process-wide default instance
guard = LifecycleGuard()
