"""Typed failures raised by acquisition and connect.

Everything derives from :class:`LauncherError` (a ``RuntimeError``) so that
callers who only care about "it didn't work" can catch one type.
"""
from __future__ import annotations


class LauncherError(RuntimeError):
    """Base exception for launcher errors."""


# ---------------------------------------------------------------------------
# Acquisition
# ---------------------------------------------------------------------------

class AcquireError(LauncherError):
    """The sc binary could not be made available."""


class ManifestFetchFailed(AcquireError):
    """versions.json could not be fetched or parsed."""


class DownloadFailed(AcquireError):
    """The archive download returned a bad status or broke off."""


class ChecksumMismatch(AcquireError):
    def __init__(self, expected: str, actual: str) -> None:
        super().__init__(
            f"Checksum of the downloaded archive ({actual}) "
            f"doesn't match ({expected})."
        )
        self.expected = expected
        self.actual = actual


class UnpackFailed(AcquireError):
    """Extracting the archive failed."""


class PermissionFixFailed(AcquireError):
    """Reading or setting the binary's permissions failed."""


# ---------------------------------------------------------------------------
# Connect
# ---------------------------------------------------------------------------

class ConnectError(LauncherError):
    """The tunnel did not come up.

    ``detail`` holds the raw sc output line that caused the failure, when
    there is one. It is not redacted.
    """

    def __init__(self, message: str, detail: str | None = None) -> None:
        super().__init__(message)
        self.detail = detail


class Unauthorized(ConnectError):
    pass


class ConnectionFailed(ConnectError):
    pass


class GenericTunnelError(ConnectError):
    pass


class LaunchFailed(ConnectError):
    def __init__(self, exit_code: int | None, signal: str | None) -> None:
        super().__init__(
            f"Could not start Sauce Connect. Exit code {exit_code} signal: {signal}"
        )
        self.exit_code = exit_code
        self.signal = signal


class SpawnError(ConnectError):
    """The OS refused to start the executable."""
