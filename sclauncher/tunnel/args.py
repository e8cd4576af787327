"""sc command-line construction and log redaction."""
from __future__ import annotations

import re
from typing import Any

from sclauncher.config import LauncherConfig

REDACTED = "XXXXXXXX"
REDACTED_UUID = "XXXXXXXX-XXXX-XXXX-XXXX-XXXXXXXXXXXX"

_CREDENTIAL_FLAG_RE = re.compile(r"(^|\s)(-u|--user|-k|--api-key)(\s+|=)\S+")
_UUID_RE = re.compile(
    r"[0-9a-f]{8}-(?:[0-9a-f]{4}-){3}[0-9a-f]{12}", re.IGNORECASE,
)


def _flag(key: str) -> str:
    """``tunnel_identifier`` / ``tunnelIdentifier`` → ``--tunnel-identifier``."""
    dashed = re.sub(r"(?<=[a-z0-9])([A-Z])", r"-\1", key).replace("_", "-")
    return "--" + dashed.lower()


def _option_args(key: str, value: Any) -> list[str]:
    if value is None or value is False:
        return []
    if value is True:
        return [_flag(key)]
    if isinstance(value, (list, tuple)):
        return [_flag(key), ",".join(str(v) for v in value)]
    return [_flag(key), str(value)]


def build_args(config: LauncherConfig) -> list[str]:
    """Return the sc argv (without the executable) for *config*."""
    args: list[str] = []
    if config.username:
        args += ["-u", config.username]
    if config.access_key:
        args += ["-k", config.access_key]
    for key, value in config.tunnel_options.items():
        args += _option_args(key, value)
    return args


def redact_command_line(text: str) -> str:
    """Mask credentials and UUID-shaped tokens before the line is logged."""
    text = _CREDENTIAL_FLAG_RE.sub(
        lambda m: f"{m.group(1)}{m.group(2)}{m.group(3)}{REDACTED}", text,
    )
    return _UUID_RE.sub(REDACTED_UUID, text)
