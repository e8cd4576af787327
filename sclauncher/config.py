"""Launcher configuration, with defaults and loading from the environment (and .env)."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

LATEST = "latest"
DEFAULT_BASE_URL = "https://saucelabs.com"


def proxy_from_env() -> str | None:
    """HTTP(S) proxy to route saucelabs.com requests through, if any."""
    return os.environ.get("https_proxy") or os.environ.get("http_proxy") or None


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").lower() in ("1", "true", "yes", "on")


@dataclass
class LauncherConfig:
    username: str = ""
    access_key: str = ""
    verbose: bool = False
    # Suffix for the ready file so several tunnels can share one host
    ready_file_id: str | None = None
    proxy: str | None = field(default_factory=proxy_from_env)
    # Explicit sc executable; skips download entirely
    exe: str | None = None
    work_dir: Path = field(default_factory=lambda: Path(__file__).parent / "sc")
    sc_version: str = field(
        default_factory=lambda: os.environ.get("SAUCE_CONNECT_VERSION", LATEST)
    )
    # Extra sc flags, e.g. {"tunnel_identifier": "ci-42", "no_ssl_bump_domains": ["a.com"]}
    tunnel_options: dict[str, Any] = field(default_factory=dict)
    connect_retries: int = 0
    connect_retry_timeout: float = 2.0
    download_retries: int = 0
    download_retry_timeout: float = 2.0
    base_url: str = DEFAULT_BASE_URL
    api_url: str = DEFAULT_BASE_URL
    kill_timeout: float = 5.0
    ready_poll_interval: float = 0.5

    def __post_init__(self) -> None:
        self.work_dir = Path(self.work_dir)

    @classmethod
    def from_env(cls) -> LauncherConfig:
        load_dotenv()
        username = os.environ.get("SAUCE_USERNAME", "")
        access_key = os.environ.get("SAUCE_ACCESS_KEY", "")
        if not username:
            raise ValueError("SAUCE_USERNAME is required")
        if not access_key:
            raise ValueError("SAUCE_ACCESS_KEY is required")

        tunnel_options: dict[str, Any] = {}
        tunnel_identifier = os.environ.get("SAUCE_TUNNEL_IDENTIFIER", "")
        if tunnel_identifier:
            tunnel_options["tunnel_identifier"] = tunnel_identifier

        config = cls(
            username=username,
            access_key=access_key,
            verbose=_env_flag("SAUCE_CONNECT_VERBOSE"),
            ready_file_id=os.environ.get("SAUCE_CONNECT_READY_FILE_ID") or None,
            exe=os.environ.get("SAUCE_CONNECT_EXE") or None,
            tunnel_options=tunnel_options,
            connect_retries=int(os.environ.get("SAUCE_CONNECT_RETRIES", "0")),
            download_retries=int(os.environ.get("SAUCE_DOWNLOAD_RETRIES", "0")),
        )
        work_dir = os.environ.get("SAUCE_CONNECT_WORK_DIR", "")
        if work_dir:
            config.work_dir = Path(work_dir).expanduser().resolve()
        return config
