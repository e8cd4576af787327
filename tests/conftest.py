from __future__ import annotations

from pathlib import Path

import pytest
import pytest_asyncio

from fakes import ACCESS_KEY, SC_VERSION, FakeSauceLabs, write_fake_sc
from sclauncher.config import LauncherConfig
from sclauncher.core.lifecycle import LifecycleGuard


@pytest.fixture
def work_dir(tmp_path: Path) -> Path:
    """Provide an isolated sc work directory."""
    d = tmp_path / "sc"
    d.mkdir()
    return d


@pytest_asyncio.fixture
async def saucelabs():
    server = FakeSauceLabs()
    await server.start()
    yield server
    await server.stop()


@pytest.fixture
def guard() -> LifecycleGuard:
    return LifecycleGuard()


@pytest.fixture
def make_config(tmp_path: Path):
    def _make(**overrides) -> LauncherConfig:
        values = dict(
            username="realuser",
            access_key=ACCESS_KEY,
            work_dir=tmp_path / "sc",
            ready_file_id=tmp_path.name,
            proxy=None,
            sc_version=SC_VERSION,
            ready_poll_interval=0.05,
        )
        values.update(overrides)
        return LauncherConfig(**values)

    return _make


@pytest.fixture
def fake_sc(tmp_path: Path):
    """Factory: write an executable stand-in for sc running *body*."""
    counter = 0

    def _make(body: str) -> Path:
        nonlocal counter
        counter += 1
        return write_fake_sc(tmp_path / f"fake-sc-{counter}", body)

    return _make
