"""Stand-ins for saucelabs.com and the sc binary."""
from __future__ import annotations

import asyncio
import hashlib
import io
import socket
import sys
import tarfile
import zipfile
from pathlib import Path

from aiohttp import web

SC_VERSION = "4.9.1"
ACCESS_KEY = "11111111-1111-1111-1111-111111111111"


def find_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("", 0))
        return s.getsockname()[1]


def make_tarball(version: str = SC_VERSION) -> bytes:
    """A linux sc archive holding a (non-executable) bin/sc."""
    buf = io.BytesIO()
    payload = b"#!/bin/sh\necho fake sc\n"
    with tarfile.open(fileobj=buf, mode="w:gz") as tf:
        info = tarfile.TarInfo(f"sc-{version}-linux/bin/sc")
        info.size = len(payload)
        info.mode = 0o644
        tf.addfile(info, io.BytesIO(payload))
    return buf.getvalue()


def make_zip(version: str = SC_VERSION, platform: str = "osx") -> bytes:
    buf = io.BytesIO()
    exe = ".exe" if platform == "win32" else ""
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr(f"sc-{version}-{platform}/bin/sc{exe}", b"fake sc\n")
    return buf.getvalue()


def manifest_for(archive: bytes, version: str = SC_VERSION, platform: str = "linux") -> dict:
    return {
        "Sauce Connect": {
            "version": version,
            platform: {"sha1": hashlib.sha1(archive).hexdigest()},
        },
    }


class FakeSauceLabs:
    """Local stand-in for saucelabs.com: versions.json, downloads, tunnel API."""

    def __init__(self) -> None:
        self.archives: dict[str, bytes] = {}
        self.manifest: dict | None = None
        self.manifest_status = 200
        self.download_delay = 0.0
        self.requests: list[tuple[str, str]] = []
        self.delete_auth: list[str | None] = []
        self.port = find_free_port()
        self._runner: web.AppRunner | None = None

    @property
    def url(self) -> str:
        return f"http://127.0.0.1:{self.port}"

    def count(self, method: str, prefix: str) -> int:
        return sum(1 for m, p in self.requests if m == method and p.startswith(prefix))

    async def _versions(self, request: web.Request) -> web.Response:
        self.requests.append(("GET", request.path))
        if self.manifest_status != 200:
            return web.Response(status=self.manifest_status, text="nope")
        return web.json_response(self.manifest or {})

    async def _download(self, request: web.Request) -> web.StreamResponse:
        self.requests.append(("GET", request.path))
        body = self.archives.get(request.match_info["name"])
        if body is None:
            return web.Response(status=404, text="not found")
        resp = web.StreamResponse()
        resp.content_length = len(body)
        await resp.prepare(request)
        half = len(body) // 2
        await resp.write(body[:half])
        if self.download_delay:
            await asyncio.sleep(self.download_delay)
        await resp.write(body[half:])
        await resp.write_eof()
        return resp

    async def _delete_tunnel(self, request: web.Request) -> web.Response:
        self.requests.append(("DELETE", request.path))
        self.delete_auth.append(request.headers.get("Authorization"))
        return web.json_response({"result": True, "id": request.match_info["tunnel_id"]})

    async def start(self) -> None:
        app = web.Application()
        app.router.add_get("/versions.json", self._versions)
        app.router.add_get("/downloads/{name}", self._download)
        app.router.add_delete("/rest/v1/{user}/tunnels/{tunnel_id}", self._delete_tunnel)
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, "127.0.0.1", self.port)
        await site.start()

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()


# ---------------------------------------------------------------------------
# Fake sc executable
# ---------------------------------------------------------------------------

_FAKE_SC_HEADER = """\
#!{python}
import pathlib
import sys
import time

args = sys.argv[1:]
readyfile = pathlib.Path(args[args.index("--readyfile") + 1])


def say(line):
    print(line, flush=True)


"""

READY_SCRIPT = """\
say("Please wait for 'you may start your tests' to start your tests")
say("Tunnel ID: abc123")
say("Selenium listener started on port 4445")
# Let the launcher read stdout before it sees the ready file
time.sleep(0.2)
readyfile.touch()
say("Sauce Connect is up, you may start your tests.")
time.sleep(60)
"""


def write_fake_sc(path: Path, body: str) -> Path:
    """Write an executable Python script standing in for sc."""
    path.write_text(_FAKE_SC_HEADER.format(python=sys.executable) + body)
    path.chmod(0o755)
    return path
