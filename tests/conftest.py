"""Shared fixtures: a scriptable toolchain and an in-memory release API."""

from __future__ import annotations

import re
import sys
import threading
from pathlib import Path
from typing import Any

import pytest
import requests

ROOT = Path(__file__).resolve().parents[1]

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from releaser.config import PipelineConfig, parse_config  # noqa: E402
from releaser.models import Release  # noqa: E402

API = "https://api.github.test"
UPLOADS = "https://uploads.github.test"
REPO = "acme/guard"

# Writes a fake binary where cargo would, unless the triple is listed in
# FAKE_TOOLCHAIN_FAIL.
TOOLCHAIN = """
import os, pathlib, sys
triple, out = sys.argv[1], sys.argv[2]
if triple in os.environ.get("FAKE_TOOLCHAIN_FAIL", "").split(","):
    sys.exit("error: target not supported: " + triple)
path = pathlib.Path(out)
path.parent.mkdir(parents=True, exist_ok=True)
path.write_bytes(b"\\x7fELF-" + triple.encode())
"""


class FakeResponse:
    def __init__(self, status_code: int, payload: Any = None) -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = "" if payload is None else str(payload)

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("no JSON body")
        return self._payload


class FakeReleaseAPI:
    """
    A `requests.Session` stand-in that serves the handful of GitHub release
    endpoints the client uses. Asset names are unique per release, like GitHub.
    """

    def __init__(self, token: str = "t0ken") -> None:
        self.token = token
        self.releases: dict[int, dict[str, dict[str, Any]]] = {}
        self.calls: list[tuple[str, str, dict[str, Any]]] = []
        self.network_failures = 0
        self.timeouts_after_upload = 0
        self._next_id = 1000
        self._lock = threading.Lock()

    def add_release(self, release_id: int) -> None:
        self.releases[release_id] = {}

    def assets(self, release_id: int) -> dict[str, dict[str, Any]]:
        return self.releases[release_id]

    def uploads(self) -> list[tuple[str, dict[str, Any]]]:
        return [(url, kw) for method, url, kw in self.calls if method == "POST"]

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        with self._lock:
            self.calls.append((method, url, kwargs))
            if self.network_failures:
                self.network_failures -= 1
                raise requests.ConnectionError("connection reset")
            if kwargs.get("headers", {}).get("Authorization") != f"Bearer {self.token}":
                return FakeResponse(401, {"message": "Bad credentials"})
            response = self._route(method, url, kwargs)
            if method == "POST" and response.status_code == 201 and self.timeouts_after_upload:
                # The asset is stored but the client never sees the response.
                self.timeouts_after_upload -= 1
                raise requests.ReadTimeout("read timed out")
            return response

    def _route(self, method: str, url: str, kwargs: dict[str, Any]) -> FakeResponse:
        m = re.fullmatch(rf"{API}/repos/{REPO}/releases/(\d+)", url)
        if method == "GET" and m:
            rid = int(m.group(1))
            if rid not in self.releases:
                return FakeResponse(404, {"message": "Not Found"})
            return FakeResponse(
                200,
                {"id": rid, "upload_url": f"{UPLOADS}/repos/{REPO}/releases/{rid}/assets{{?name,label}}"},
            )

        m = re.fullmatch(rf"{UPLOADS}/repos/{REPO}/releases/(\d+)/assets", url)
        if method == "POST" and m:
            assets = self.releases[int(m.group(1))]
            name = kwargs["params"]["name"]
            if name in assets:
                return FakeResponse(
                    422,
                    {"message": "Validation Failed", "errors": [{"resource": "ReleaseAsset", "code": "already_exists", "field": "name"}]},
                )
            self._next_id += 1
            asset = {
                "id": self._next_id,
                "name": name,
                "content_type": kwargs["headers"]["Content-Type"],
                "data": kwargs["data"],
                "browser_download_url": f"https://github.test/{REPO}/releases/download/v1/{name}",
            }
            assets[name] = asset
            return FakeResponse(201, asset)

        m = re.fullmatch(rf"{API}/repos/{REPO}/releases/(\d+)/assets", url)
        if method == "GET" and m:
            items = list(self.releases[int(m.group(1))].values())
            per_page = int(kwargs["params"]["per_page"])
            start = (int(kwargs["params"]["page"]) - 1) * per_page
            return FakeResponse(200, items[start : start + per_page])

        m = re.fullmatch(rf"{API}/repos/{REPO}/releases/assets/(\d+)", url)
        if method == "DELETE" and m:
            aid = int(m.group(1))
            for assets in self.releases.values():
                for name, asset in list(assets.items()):
                    if asset["id"] == aid:
                        del assets[name]
                        return FakeResponse(204)
            return FakeResponse(404, {"message": "Not Found"})

        return FakeResponse(404, {"message": f"No route for {method} {url}"})


@pytest.fixture
def fake_api() -> FakeReleaseAPI:
    api = FakeReleaseAPI()
    api.add_release(1)
    return api


@pytest.fixture
def release() -> Release:
    return Release(release_id=1, state="published", repository=REPO, tag="v2.0.0")


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    (root / "README.md").write_text("# guard\n", encoding="utf-8")
    return root


def make_config(**overrides: Any) -> PipelineConfig:
    data: dict[str, Any] = {
        "product": "cfn-guard-v2",
        "binary": "cfn-guard",
        "build": {
            "commands": [
                [sys.executable, "-c", TOOLCHAIN, "{{ triple }}", "target/{{ triple }}/release/{{ binary }}"],
            ],
        },
        "publish": {"api_base": API},
        "targets": [
            {"label": "linux", "triple": "x86_64-unknown-linux-musl"},
            {"label": "macos", "triple": "x86_64-apple-darwin"},
        ],
    }
    data.update(overrides)
    return parse_config(data)
