"""
release_client.py

Responsibility: Isolate all direct release-hosting (GitHub REST) API interaction.

This module must be the only place that:
- Constructs release/asset endpoints
- Sends HTTP requests to api.github.com / uploads.github.com
- Interprets API responses / error payloads

Everything else (building, packaging, orchestration) should use this client.
"""

from __future__ import annotations

import re
from typing import Any

import requests

from releaser.models import AssetRef, Release

CONTENT_TYPE = "application/octet-stream"
PAGE_SIZE = 100

# upload_url is an RFC 6570 template, e.g. ".../assets{?name,label}".
_URI_TEMPLATE_SUFFIX = re.compile(r"\{[^}]*\}$")


class ReleaseAPIError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AssetExistsError(ReleaseAPIError):
    pass


def _error_codes(payload: dict[str, Any]) -> set[str]:
    errors = payload.get("errors") or []
    return {str(e.get("code")) for e in errors if isinstance(e, dict)}


class ReleaseClient:
    def __init__(
        self,
        token: str,
        api_base: str = "https://api.github.com",
        *,
        timeout: float = 30,
        session: requests.Session | None = None,
    ) -> None:
        if not token.strip():
            raise ReleaseAPIError("GitHub token is required.")
        self._token = token
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {self._token}",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "releaser",
        }
        if extra:
            headers.update(extra)
        return headers

    def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, str] | None = None,
        data: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        if url.startswith("/"):
            url = f"{self._api_base}{url}"
        r = self._session.request(
            method,
            url,
            headers=self._headers(headers),
            params=params,
            data=data,
            timeout=self._timeout,
        )
        if r.status_code >= 400:
            try:
                payload = r.json()
            except ValueError:
                payload = {"message": r.text}
            if not isinstance(payload, dict):
                payload = {"message": str(payload)}
            message = f"GitHub API error {r.status_code} {method} {url}: {payload.get('message', payload)}"
            if r.status_code == 422 and "already_exists" in _error_codes(payload):
                raise AssetExistsError(message, r.status_code)
            raise ReleaseAPIError(message, r.status_code)
        if r.status_code == 204:
            return None
        return r.json()

    def _release_path(self, release: Release) -> str:
        return f"/repos/{release.owner}/{release.repo}/releases/{release.release_id}"

    def get_upload_url(self, release: Release) -> str:
        """
        Resolve the asset upload endpoint for `release`, always asking the API so the
        URL belongs to the current release instance. The URI-template suffix is stripped.
        """
        data = self._request("GET", self._release_path(release))
        upload_url = str(data.get("upload_url") or "")
        if not upload_url:
            raise ReleaseAPIError(f"Release {release.release_id} has no upload_url.")
        return _URI_TEMPLATE_SUFFIX.sub("", upload_url)

    def upload_asset(
        self,
        upload_url: str,
        *,
        name: str,
        data: bytes,
        content_type: str = CONTENT_TYPE,
    ) -> AssetRef:
        """
        Upload raw bytes as a new release asset. Raises `AssetExistsError` when an
        asset with `name` is already attached (GitHub never overwrites).
        """
        payload = self._request(
            "POST",
            upload_url,
            params={"name": name},
            data=data,
            headers={"Content-Type": content_type},
        )
        return AssetRef(
            asset_id=int(payload["id"]),
            name=str(payload.get("name") or name),
            download_url=str(payload.get("browser_download_url") or ""),
        )

    def list_assets(self, release: Release) -> list[AssetRef]:
        """Every asset on the release, walking `page` until a short page comes back."""
        assets: list[AssetRef] = []
        page = 1
        while True:
            params = {"per_page": str(PAGE_SIZE), "page": str(page)}
            data = self._request("GET", f"{self._release_path(release)}/assets", params=params) or []
            assets.extend(
                AssetRef(
                    asset_id=int(item["id"]),
                    name=str(item["name"]),
                    download_url=str(item.get("browser_download_url") or ""),
                )
                for item in data
            )
            if len(data) < PAGE_SIZE:
                return assets
            page += 1

    def find_asset(self, release: Release, name: str) -> AssetRef | None:
        for asset in self.list_assets(release):
            if asset.name == name:
                return asset
        return None

    def delete_asset(self, release: Release, asset_id: int) -> None:
        self._request("DELETE", f"/repos/{release.owner}/{release.repo}/releases/assets/{asset_id}")
