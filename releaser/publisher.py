"""
publisher.py

Responsibility: Attach one archive to a release as a named asset.

Uploading is not idempotent. With the default `fail` conflict policy a second
upload of the same asset name is reported as a collision; `skip` keeps the
existing asset and `replace` deletes it and uploads again.
"""

from __future__ import annotations

from dataclasses import dataclass

import requests
from loguru import logger

from releaser.config import PublishSettings
from releaser.models import Archive, AssetRef, Release
from releaser.release_client import CONTENT_TYPE, AssetExistsError, ReleaseAPIError, ReleaseClient


class PublishError(RuntimeError):
    def __init__(self, reason: str, *, kind: str = "api") -> None:
        super().__init__(reason)
        self.reason = reason
        self.kind = kind


@dataclass(frozen=True)
class PublishPolicy:
    on_conflict: str = "fail"
    retries: int = 0

    @classmethod
    def from_settings(cls, settings: PublishSettings) -> "PublishPolicy":
        return cls(on_conflict=settings.on_conflict, retries=settings.retries)


def _kind_for(e: ReleaseAPIError) -> str:
    if isinstance(e, AssetExistsError):
        return "collision"
    if e.status_code in (401, 403):
        return "auth"
    return "api"


def _upload(client: ReleaseClient, release: Release, archive: Archive, data: bytes, retries: int) -> AssetRef:
    """Resolve the endpoint and upload, retrying only transport failures."""
    attempt = 0
    while True:
        try:
            upload_url = client.get_upload_url(release)
            return client.upload_asset(upload_url, name=archive.name, data=data, content_type=CONTENT_TYPE)
        except AssetExistsError:
            # A timed-out POST may still have been stored; the retry then collides with it.
            if attempt == 0:
                raise
            existing = client.find_asset(release, archive.name)
            if existing is None:
                raise
            logger.bind(target=archive.target.label).info(
                "Upload of {} landed before the transport failure; using asset {}", archive.name, existing.asset_id
            )
            return existing
        except (requests.ConnectionError, requests.Timeout) as e:
            if attempt >= retries:
                raise PublishError(f"Network failure uploading {archive.name}: {e}", kind="network") from e
            attempt += 1
            logger.bind(target=archive.target.label).warning(
                "Network failure uploading {} (attempt {}/{}), retrying", archive.name, attempt, retries + 1
            )


def publish(
    client: ReleaseClient,
    release: Release,
    archive: Archive,
    *,
    policy: PublishPolicy | None = None,
) -> AssetRef:
    """
    Upload `archive` to `release` under the archive's file name with content
    type `application/octet-stream`.

    Raises `PublishError` on authentication, network or name-collision failure.
    """
    policy = policy or PublishPolicy()
    log = logger.bind(target=archive.target.label)

    try:
        data = archive.path.read_bytes()
    except OSError as e:
        raise PublishError(f"Cannot read archive {archive.path}: {e}", kind="io") from e

    try:
        try:
            asset = _upload(client, release, archive, data, policy.retries)
        except AssetExistsError:
            if policy.on_conflict == "fail":
                raise
            existing = client.find_asset(release, archive.name)
            if policy.on_conflict == "skip" and existing is not None:
                log.warning("Asset {} already exists on release {}; skipping", archive.name, release.release_id)
                return AssetRef(existing.asset_id, existing.name, existing.download_url, reused=True)
            if existing is not None:
                log.warning("Replacing existing asset {} ({})", archive.name, existing.asset_id)
                client.delete_asset(release, existing.asset_id)
            asset = _upload(client, release, archive, data, policy.retries)
    except ReleaseAPIError as e:
        kind = _kind_for(e)
        reason = f"Asset name collision: {archive.name}" if kind == "collision" else str(e)
        raise PublishError(reason, kind=kind) from e
    except requests.RequestException as e:
        raise PublishError(f"Network failure publishing {archive.name}: {e}", kind="network") from e

    log.info("Uploaded {} as asset {}", asset.name, asset.asset_id)
    return asset
