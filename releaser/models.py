"""
models.py

Responsibility: Plain, immutable data passed between pipeline stages.

- `Release`: the triggering release record (read-only to this package)
- `PlatformTarget`: one entry of the build matrix
- `BuildOutput` / `Archive` / `AssetRef`: per-job stage outputs
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

PUBLISHED = "published"


@dataclass(frozen=True)
class MakeDir:
    path: str


@dataclass(frozen=True)
class CopyFile:
    src: str
    dest: str = "{{ stage_dir }}"


@dataclass(frozen=True)
class Compress:
    src: str


PackageStep = MakeDir | CopyFile | Compress


def default_steps() -> tuple[PackageStep, ...]:
    """Staging dir, binary, docs, archive: the layout every platform ships unless overridden."""
    return (
        MakeDir("{{ stage_dir }}"),
        CopyFile("{{ binary_path }}"),
        CopyFile("{{ docs }}"),
        Compress("{{ stage_dir }}"),
    )


@dataclass(frozen=True)
class PlatformTarget:
    """A build matrix entry. `label` names the outputs; `triple` selects the toolchain target."""

    label: str
    triple: str
    steps: tuple[PackageStep, ...] = field(default_factory=default_steps)


@dataclass(frozen=True)
class Release:
    release_id: int
    state: str
    repository: str
    tag: str = ""
    upload_url: str | None = None

    @property
    def is_published(self) -> bool:
        return self.state == PUBLISHED

    @property
    def owner(self) -> str:
        return self.repository.split("/", 1)[0]

    @property
    def repo(self) -> str:
        return self.repository.split("/", 1)[1]

    @classmethod
    def from_event(cls, payload: dict[str, Any], *, repository: str | None = None) -> "Release":
        """
        Build a Release from a GitHub `release` webhook/Actions event payload.

        The event `action` is the lifecycle state (`published`, `created`, `edited`, ...).
        A draft release is never treated as published even if the action says so.
        """
        rel = payload.get("release")
        if not isinstance(rel, dict) or "id" not in rel:
            raise ValueError("Event payload has no `release` object with an `id`.")

        repo_name = repository or str((payload.get("repository") or {}).get("full_name") or "")
        if "/" not in repo_name:
            raise ValueError("Repository must be given as `owner/name`.")

        state = str(payload.get("action") or "")
        if rel.get("draft"):
            state = "draft"

        return cls(
            release_id=int(rel["id"]),
            state=state,
            repository=repo_name,
            tag=str(rel.get("tag_name") or ""),
            upload_url=rel.get("upload_url"),
        )


@dataclass(frozen=True)
class BuildOutput:
    binary: Path
    target: PlatformTarget


@dataclass(frozen=True)
class Archive:
    path: Path
    target: PlatformTarget

    @property
    def name(self) -> str:
        return self.path.name


@dataclass(frozen=True)
class AssetRef:
    asset_id: int
    name: str
    download_url: str = ""
    reused: bool = False


def archive_stem(product: str, label: str) -> str:
    return f"{product}-{label}"


def archive_name(product: str, label: str) -> str:
    """Asset name for a target; no timestamps or hashes so consumers can predict it."""
    return f"{archive_stem(product, label)}.tar.gz"
