"""
pipeline.py

Responsibility: Expand the target matrix into independent jobs and aggregate results.

Each job runs Build -> Package -> Publish strictly in sequence:

    Pending -> Building -> Packaging -> Publishing -> Succeeded
                   \\           \\            \\
                    +-----------+------------+--> Failed(stage, cause)

Jobs share no mutable state; each returns its own `JobResult`, and a failure
in one job never stops its siblings. The report is assembled once every job
has finished, in configured target order.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from loguru import logger

from releaser.builder import BuildError, build
from releaser.config import PipelineConfig
from releaser.models import AssetRef, PlatformTarget, Release, archive_name
from releaser.packager import PackageError, package
from releaser.publisher import PublishError, PublishPolicy, publish
from releaser.release_client import ReleaseClient


class Stage(str, Enum):
    PENDING = "Pending"
    BUILDING = "Building"
    PACKAGING = "Packaging"
    PUBLISHING = "Publishing"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


class Status(str, Enum):
    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    FAILED = "failed"
    IDLE = "idle"


@dataclass(frozen=True)
class JobResult:
    label: str
    state: Stage
    asset_name: str
    failed_stage: Stage | None = None
    cause: str = ""
    asset: AssetRef | None = None

    @property
    def succeeded(self) -> bool:
        return self.state is Stage.SUCCEEDED

    def describe(self) -> str:
        if self.succeeded:
            return f"{self.label}: {self.state.value}"
        stage = self.failed_stage.value if self.failed_stage else "?"
        return f"{self.label}: {self.state.value}({stage}, {self.cause})"

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "state": self.state.value,
            "asset_name": self.asset_name,
            "failed_stage": self.failed_stage.value if self.failed_stage else None,
            "cause": self.cause or None,
            "asset_id": self.asset.asset_id if self.asset else None,
            "download_url": self.asset.download_url if self.asset else None,
        }


@dataclass(frozen=True)
class PipelineReport:
    status: Status
    release_id: int
    results: tuple[JobResult, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return self.status is not Status.FAILED

    @property
    def failed_labels(self) -> list[str]:
        return [r.label for r in self.results if not r.succeeded]

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "release_id": self.release_id,
            "failed_labels": self.failed_labels,
            "jobs": [r.to_dict() for r in self.results],
        }


def _failed(target: PlatformTarget, name: str, stage: Stage, cause: str) -> JobResult:
    logger.bind(target=target.label).error("{} failed at {}: {}", target.label, stage.value, cause)
    return JobResult(label=target.label, state=Stage.FAILED, asset_name=name, failed_stage=stage, cause=cause)


def run_job(
    target: PlatformTarget,
    release: Release,
    config: PipelineConfig,
    client: ReleaseClient,
    *,
    project_dir: Path,
) -> JobResult:
    """Run one target through every stage; stage errors end the job as Failed."""
    name = archive_name(config.product, target.label)
    log = logger.bind(target=target.label)

    stage = Stage.BUILDING
    log.info("{}: {}", target.label, stage.value)
    try:
        output = build(target, config, project_dir=project_dir)
    except BuildError as e:
        return _failed(target, name, stage, e.cause)

    stage = Stage.PACKAGING
    log.info("{}: {}", target.label, stage.value)
    try:
        archive = package(
            output,
            config.docs,
            product=config.product,
            workdir=config.workdir,
            project_dir=project_dir,
            binary=config.binary,
        )
    except PackageError as e:
        return _failed(target, name, stage, str(e))

    stage = Stage.PUBLISHING
    log.info("{}: {}", target.label, stage.value)
    try:
        asset = publish(client, release, archive, policy=PublishPolicy.from_settings(config.publish))
    except PublishError as e:
        return _failed(target, name, stage, e.reason)

    log.info("{}: {}", target.label, Stage.SUCCEEDED.value)
    return JobResult(label=target.label, state=Stage.SUCCEEDED, asset_name=name, asset=asset)


def run_pipeline(
    release: Release,
    config: PipelineConfig,
    client: ReleaseClient,
    *,
    project_dir: str | Path = ".",
) -> PipelineReport:
    """
    Build, package and publish every configured target for `release`.

    A release that is not `published` is ignored (status `idle`, nothing runs).
    """
    if not release.is_published:
        logger.info("Release {} is {!r}, not published; nothing to do", release.release_id, release.state)
        return PipelineReport(status=Status.IDLE, release_id=release.release_id)

    targets = config.targets
    if not targets:
        raise ValueError("No platform targets configured.")
    root = Path(project_dir).resolve()
    workers = config.max_workers or len(targets)
    logger.info(
        "Release {} ({}): running {} job(s): {}",
        release.release_id,
        release.tag or release.repository,
        len(targets),
        ", ".join(t.label for t in targets),
    )

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="release-job") as pool:
        futures = [pool.submit(run_job, t, release, config, client, project_dir=root) for t in targets]
        results = tuple(f.result() for f in futures)

    if all(r.succeeded for r in results):
        status = Status.SUCCEEDED
    elif config.fail_open:
        status = Status.PARTIAL
    else:
        status = Status.FAILED

    report = PipelineReport(status=status, release_id=release.release_id, results=results)
    if report.failed_labels:
        logger.warning("Failed targets: {}", ", ".join(report.failed_labels))
    return report
