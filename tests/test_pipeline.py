from __future__ import annotations

import tarfile
from pathlib import Path

import pytest

from conftest import API, FakeReleaseAPI, make_config
from releaser.models import Release
from releaser.pipeline import Stage, Status, run_pipeline
from releaser.release_client import ReleaseClient


@pytest.fixture
def client(fake_api: FakeReleaseAPI) -> ReleaseClient:
    return ReleaseClient("t0ken", API, session=fake_api)


def test_published_release_gets_one_asset_per_platform(
    client: ReleaseClient, fake_api: FakeReleaseAPI, release: Release, project_dir: Path
) -> None:
    report = run_pipeline(release, make_config(), client, project_dir=project_dir)

    assert report.status is Status.SUCCEEDED
    assert [r.describe() for r in report.results] == ["linux: Succeeded", "macos: Succeeded"]
    assets = fake_api.assets(1)
    assert sorted(assets) == ["cfn-guard-v2-linux.tar.gz", "cfn-guard-v2-macos.tar.gz"]
    assert {a["content_type"] for a in assets.values()} == {"application/octet-stream"}

    archive = project_dir / "dist" / "cfn-guard-v2-macos.tar.gz"
    assert assets["cfn-guard-v2-macos.tar.gz"]["data"] == archive.read_bytes()
    with tarfile.open(archive, "r:gz") as tar:
        binary = tar.extractfile("cfn-guard-v2-macos/cfn-guard").read()
    assert binary == b"\x7fELF-x86_64-apple-darwin"


def test_draft_release_is_idle(client: ReleaseClient, fake_api: FakeReleaseAPI, project_dir: Path) -> None:
    draft = Release(release_id=1, state="draft", repository="acme/guard")
    report = run_pipeline(draft, make_config(), client, project_dir=project_dir)

    assert report.status is Status.IDLE
    assert report.ok
    assert report.results == ()
    assert not (project_dir / "target").exists()
    assert fake_api.calls == []


def test_build_failure_is_isolated(
    client: ReleaseClient,
    fake_api: FakeReleaseAPI,
    release: Release,
    project_dir: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("FAKE_TOOLCHAIN_FAIL", "x86_64-apple-darwin")
    report = run_pipeline(release, make_config(), client, project_dir=project_dir)

    linux, macos = report.results
    assert linux.describe() == "linux: Succeeded"
    assert macos.state is Stage.FAILED
    assert macos.failed_stage is Stage.BUILDING
    assert macos.describe().startswith("macos: Failed(Building, ")
    assert "target not supported" in macos.cause

    assert report.status is Status.FAILED
    assert not report.ok
    assert report.failed_labels == ["macos"]
    assert list(fake_api.assets(1)) == ["cfn-guard-v2-linux.tar.gz"]
    assert not (project_dir / "dist" / "cfn-guard-v2-macos.tar.gz").exists()


def test_fail_open_reports_partial(
    client: ReleaseClient, release: Release, project_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("FAKE_TOOLCHAIN_FAIL", "x86_64-unknown-linux-musl")
    report = run_pipeline(release, make_config(fail_open=True), client, project_dir=project_dir)
    assert report.status is Status.PARTIAL
    assert report.ok
    assert report.to_dict()["failed_labels"] == ["linux"]


def test_rerun_fails_at_publishing_on_collision(
    client: ReleaseClient, release: Release, project_dir: Path
) -> None:
    config = make_config()
    run_pipeline(release, config, client, project_dir=project_dir)
    report = run_pipeline(release, config, client, project_dir=project_dir)

    assert all(r.failed_stage is Stage.PUBLISHING for r in report.results)
    assert "collision" in report.results[0].cause


def test_packaging_failure_skips_publish(
    client: ReleaseClient, fake_api: FakeReleaseAPI, release: Release, project_dir: Path
) -> None:
    (project_dir / "README.md").unlink()
    report = run_pipeline(release, make_config(), client, project_dir=project_dir)

    assert {r.failed_stage for r in report.results} == {Stage.PACKAGING}
    assert fake_api.uploads() == []


def test_report_dict(client: ReleaseClient, release: Release, project_dir: Path) -> None:
    report = run_pipeline(release, make_config(), client, project_dir=project_dir)
    data = report.to_dict()
    assert data["status"] == "succeeded"
    assert data["release_id"] == 1
    assert [j["asset_name"] for j in data["jobs"]] == ["cfn-guard-v2-linux.tar.gz", "cfn-guard-v2-macos.tar.gz"]
    assert all(j["asset_id"] for j in data["jobs"])
