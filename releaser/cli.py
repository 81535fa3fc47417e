"""
cli.py

Responsibility: CLI entrypoint for releaser.

High-level flow (command `run`):
1) Load pipeline config -> `PipelineConfig`
2) Read the release event (or explicit release id) -> `Release`
3) Build / package / publish every target in parallel
4) Print per-target outcome, optionally write a JSON report

This module should orchestrate behavior but keep concerns isolated:
- Config parsing: `config.py`
- Per-target stages: `builder.py`, `packager.py`, `publisher.py`
- Release API: `release_client.py`
- Job fan-out and aggregation: `pipeline.py`
"""

from __future__ import annotations

import argparse
import json
import os
from dataclasses import replace
from pathlib import Path
from typing import Any

from loguru import logger

from releaser import __version__
from releaser.config import ConfigError, PipelineConfig, load_config
from releaser.log import setup_logging
from releaser.models import Release
from releaser.pipeline import PipelineReport, Status, run_pipeline
from releaser.release_client import ReleaseAPIError, ReleaseClient


class CLIError(RuntimeError):
    pass


def _load_event(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise CLIError(f"Cannot read release event {path}: {e}") from e
    if not isinstance(data, dict):
        raise CLIError(f"Release event {path} must be a JSON object.")
    return data


def _resolve_release(args: argparse.Namespace) -> Release:
    if args.release_id is not None:
        if not args.repo or "/" not in args.repo:
            raise CLIError("--repo owner/name is required with --release-id")
        return Release(release_id=args.release_id, state=args.state, repository=args.repo)

    event_path = args.event or os.environ.get("GITHUB_EVENT_PATH")
    if not event_path:
        raise CLIError("A release event is required (use --event, set GITHUB_EVENT_PATH, or pass --release-id)")
    try:
        return Release.from_event(_load_event(Path(event_path)), repository=args.repo)
    except ValueError as e:
        raise CLIError(str(e)) from e


def _effective_config(args: argparse.Namespace) -> PipelineConfig:
    config = load_config(args.config).select(args.only)
    if args.fail_open:
        config = replace(config, fail_open=True)
    return config


def _print_report(report: PipelineReport) -> None:
    for result in report.results:
        print(result.describe())
    print(f"status: {report.status.value}")
    if report.failed_labels:
        rerun = " ".join(f"--only {label}" for label in report.failed_labels)
        print(f"re-run failed targets with: releaser run {rerun}")


def run_cmd(args: argparse.Namespace) -> int:
    config = _effective_config(args)
    release = _resolve_release(args)

    if not release.is_published:
        # No token or network needed for an ignored event.
        logger.info("Release {} is {!r}; nothing to publish", release.release_id, release.state)
        report = PipelineReport(status=Status.IDLE, release_id=release.release_id)
    else:
        token = args.token or os.environ.get("GITHUB_TOKEN") or ""
        if not token:
            raise CLIError("GitHub token is required (use --token or set GITHUB_TOKEN)")
        client = ReleaseClient(token, config.publish.api_base, timeout=config.publish.timeout)
        report = run_pipeline(release, config, client, project_dir=args.project_dir)

    _print_report(report)
    if args.report:
        Path(args.report).write_text(json.dumps(report.to_dict(), indent=2) + "\n", encoding="utf-8")

    return 0 if report.ok else 1


def names_cmd(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    for name in config.asset_names():
        print(name)
    return 0


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="releaser", description="Build, package and publish release archives per platform")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    r = sub.add_parser("run", help="Run the build/package/publish matrix for a release")
    r.add_argument("--config", default=None, help="Pipeline config YAML (default: built-in matrix)")
    r.add_argument("--event", default=None, help="Release event JSON (default: $GITHUB_EVENT_PATH)")
    r.add_argument("--repo", default=None, help="Repository owner/name (overrides the event)")
    r.add_argument("--release-id", type=int, default=None, help="Release id, instead of an event file")
    r.add_argument("--state", default="published", help="Release state used with --release-id (default: published)")
    r.add_argument("--project-dir", default=".", help="Source tree to build in (default: .)")
    r.add_argument("--only", action="append", default=None, metavar="LABEL", help="Only run this target (repeatable)")
    r.add_argument("--fail-open", action="store_true", help="Report partial success instead of failing")
    r.add_argument("--token", default=None, help="GitHub token (or set env GITHUB_TOKEN)")
    r.add_argument("--report", default=None, help="Write a JSON report to this path")
    r.set_defaults(func=run_cmd)

    n = sub.add_parser("names", help="Print the asset names the matrix will publish")
    n.add_argument("--config", default=None, help="Pipeline config YAML (default: built-in matrix)")
    n.set_defaults(func=names_cmd)
    return p


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    setup_logging(level="DEBUG" if args.verbose else "INFO")
    try:
        return int(args.func(args))
    except (CLIError, ConfigError, ReleaseAPIError) as e:
        logger.error("{}", e)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
