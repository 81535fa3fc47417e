"""
releaser package

This package builds, packages and publishes release archives for a matrix of
platform targets whenever a release is published.

Key responsibilities are split across modules:
- `config.py`: load the YAML pipeline config into a typed, validated model
- `builder.py`: run the toolchain for one target and locate its binary
- `packager.py`: stage binary + docs and write a reproducible `.tar.gz`
- `release_client.py`: isolated GitHub REST API interactions (upload URL, assets)
- `publisher.py`: upload one archive as a release asset (conflict/retry policy)
- `pipeline.py`: one independent job per target, aggregated into a report
- `cli.py`: CLI entrypoint (config -> release event -> pipeline -> report)
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
