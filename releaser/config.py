"""
config.py

Responsibility: Load and validate the pipeline configuration into a typed model.

The configuration is a YAML mapping (see `release.example.yml`). Every key is
optional; omitted keys fall back to the defaults below, which describe the
two-platform (linux/macos) Rust release matrix.

The builder, packager, publisher and pipeline treat the parsed result as the
single source of truth.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from releaser.models import Compress, CopyFile, MakeDir, PackageStep, PlatformTarget, archive_name, default_steps


class ConfigError(ValueError):
    pass


CONFLICT_POLICIES = ("fail", "skip", "replace")

DEFAULT_BUILD_COMMANDS: tuple[tuple[str, ...], ...] = (
    ("rustup", "target", "add", "{{ triple }}"),
    ("cargo", "build", "--release", "--target", "{{ triple }}"),
)


def _default_targets() -> tuple[PlatformTarget, ...]:
    return (
        PlatformTarget(label="linux", triple="x86_64-unknown-linux-musl"),
        PlatformTarget(label="macos", triple="x86_64-apple-darwin"),
    )


@dataclass(frozen=True)
class BuildSettings:
    """Toolchain invocation: argv templates run in order, then the expected binary location."""

    commands: tuple[tuple[str, ...], ...] = DEFAULT_BUILD_COMMANDS
    binary_path: str = "target/{{ triple }}/release/{{ binary }}"
    timeout: float | None = None


@dataclass(frozen=True)
class PublishSettings:
    api_base: str = "https://api.github.com"
    on_conflict: str = "fail"
    retries: int = 0
    timeout: float = 30


@dataclass(frozen=True)
class PipelineConfig:
    product: str = "cfn-guard-v2"
    binary: str = "cfn-guard"
    docs: str = "README.md"
    workdir: str = "dist"
    fail_open: bool = False
    max_workers: int | None = None
    build: BuildSettings = field(default_factory=BuildSettings)
    publish: PublishSettings = field(default_factory=PublishSettings)
    targets: tuple[PlatformTarget, ...] = field(default_factory=_default_targets)

    def asset_names(self) -> list[str]:
        return [archive_name(self.product, t.label) for t in self.targets]

    def select(self, labels: list[str] | None) -> "PipelineConfig":
        """
        Return a copy restricted to `labels` (in configured order). Used to re-run
        only the targets that failed previously.
        """
        if not labels:
            return self
        known = {t.label for t in self.targets}
        unknown = sorted(set(labels) - known)
        if unknown:
            raise ConfigError(f"Unknown target label(s): {', '.join(unknown)}")
        wanted = set(labels)
        return replace(self, targets=tuple(t for t in self.targets if t.label in wanted))

    def context_for(self, target: PlatformTarget) -> dict[str, Any]:
        # Deterministic keys; config templates reference these.
        return {
            "product": self.product,
            "binary": self.binary,
            "docs": self.docs,
            "label": target.label,
            "triple": target.triple,
        }


def _mapping(raw: Any, name: str) -> dict[str, Any]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"`{name}` must be an object/mapping when provided.")
    return raw


def _non_empty_str(raw: Any, name: str) -> str:
    value = str(raw if raw is not None else "").strip()
    if not value:
        raise ConfigError(f"`{name}` must be a non-empty string.")
    return value


_NAME_PART = re.compile(r"[A-Za-z0-9][A-Za-z0-9._+-]*")


def _name_part(raw: Any, name: str) -> str:
    """A value that becomes part of an archive file name: no separators, no `..`."""
    value = _non_empty_str(raw, name)
    if not _NAME_PART.fullmatch(value) or ".." in value:
        raise ConfigError(f"`{name}` must be a plain file-name component (letters, digits, `.`, `_`, `+`, `-`): {value!r}")
    return value


def _flag(raw: Any, name: str) -> bool:
    if not isinstance(raw, bool):
        raise ConfigError(f"`{name}` must be true or false.")
    return raw


def _parse_step(raw: Any, where: str) -> PackageStep:
    if not isinstance(raw, dict) or len(raw) != 1:
        raise ConfigError(f"{where}: each package step must be a single-key mapping (mkdir/copy/compress).")
    kind, arg = next(iter(raw.items()))
    if kind == "mkdir":
        return MakeDir(_non_empty_str(arg, f"{where}.mkdir"))
    if kind == "compress":
        return Compress(_non_empty_str(arg, f"{where}.compress"))
    if kind == "copy":
        if isinstance(arg, dict):
            src = _non_empty_str(arg.get("src"), f"{where}.copy.src")
            dest = arg.get("dest")
            return CopyFile(src, _non_empty_str(dest, f"{where}.copy.dest")) if dest is not None else CopyFile(src)
        return CopyFile(_non_empty_str(arg, f"{where}.copy"))
    raise ConfigError(f"{where}: unknown package step `{kind}`.")


def _parse_targets(raw: Any) -> tuple[PlatformTarget, ...]:
    if raw is None:
        return _default_targets()
    if not isinstance(raw, list) or not raw:
        raise ConfigError("`targets` must be a non-empty list.")

    targets: list[PlatformTarget] = []
    seen: set[str] = set()
    for i, item in enumerate(raw):
        where = f"targets[{i}]"
        item = _mapping(item, where)
        label = _name_part(item.get("label"), f"{where}.label")
        triple = _non_empty_str(item.get("triple"), f"{where}.triple")
        # Labels name the archives, so duplicates would collide on upload.
        if label in seen:
            raise ConfigError(f"Duplicate target label `{label}`.")
        seen.add(label)

        steps_raw = item.get("package")
        if steps_raw is None:
            steps = default_steps()
        else:
            if not isinstance(steps_raw, list) or not steps_raw:
                raise ConfigError(f"{where}.package must be a non-empty list.")
            steps = tuple(_parse_step(s, f"{where}.package[{j}]") for j, s in enumerate(steps_raw))
            if not isinstance(steps[-1], Compress):
                raise ConfigError(f"{where}.package must end with a `compress` step.")
        targets.append(PlatformTarget(label=label, triple=triple, steps=steps))
    return tuple(targets)


def _parse_build(raw: Any) -> BuildSettings:
    data = _mapping(raw, "build")
    defaults = BuildSettings()

    commands_raw = data.get("commands")
    if commands_raw is None:
        commands = defaults.commands
    else:
        if not isinstance(commands_raw, list):
            raise ConfigError("`build.commands` must be a list of argv lists.")
        parsed = []
        for i, cmd in enumerate(commands_raw):
            if not isinstance(cmd, list) or not cmd:
                raise ConfigError(f"`build.commands[{i}]` must be a non-empty argv list.")
            parsed.append(tuple(str(a) for a in cmd))
        commands = tuple(parsed)

    binary_path = data.get("binary_path", defaults.binary_path)
    if not isinstance(binary_path, str) or not binary_path.strip():
        raise ConfigError("`build.binary_path` must be a non-empty string.")

    timeout = data.get("timeout")
    if timeout is not None:
        try:
            timeout = float(timeout)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid numeric value in `build.timeout`: {e}") from e
        if timeout <= 0:
            raise ConfigError("`build.timeout` must be > 0.")
    return BuildSettings(
        commands=commands,
        binary_path=binary_path,
        timeout=timeout,
    )


def _parse_publish(raw: Any) -> PublishSettings:
    data = _mapping(raw, "publish")
    defaults = PublishSettings()

    on_conflict = str(data.get("on_conflict") or defaults.on_conflict).strip().lower()
    if on_conflict not in CONFLICT_POLICIES:
        raise ConfigError(f"`publish.on_conflict` must be one of {', '.join(CONFLICT_POLICIES)}.")

    try:
        retries = int(data.get("retries", defaults.retries) or 0)
        timeout = float(data.get("timeout", defaults.timeout) or defaults.timeout)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid numeric value in `publish`: {e}") from e
    if retries < 0:
        raise ConfigError("`publish.retries` must be >= 0.")

    return PublishSettings(
        api_base=str(data.get("api_base") or defaults.api_base).rstrip("/"),
        on_conflict=on_conflict,
        retries=retries,
        timeout=timeout,
    )


def parse_config(data: dict[str, Any] | None) -> PipelineConfig:
    """Validate an already-loaded mapping. `None` yields the default configuration."""
    data = _mapping(data, "config")
    defaults = PipelineConfig()

    max_workers = data.get("max_workers")
    if max_workers is not None:
        try:
            max_workers = int(max_workers)
        except (TypeError, ValueError) as e:
            raise ConfigError("`max_workers` must be an integer.") from e
        if max_workers < 1:
            raise ConfigError("`max_workers` must be >= 1.")

    return PipelineConfig(
        product=_name_part(data.get("product", defaults.product), "product"),
        binary=_non_empty_str(data.get("binary", defaults.binary), "binary"),
        docs=_non_empty_str(data.get("docs", defaults.docs), "docs"),
        workdir=_non_empty_str(data.get("workdir", defaults.workdir), "workdir"),
        fail_open=_flag(data.get("fail_open", defaults.fail_open), "fail_open"),
        max_workers=max_workers,
        build=_parse_build(data.get("build")),
        publish=_parse_publish(data.get("publish")),
        targets=_parse_targets(data.get("targets")),
    )


def load_config(config_path: str | Path | None) -> PipelineConfig:
    """
    Load a YAML config file into a `PipelineConfig`.

    With no path, return the built-in defaults.
    """
    if config_path is None:
        return PipelineConfig()
    path = Path(config_path)
    if not path.exists():
        raise ConfigError(f"Config file does not exist: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"Config file is not valid YAML: {path}") from e
    return parse_config(data)
