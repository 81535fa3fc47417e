"""
builder.py

Responsibility: Invoke the toolchain for one platform target and locate the binary.

The toolchain is opaque: `BuildSettings.commands` are argv templates run in
order inside the project directory (by default `rustup target add` followed by
`cargo build --release --target`). The binary is then expected at the rendered
`BuildSettings.binary_path`, which is target-specific and deterministic.
"""

from __future__ import annotations

import subprocess
from pathlib import Path

from loguru import logger

from releaser.config import PipelineConfig
from releaser.models import BuildOutput, PlatformTarget
from releaser.render import RenderError, render_argv, render_value


class BuildError(RuntimeError):
    def __init__(self, target: PlatformTarget, cause: str) -> None:
        super().__init__(f"Build failed for {target.label} ({target.triple}): {cause}")
        self.target = target
        self.cause = cause


def _run(cmd: list[str], *, cwd: Path, timeout: float | None) -> str:
    """
    Run a toolchain command, returning its combined output.

    Raises `subprocess.CalledProcessError`, `subprocess.TimeoutExpired` or `OSError`.
    """
    logger.debug("Running: {}", " ".join(cmd))
    proc = subprocess.run(
        cmd,
        cwd=str(cwd),
        check=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        timeout=timeout,
    )
    return proc.stdout


def binary_path_for(target: PlatformTarget, config: PipelineConfig, *, project_dir: Path) -> Path:
    rel = render_value(config.build.binary_path, config.context_for(target))
    return (project_dir / rel).resolve()


def build(target: PlatformTarget, config: PipelineConfig, *, project_dir: str | Path = ".") -> BuildOutput:
    """
    Build `target` and return where its release binary landed.

    Any failure (unknown toolchain, unsupported triple, compile error, timeout,
    missing output) is raised as `BuildError` for this target only.
    """
    root = Path(project_dir).resolve()
    context = config.context_for(target)
    log = logger.bind(target=target.label)

    try:
        commands = [render_argv(cmd, context) for cmd in config.build.commands]
        binary = binary_path_for(target, config, project_dir=root)
    except RenderError as e:
        raise BuildError(target, str(e)) from e

    for cmd in commands:
        try:
            _run(cmd, cwd=root, timeout=config.build.timeout)
        except FileNotFoundError as e:
            raise BuildError(target, f"toolchain command not found: {cmd[0]}") from e
        except subprocess.TimeoutExpired as e:
            raise BuildError(target, f"timed out after {e.timeout}s: {' '.join(cmd)}") from e
        except subprocess.CalledProcessError as e:
            output = (e.stdout or "").strip()
            raise BuildError(target, f"command exited {e.returncode}: {' '.join(cmd)}\n\n{output}") from e
        except OSError as e:
            raise BuildError(target, f"could not run {cmd[0]}: {e}") from e

    if not binary.is_file():
        raise BuildError(target, f"expected binary not produced: {binary}")

    log.info("Built {}", binary)
    return BuildOutput(binary=binary, target=target)
