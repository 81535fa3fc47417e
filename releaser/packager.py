"""
packager.py

Responsibility: Turn a built binary into the release archive for its target.

Each target carries an ordered sequence of typed steps (`MakeDir`, `CopyFile`,
`Compress`) whose paths are Jinja2 templates. The default sequence is:

    mkdir    {product}-{label}/
    copy     <binary>  -> {product}-{label}/
    copy     README.md -> {product}-{label}/
    compress {product}-{label}/ -> {product}-{label}.tar.gz

Rules:
- The archive name depends only on product and label.
- Archive members are added in sorted order with zeroed mtimes and owners, and
  the gzip header carries no timestamp, so identical inputs give identical bytes.
"""

from __future__ import annotations

import gzip
import shutil
import tarfile
from pathlib import Path
from typing import Any

from loguru import logger

from releaser.models import Archive, BuildOutput, Compress, CopyFile, MakeDir, PackageStep, archive_name, archive_stem
from releaser.render import RenderError, render_value


class PackageError(RuntimeError):
    pass


def _resolve(raw: str, context: dict[str, Any], base: Path) -> Path:
    path = Path(render_value(raw, context))
    return path if path.is_absolute() else (base / path)


def _normalize(info: tarfile.TarInfo) -> tarfile.TarInfo:
    info.mtime = 0
    info.uid = 0
    info.gid = 0
    info.uname = ""
    info.gname = ""
    return info


def _iter_tree(src_dir: Path) -> list[Path]:
    """
    Return src_dir followed by everything below it, in deterministic
    lexicographic order (relative path ordering).
    """
    files = sorted(src_dir.rglob("*"), key=lambda p: p.relative_to(src_dir).as_posix())
    return [src_dir, *files]


def write_tar_gz(src_dir: Path, archive_path: Path) -> None:
    """Compress `src_dir` into `archive_path` with `src_dir.name` as the single top-level entry."""
    arcroot = src_dir.name
    with open(archive_path, "wb") as raw, gzip.GzipFile(filename="", mode="wb", fileobj=raw, mtime=0) as gz:
        with tarfile.open(fileobj=gz, mode="w", format=tarfile.GNU_FORMAT) as tar:
            for path in _iter_tree(src_dir):
                rel = path.relative_to(src_dir).as_posix()
                arcname = arcroot if rel == "." else f"{arcroot}/{rel}"
                info = _normalize(tar.gettarinfo(str(path), arcname=arcname))
                if info.isreg():
                    with open(path, "rb") as fh:
                        tar.addfile(info, fh)
                else:
                    tar.addfile(info)


def _run_step(step: PackageStep, context: dict[str, Any], base: Path, archive_path: Path) -> bool:
    """Execute one step; return True when it produced the archive."""
    if isinstance(step, MakeDir):
        path = _resolve(step.path, context, base).resolve()
        out_dir = archive_path.parent
        if out_dir not in path.parents:
            raise PackageError(f"Staging directory must be inside the workdir {out_dir}: {path}")
        # Stale files from an earlier run would leak into the archive.
        if path.exists():
            shutil.rmtree(path)
        path.mkdir(parents=True)
        return False

    if isinstance(step, CopyFile):
        src = _resolve(step.src, context, base)
        dest = _resolve(step.dest, context, base)
        if not src.is_file():
            raise PackageError(f"File to package is missing: {src}")
        if not dest.is_dir():
            raise PackageError(f"Copy destination is not a directory: {dest}")
        shutil.copy2(src, dest / src.name)
        return False

    if isinstance(step, Compress):
        src = _resolve(step.src, context, base)
        if not src.is_dir():
            raise PackageError(f"Directory to compress is missing: {src}")
        write_tar_gz(src, archive_path)
        return True

    raise PackageError(f"Unknown package step: {step!r}")


def package(
    output: BuildOutput,
    docs: str | Path,
    *,
    product: str,
    workdir: str | Path,
    project_dir: str | Path = ".",
    binary: str = "",
) -> Archive:
    """
    Stage and compress `output.binary` plus `docs` into `{product}-{label}.tar.gz`
    under `workdir`.

    Relative paths in steps resolve against `project_dir`.
    """
    target = output.target
    base = Path(project_dir).resolve()
    out_dir = Path(workdir)
    out_dir = (out_dir if out_dir.is_absolute() else base / out_dir).resolve()
    docs_path = Path(docs)
    docs_path = docs_path if docs_path.is_absolute() else base / docs_path

    archive_path = out_dir / archive_name(product, target.label)
    if archive_path.parent != out_dir or archive_path.name != archive_name(product, target.label):
        raise PackageError(f"Archive name for {target.label!r} is not a plain file name: {archive_path.name}")
    context = {
        "product": product,
        "binary": binary or output.binary.name,
        "label": target.label,
        "triple": target.triple,
        "docs": str(docs_path),
        "binary_path": str(output.binary),
        "stage_dir": str(out_dir / archive_stem(product, target.label)),
        "archive": str(archive_path),
    }

    if not output.binary.is_file():
        raise PackageError(f"Binary is missing: {output.binary}")
    if not docs_path.is_file():
        raise PackageError(f"Documentation file is missing: {docs_path}")

    produced = False
    try:
        out_dir.mkdir(parents=True, exist_ok=True)
        for step in target.steps:
            produced = _run_step(step, context, base, archive_path) or produced
    except RenderError as e:
        raise PackageError(str(e)) from e
    except (OSError, tarfile.TarError) as e:
        raise PackageError(f"Packaging {target.label} failed: {e}") from e

    if not produced:
        raise PackageError(f"No compress step for {target.label}; archive not written.")

    logger.bind(target=target.label).info("Packaged {}", archive_path.name)
    return Archive(path=archive_path, target=target)
