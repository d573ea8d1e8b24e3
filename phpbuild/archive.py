# php-build/phpbuild/archive.py
"""Tarball extraction into a source directory, dropping the top-level directory."""

from __future__ import annotations

import tarfile
from pathlib import Path
from typing import Iterator, Optional

from phpbuild.errors import ExtractionFailure
from phpbuild.logging import get_logger

logger = get_logger("archive")

# kind -> tarfile mode
MODES = {
    "gzip": "r:gz",
    "bzip2": "r:bz2",
}

SUFFIXES = (
    (".tar.gz", "gzip"),
    (".tgz", "gzip"),
    (".tar.bz2", "bzip2"),
    (".tbz2", "bzip2"),
    (".tbz", "bzip2"),
)


def infer_kind(archive: Path) -> Optional[str]:
    name = Path(archive).name.lower()
    for suffix, kind in SUFFIXES:
        if name.endswith(suffix):
            return kind
    return None


def _strip_first_component(tar: tarfile.TarFile) -> Iterator[tarfile.TarInfo]:
    for member in tar.getmembers():
        parts = member.name.split("/", 1)
        if len(parts) < 2 or not parts[1]:
            # the top-level directory itself
            continue
        member.name = parts[1]
        if member.islnk():
            link_parts = member.linkname.split("/", 1)
            if len(link_parts) == 2:
                member.linkname = link_parts[1]
        yield member


def extract(archive: Path, dest: Path, kind: Optional[str] = None) -> Path:
    archive = Path(archive)
    dest = Path(dest)
    kind = kind or infer_kind(archive)
    if kind not in MODES:
        raise ExtractionFailure(
            f"Unsupported archive type for {archive.name}.",
            hint="Only gzip and bzip2 compressed tarballs are supported.",
            context={"archive": str(archive), "kind": str(kind)},
        )
    logger.debug("extracting %s (%s) into %s", archive, kind, dest)
    dest.mkdir(parents=True, exist_ok=True)
    try:
        with tarfile.open(archive, MODES[kind]) as tar:
            tar.extractall(dest, members=_strip_first_component(tar), filter="data")
    except (tarfile.TarError, EOFError, OSError) as e:
        raise ExtractionFailure(
            f"Failed to extract {archive.name}: {e}",
            context={"archive": str(archive), "dest": str(dest)},
        ) from e
    return dest
