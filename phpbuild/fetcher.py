# php-build/phpbuild/fetcher.py
"""
fetcher.py - HTTP transport and download cache for php-build

Features:
- Transport over whichever HTTP client is installed (curl preferred, wget otherwise)
- HEAD probe used only to read a Content-Disposition filename
- Download cache under <tmp>/packages keyed by file name; sources extracted once
  under <tmp>/source/<key> and reused on later runs
"""

from __future__ import annotations

import os
import re
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from urllib.parse import unquote, urlparse

from phpbuild import archive
from phpbuild.errors import DownloadFailure, ExtractionFailure
from phpbuild.logging import get_logger, log_step

logger = get_logger("fetcher")

_DISPOSITION_RE = re.compile(r"filename\*?=(?:UTF-8'')?\"?([^\";]+)\"?", re.IGNORECASE)


# -----------------------------------------------------------------------
# Utility helpers
# -----------------------------------------------------------------------
def _safe_run(cmd: List[str]) -> Tuple[int, str, str]:
    """Run command and capture output. Returns (rc, stdout, stderr)"""
    logger.debug("RUN: %s", " ".join(cmd))
    try:
        p = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True, check=False)
    except OSError as e:
        return 127, "", str(e)
    return p.returncode, p.stdout or "", p.stderr or ""


def parse_headers(text: str) -> Dict[str, str]:
    """Parse raw HTTP response headers; with redirects the last response wins."""
    headers: Dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if line.upper().startswith("HTTP/"):
            headers = {}
            continue
        name, sep, value = line.partition(":")
        if sep and name:
            headers[name.strip().lower()] = value.strip()
    return headers


def disposition_filename(headers: Dict[str, str]) -> Optional[str]:
    value = headers.get("content-disposition")
    if not value:
        return None
    m = _DISPOSITION_RE.search(value)
    if not m:
        return None
    name = os.path.basename(unquote(m.group(1).strip()))
    return name or None


def url_filename(url: str) -> str:
    return os.path.basename(unquote(urlparse(url).path.rstrip("/"))) or "download"


# -----------------------------------------------------------------------
# Backends
# -----------------------------------------------------------------------
@dataclass(frozen=True)
class CurlBackend:
    executable: str = "curl"
    name = "curl"

    def head(self, url: str) -> Tuple[int, str]:
        rc, out, _ = _safe_run([self.executable, "-qsIL", "--fail", url])
        return rc, out

    def get(self, url: str, dest: Path) -> Tuple[int, str]:
        rc, _, err = _safe_run([self.executable, "-qsSL", "--fail", "-o", str(dest), url])
        return rc, err


@dataclass(frozen=True)
class WgetBackend:
    executable: str = "wget"
    name = "wget"

    def head(self, url: str) -> Tuple[int, str]:
        # wget prints server headers on stderr
        rc, _, err = _safe_run([self.executable, "-q", "-S", "--spider", url])
        return rc, err

    def get(self, url: str, dest: Path) -> Tuple[int, str]:
        rc, _, err = _safe_run([self.executable, "-q", "-O", str(dest), url])
        return rc, err


BACKENDS = (CurlBackend, WgetBackend)


def select_backend():
    for backend in BACKENDS:
        path = shutil.which(backend.name)
        if path:
            return backend(executable=path)
    return None


# -----------------------------------------------------------------------
# Transport
# -----------------------------------------------------------------------
class Transport:
    def __init__(self, backend=None):
        self._backend = backend

    @property
    def backend(self):
        if self._backend is None:
            self._backend = select_backend()
            if self._backend is None:
                raise DownloadFailure(
                    "No HTTP client available.",
                    hint="Install curl or wget.",
                )
            logger.debug("using %s for downloads", self._backend.name)
        return self._backend

    def head(self, url: str) -> Dict[str, str]:
        rc, out = self.backend.head(url)
        if rc != 0:
            raise DownloadFailure(f"HEAD {url} failed ({rc}).", context={"url": url})
        return parse_headers(out)

    def get(self, url: str, dest: Path) -> Path:
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        # only a complete download ever appears under the final name
        part = dest.with_name(dest.name + ".part")
        try:
            rc, err = self.backend.get(url, part)
            if rc != 0:
                raise DownloadFailure(
                    f"Could not download {url} ({rc}).",
                    context={"url": url, "backend": self.backend.name, "error": err.strip()},
                )
            part.replace(dest)
        except BaseException:
            part.unlink(missing_ok=True)
            raise
        return dest

    def filename_for(self, url: str) -> str:
        try:
            name = disposition_filename(self.head(url))
        except DownloadFailure:
            logger.debug("HEAD probe failed for %s, falling back to url", url)
            name = None
        return name or url_filename(url)


# -----------------------------------------------------------------------
# Download cache
# -----------------------------------------------------------------------
@dataclass(frozen=True)
class DownloadArtifact:
    url: str
    package_path: Path
    source_dir: Path


class Fetcher:
    def __init__(self, tmp_dir: Path, transport: Optional[Transport] = None):
        self.tmp_dir = Path(tmp_dir)
        self.packages_dir = self.tmp_dir / "packages"
        self.source_root = self.tmp_dir / "source"
        self.transport = transport or Transport()

    def source_dir_for(self, key: str) -> Path:
        return self.source_root / key

    def download(self, key: str, url: str, kind: Optional[str] = None) -> DownloadArtifact:
        """Download url (unless cached) and extract it into source/<key> (unless present)."""
        source_dir = self.source_dir_for(key)
        filename = url_filename(url)
        package_path = self.packages_dir / filename
        if not package_path.exists():
            # the HEAD probe may name the file differently than the url
            filename = self.transport.filename_for(url)
            package_path = self.packages_dir / filename
        if package_path.exists():
            log_step(logger, "Skipping", f"Already downloaded {url}")
        else:
            log_step(logger, "Downloading", url)
            self.transport.get(url, package_path)

        if source_dir.is_dir():
            log_step(logger, "Skipping", f"Already extracted {package_path.name}")
        else:
            log_step(logger, "Preparing", source_dir)
            try:
                archive.extract(package_path, source_dir, kind)
            except ExtractionFailure:
                shutil.rmtree(source_dir, ignore_errors=True)
                # a corrupt package would otherwise be reused on every run
                package_path.unlink(missing_ok=True)
                raise
        return DownloadArtifact(url=url, package_path=package_path, source_dir=source_dir)
