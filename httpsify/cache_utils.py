#!/usr/bin/env python3
"""
cache_utils.py

Lightweight on-disk cache for fetched rule sources.

Responsibilities:
 - Provide atomic writes for cached and exported text files.
 - Generate filesystem-safe filenames for URLs.
 - Maintain metadata (ETag, Last-Modified, SHA256) for conditional fetches.
 - Serve as a fallback layer if a remote download fails or is unchanged.

This module does not perform any network fetching logic.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
import tempfile
import time
from pathlib import Path
from typing import Any

from httpsify import utils

logger = logging.getLogger(__name__)

CACHE_META_FILENAME = "meta.json"

IO_BUFFER_SIZE = utils.IO_BUFFER_SIZE


# ----------------------------------------
# Helpers
# ----------------------------------------
def sanitize_filename(url: str, max_len: int = 180) -> str:
    """
    Return a filesystem-safe filename derived from `url`.

    Ensures deterministic and unique names by appending
    the first 16 characters of the SHA256 digest.
    """
    name = re.sub(r"^https?://", "", url, flags=re.IGNORECASE)
    name = re.sub(r"[^A-Za-z0-9._-]", "_", name)
    suffix = hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]
    max_body = max_len - (len(suffix) + 1)
    if len(name) > max_body:
        name = name[:max_body]
    return f"{name}_{suffix}.txt"


def atomic_write_text(target: Path, text: str, encoding: str = "utf-8") -> None:
    """
    Atomically write `text` to `target`.

    Ensures the target directory exists and replaces the file in one step
    so readers never see a partial file.
    """
    target = Path(target)
    target.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "w", delete=False, dir=target.parent, encoding=encoding, newline="\n"
    ) as tmp:
        tmp.write(text)
        tmp_path = Path(tmp.name)
    try:
        tmp_path.replace(target)
    except Exception:
        if tmp_path.exists():
            tmp_path.unlink(missing_ok=True)
        raise


def hash_file(path: str | Path) -> str:
    """Return SHA256 hash of the given file."""
    digest = hashlib.sha256()
    with Path(path).open("rb") as fh:
        while True:
            chunk = fh.read(IO_BUFFER_SIZE)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()


# ----------------------------------------
# Cache Manager
# ----------------------------------------
class CacheManager:
    """Manage cached files and metadata for fetched sources."""

    def __init__(self, cache_dir: str | Path) -> None:
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.meta_path = self.cache_dir / CACHE_META_FILENAME
        self._meta: dict[str, dict[str, Any]] = {}
        self._load()

    # --------------------
    # Metadata I/O
    # --------------------
    def _load(self) -> None:
        """Load metadata file if available; start empty on corruption."""
        if not self.meta_path.exists():
            return
        try:
            content = self.meta_path.read_text(encoding="utf-8")
            self._meta = json.loads(content)
        except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
            logger.warning(
                "Cache metadata corrupted (%s), starting fresh", type(e).__name__
            )
            self._meta = {}

    def save(self) -> None:
        """Persist metadata to disk (best-effort)."""
        try:
            atomic_write_text(
                self.meta_path,
                json.dumps(self._meta, indent=2, sort_keys=True, ensure_ascii=False)
                + "\n",
            )
        except OSError as e:
            logger.warning("Failed to save cache metadata: %s", e)

    # --------------------
    # Public API
    # --------------------
    def get_meta(self, url: str) -> dict[str, Any] | None:
        """Return stored metadata for a given URL, if any."""
        return self._meta.get(url)

    def path_for_url(self, url: str) -> Path:
        """Compute the expected cache file path for a given URL."""
        return self.cache_dir / sanitize_filename(url)

    def record_fetch(
        self,
        url: str,
        cache_file: Path,
        etag: str | None,
        last_modified: str | None,
        content_sha256: str | None,
        status_code: int,
        *,
        autosave: bool = True,
    ) -> None:
        """
        Record a completed fetch operation to metadata.

        Set autosave=False to batch multiple updates before calling save() once.
        """
        self._meta[url] = {
            "url": url,
            "path": str(cache_file),
            "etag": etag,
            "last_modified": last_modified,
            "content_sha256": content_sha256,
            "status_code": status_code,
            "fetched_at": int(time.time()),
        }
        if autosave:
            self.save()

    def get_cached_file(self, url: str) -> Path | None:
        """
        Return Path to cached file if it exists, or None.

        Falls back to computed path_for_url() if recorded path is missing.
        """
        meta = self._meta.get(url)
        if meta:
            recorded_path = meta.get("path", "")
            if recorded_path:
                recorded = Path(recorded_path)
                if recorded.exists():
                    return recorded

        fallback = self.path_for_url(url)
        return fallback if fallback.exists() else None
