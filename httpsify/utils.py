# utils.py
"""
Utility functions shared by the rule engine and the loaders.

This module provides core functionality for:
- Host canonicalization (IDNA/punycode + lowercase)
- Label counting, truncation and parent-suffix walking
- Comment detection for flattened host lists and preload JSON
- Small filesystem and summary helpers

Example Usage:
    from httpsify.utils import canonicalize_host, walk_suffixes

    canonicalize_host("Bücher.Example")  # Returns: "xn--bcher-kva.example"
    list(walk_suffixes("a.b.c"))          # Returns: ["a.b.c", "b.c", "c"]
"""

from __future__ import annotations

import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Iterator, Sequence

logger = logging.getLogger(__name__)


# -------------------------
# Constants
# -------------------------

HTTP_PREFIX = "http:"
HTTPS_PREFIX = "https:"
HTTP_URL_PREFIX = "http://"
SUBDOMAIN_WILDCARD = "*."
FORCE_HTTPS_MODE = "force-https"
STANDARD_FROM = "^http:"
STANDARD_TO = "https:"

REGEX_MATCH_TIMEOUT = 1.0  # seconds per match/substitution
HOST_CACHE_SIZE = 32768  # LRU cache size for host canonicalization
MAX_HOSTNAME_LENGTH = 253  # DNS limit, in ASCII octets
IO_BUFFER_SIZE = 131072  # 128KB buffer for file I/O

_COMMENT_SEPARATOR_RE = re.compile(r"^[-=*_\.]{3,}$")


# -------------------------
# Basic helpers
# -------------------------


def is_blank_line(line: str | None) -> bool:
    """True if line is None or only whitespace."""
    return line is None or line.strip() == ""


def is_comment_line(line: str | None) -> bool:
    """Detect '#' / '//' comments and separator lines."""
    if not line:
        return False
    s = line.lstrip()
    return (
        s[:1] == "#"
        or s[:2] == "//"
        or _COMMENT_SEPARATOR_RE.fullmatch(s) is not None
    )


# -------------------------
# Filesystem helpers
# -------------------------


def list_files_with_suffix(directory: str | Path, suffix: str) -> list[Path]:
    """Return alphabetical list of files ending in `suffix` inside `directory`."""
    base = Path(directory)
    if not base.is_dir():
        raise FileNotFoundError(f"Input directory not found: {directory}")
    suffix = suffix.lower()
    return [
        entry
        for entry in sorted(base.iterdir(), key=lambda p: p.name.lower())
        if entry.is_file() and entry.name.lower().endswith(suffix)
    ]


def format_summary(label: str, stats: dict[str, int], keys: Sequence[str]) -> str:
    """Return a space-joined `key=value` summary line."""
    parts = [label + ":"]
    parts.extend(f"{key}={stats.get(key, 0)}" for key in keys)
    return " ".join(parts)


# -------------------------
# Host canonicalization
# -------------------------


@lru_cache(maxsize=HOST_CACHE_SIZE)
def _canonicalize_host_cached(host: str) -> str | None:
    try:
        ascii_host = host.encode("idna").decode("ascii")
    except UnicodeError:
        return None
    if len(ascii_host) > MAX_HOSTNAME_LENGTH:
        return None
    return ascii_host.lower()


def canonicalize_host(host: str) -> str | None:
    """
    Convert `host` to its ASCII-compatible form and lowercase it.

    Returns None when the host cannot be encoded (empty labels, labels
    longer than 63 octets, invalid code points) or is longer than any
    valid hostname. Only hosts within MAX_HOSTNAME_LENGTH reach the cache.
    """
    if not host or len(host) > MAX_HOSTNAME_LENGTH:
        return None
    return _canonicalize_host_cached(host)


def normalize_host(host: object) -> str:
    """
    Normalize a host read from a data source: strip, lowercase, drop a
    trailing dot and punycode non-ASCII labels. On encoding failure the
    lowercased input is kept so the entry is still visible in exports.
    Anything that is not a string normalizes to "".
    """
    if not isinstance(host, str) or not host.strip():
        return ""
    h = host.strip().lower().rstrip(".")
    if not h.isascii():
        canonical = canonicalize_host(h)
        if canonical is not None:
            h = canonical
    return h


# -------------------------
# Label helpers
# -------------------------


def count_labels(host: str) -> int:
    """Number of dot-separated labels in `host` (0 for the empty string)."""
    if not host:
        return 0
    return host.count(".") + 1


def truncate_labels(host: str, keep: int) -> str:
    """
    Return the last `keep` labels of `host`.

    Example:
        truncate_labels("a.b.c.d", 2) -> "c.d"
    """
    if keep <= 0:
        return ""
    idx = len(host)
    for _ in range(keep):
        idx = host.rfind(".", 0, idx)
        if idx == -1:
            return host
    return host[idx + 1:]


def walk_suffixes(domain: str) -> Iterator[str]:
    """
    Yield domain and successive parent suffixes (e.g., a.b.c -> a.b.c, b.c, c).
    """
    if not domain:
        return
    cur = domain
    yield cur
    idx = cur.find(".")
    while idx != -1:
        cur = cur[idx + 1:]
        yield cur
        idx = cur.find(".")


__all__ = [
    # Functions
    "is_blank_line",
    "is_comment_line",
    "list_files_with_suffix",
    "format_summary",
    "canonicalize_host",
    "normalize_host",
    "count_labels",
    "truncate_labels",
    "walk_suffixes",
    # Constants
    "HTTP_PREFIX",
    "HTTPS_PREFIX",
    "HTTP_URL_PREFIX",
    "SUBDOMAIN_WILDCARD",
    "FORCE_HTTPS_MODE",
    "STANDARD_FROM",
    "STANDARD_TO",
    "REGEX_MATCH_TIMEOUT",
    "HOST_CACHE_SIZE",
    "MAX_HOSTNAME_LENGTH",
    "IO_BUFFER_SIZE",
]
