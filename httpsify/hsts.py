#!/usr/bin/env python3
"""
hsts.py

Load the Chromium HSTS preload list into a RuleCollection.

Behavior:
 - Downloads the base64-encoded `transport_security_state_static.json` with aiohttp.
 - Supports conditional GET (If-None-Match / If-Modified-Since) when a cache
   directory is given, and falls back to the cached copy on failure.
 - Retries transient failures (timeouts, connection errors, 429, 5xx) with
   exponential backoff + jitter.
 - Only `force-https` entries are registered, as plain upgrade rules, with or
   without subdomains according to `include_subdomains`.

Usage:
    python -m httpsify.hsts [--preload-file FILE] [--cache DIR]
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import binascii
import hashlib
import json
import logging
import random
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

import aiohttp

from httpsify import utils
from httpsify.cache_utils import CacheManager, atomic_write_text, hash_file
from httpsify.collection import RuleCollection

logger = logging.getLogger(__name__)


# ----------------------------------------
# Constants
# ----------------------------------------
DEFAULT_PRELOAD_URL = (
    "https://chromium.googlesource.com/chromium/src/+/main/net/http/"
    "transport_security_state_static.json?format=TEXT"
)
DEFAULT_TIMEOUT = 600  # the full list is large and gitiles can be slow
DEFAULT_RETRIES = 3
FORCE_HTTPS_MODE = utils.FORCE_HTTPS_MODE
USER_AGENT = "Mozilla/5.0 (compatible; httpsify/1.0)"


class PreloadError(Exception):
    """Raised when the preload list cannot be fetched or decoded."""


@dataclass(frozen=True)
class PreloadEntry:
    name: str
    include_subdomains: bool = False
    mode: str = ""

    @property
    def force_https(self) -> bool:
        return self.mode == FORCE_HTTPS_MODE


# ----------------------------------------
# Decoding
# ----------------------------------------
def _is_json_comment(line: str) -> bool:
    return line.strip().startswith("//")


def strip_json_comments(text: str) -> str:
    """Drop whole-line `//` comments, which the preload JSON contains."""
    return "\n".join(line for line in text.splitlines() if not _is_json_comment(line))


def decode_preload_text(raw: str | bytes) -> str:
    """Base64-decode a `?format=TEXT` response and strip its comment lines."""
    try:
        decoded = base64.b64decode(raw).decode("utf-8")
    except (binascii.Error, ValueError) as exc:
        raise PreloadError(f"Preload payload is not valid base64: {exc}") from exc
    return strip_json_comments(decoded)


def parse_preload_entries(text: str) -> list[PreloadEntry]:
    """Parse the preload JSON (comments already stripped) into entries."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise PreloadError(f"Preload JSON is malformed: {exc}") from exc
    raw_entries = data.get("entries") if isinstance(data, dict) else None
    if not isinstance(raw_entries, list):
        raise PreloadError("Preload JSON has no 'entries' list")

    entries: list[PreloadEntry] = []
    for raw in raw_entries:
        if not isinstance(raw, dict) or not isinstance(raw.get("name"), str):
            continue
        name = utils.normalize_host(raw["name"])
        if not name:
            continue
        entries.append(
            PreloadEntry(
                name=name,
                include_subdomains=bool(raw.get("include_subdomains", False)),
                mode=str(raw.get("mode") or ""),
            )
        )
    return entries


def build_collection(entries: Iterable[PreloadEntry]) -> RuleCollection:
    """Register every force-https entry as a plain upgrade rule."""
    ordered = sorted(entries, key=lambda e: (not e.include_subdomains, e.name))
    names: list[str] = []
    subdomain_names: list[str] = []
    skipped = 0
    for entry in ordered:
        if not entry.force_https:
            skipped += 1
            continue
        if entry.include_subdomains:
            subdomain_names.append(entry.name)
        else:
            names.append(entry.name)

    collection = RuleCollection()
    collection.add_simple_hosts(subdomain_names, include_subdomains=True)
    collection.add_simple_hosts(names, include_subdomains=False)
    logger.info(
        "HSTS preload: %d hosts, %d with subdomains, %d skipped",
        len(names),
        len(subdomain_names),
        skipped,
    )
    return collection


# ----------------------------------------
# Fetching
# ----------------------------------------
def _should_retry_status(status: int) -> bool:
    """Return True if HTTP status is retryable."""
    return status == 429 or 500 <= status < 600


async def _backoff(attempt: int) -> None:
    base = 0.5 * (2 ** (attempt - 1))
    jitter = random.uniform(0, base * 0.1)
    await asyncio.sleep(min(base + jitter, 10.0))


async def fetch_preload_text(
    url: str = DEFAULT_PRELOAD_URL,
    *,
    cache_dir: str | Path | None = None,
    timeout: int = DEFAULT_TIMEOUT,
    retries: int = DEFAULT_RETRIES,
) -> str:
    """
    Fetch the raw (base64) preload payload.

    With a cache directory, a conditional GET is issued and the cached copy
    is reused on 304 or when every attempt fails. A cached copy whose
    SHA-256 no longer matches the recorded one is ignored.
    """
    cache = CacheManager(cache_dir) if cache_dir is not None else None
    cached_file = cache.get_cached_file(url) if cache else None
    meta = (cache.get_meta(url) if cache else None) or {}
    expected = meta.get("content_sha256")
    if cached_file and expected and hash_file(cached_file) != expected:
        logger.warning("Cached preload copy %s failed its checksum, ignoring it", cached_file)
        cached_file = None

    headers = {"User-Agent": USER_AGENT}
    if cached_file:
        if meta.get("etag"):
            headers["If-None-Match"] = meta["etag"]
        if meta.get("last_modified"):
            headers["If-Modified-Since"] = meta["last_modified"]

    timeout_obj = aiohttp.ClientTimeout(total=timeout, connect=10, sock_read=timeout)
    attempt = 0
    last_exc: Exception | None = None

    async with aiohttp.ClientSession(timeout=timeout_obj) as session:
        while attempt <= retries:
            attempt += 1
            try:
                logger.info("Loading preload JSON from %s", url)
                async with session.get(url, headers=headers, allow_redirects=True) as resp:
                    if resp.status == 304 and cached_file:
                        logger.info("Preload list not modified, using cache")
                        return cached_file.read_text(encoding="utf-8")
                    if resp.status != 200:
                        last_exc = PreloadError(f"server returned unexpected {resp.status} status code")
                        if _should_retry_status(resp.status) and attempt <= retries:
                            await _backoff(attempt)
                            continue
                        break
                    body = await resp.read()
                    text = body.decode("ascii", errors="replace")
                    if cache:
                        cache_path = cache.path_for_url(url)
                        atomic_write_text(cache_path, text)
                        cache.record_fetch(
                            url,
                            cache_path,
                            etag=resp.headers.get("ETag"),
                            last_modified=resp.headers.get("Last-Modified"),
                            content_sha256=hashlib.sha256(text.encode("utf-8")).hexdigest(),
                            status_code=resp.status,
                        )
                    return text
            except asyncio.TimeoutError:
                last_exc = PreloadError("Timeout - server did not respond in time")
            except aiohttp.ClientSSLError as ex:
                last_exc = PreloadError(f"SSL certificate error - {ex}")
                break
            except aiohttp.ClientError as ex:
                last_exc = PreloadError(f"Connection error - {type(ex).__name__}")
            if attempt <= retries:
                await _backoff(attempt)

    if cached_file and cached_file.exists():
        logger.warning("Preload fetch failed (%s), using cached copy", last_exc)
        return cached_file.read_text(encoding="utf-8")
    raise last_exc or PreloadError("unknown error")


def read_preload_file(path: str | Path) -> str:
    """Read a local preload file, either base64 (`?format=TEXT`) or plain JSON."""
    raw = Path(path).read_text(encoding="utf-8")
    if raw.lstrip().startswith(("{", "//")):
        return strip_json_comments(raw)
    return decode_preload_text(raw)


def load_hsts_preload(
    url: str = DEFAULT_PRELOAD_URL,
    *,
    preload_file: str | Path | None = None,
    cache_dir: str | Path | None = None,
    timeout: int = DEFAULT_TIMEOUT,
    retries: int = DEFAULT_RETRIES,
) -> RuleCollection:
    """Load the preload list (remote, or from `preload_file`) into a collection."""
    if preload_file is not None:
        logger.info("Loading preload JSON from %s", preload_file)
        text = read_preload_file(preload_file)
    else:
        raw = asyncio.run(
            fetch_preload_text(url, cache_dir=cache_dir, timeout=timeout, retries=retries)
        )
        text = decode_preload_text(raw)
    logger.info("Generating rules")
    return build_collection(parse_preload_entries(text))


# ----------------------------------------
# CLI
# ----------------------------------------
def main(argv: list[str] | None = None) -> int:
    """Print a summary of the preload list."""
    parser = argparse.ArgumentParser(description="Load the HSTS preload list")
    parser.add_argument("--url", default=DEFAULT_PRELOAD_URL, help="Preload list URL")
    parser.add_argument("--preload-file", default=None, help="Local preload file")
    parser.add_argument("-c", "--cache", default=None, help="Cache directory")
    parser.add_argument("--timeout", type=int, default=DEFAULT_TIMEOUT)
    parser.add_argument("--retries", type=int, default=DEFAULT_RETRIES)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(message)s", stream=sys.stdout)
    try:
        collection = load_hsts_preload(
            args.url,
            preload_file=args.preload_file,
            cache_dir=args.cache,
            timeout=args.timeout,
            retries=args.retries,
        )
    except (PreloadError, OSError) as exc:
        print(f"[FATAL] {exc}", file=sys.stderr)
        return 1
    print(
        utils.format_summary(
            "hsts",
            collection.stats(),
            ("simple_targets", "simple_subdomain_targets", "max_label_depth"),
        )
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
