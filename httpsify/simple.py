"""
simple.py

Rebuild a simple-only RuleCollection from the flattened host lists written by
`httpsify.generate` (one host per line).
"""

from __future__ import annotations

import logging
from pathlib import Path

from httpsify import utils
from httpsify.collection import RuleCollection

logger = logging.getLogger(__name__)

IO_BUFFER_SIZE = utils.IO_BUFFER_SIZE


def read_hosts_file(path: str | Path) -> list[str]:
    """Return normalized hosts from `path`, skipping blank and comment lines."""
    hosts: list[str] = []
    with Path(path).open("r", encoding="utf-8", buffering=IO_BUFFER_SIZE) as fh:
        for raw in fh:
            line = raw.strip()
            if utils.is_blank_line(line) or utils.is_comment_line(line):
                continue
            host = utils.normalize_host(line)
            if host:
                hosts.append(host)
    return hosts


def load_simple_rules(
    hosts_file: str | Path | None = None,
    subdomains_file: str | Path | None = None,
) -> RuleCollection:
    """Load exact and subdomain host lists into a new collection."""
    collection = RuleCollection()
    if subdomains_file is not None:
        collection.add_simple_hosts(read_hosts_file(subdomains_file), include_subdomains=True)
    if hosts_file is not None:
        collection.add_simple_hosts(read_hosts_file(hosts_file), include_subdomains=False)
    logger.info(
        "Loaded %d simple hosts, %d with subdomains",
        len(collection.simple_targets),
        len(collection.simple_subdomain_targets),
    )
    return collection
