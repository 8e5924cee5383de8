"""
collection.py

Hostname-indexed rule collection and the URL rewrite entry point.

A RuleCollection keeps four indices:

    targets                    host -> Rule, exact host only
    subdomain_targets          host -> Rule, host and all subdomains
    simple_targets             hosts upgraded with StandardRule, exact
    simple_subdomain_targets   hosts upgraded with StandardRule, with subdomains

Collections are built single-threaded (loaders, merge) and are read-only once
published; `rewrite` never mutates state and never raises.

Usage:
    collection = RuleCollection()
    collection.add_simple_hosts(["example.com"], include_subdomains=True)
    collection.rewrite("http://www.example.com/")  # ("https://www.example.com/", True)
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Iterable
from urllib.parse import urlsplit

from httpsify import utils
from httpsify.rules import STANDARD_RULE, Rule, StandardRule

logger = logging.getLogger(__name__)

HTTP_URL_PREFIX = utils.HTTP_URL_PREFIX
canonicalize_host = utils.canonicalize_host
count_labels = utils.count_labels
truncate_labels = utils.truncate_labels
walk_suffixes = utils.walk_suffixes


@dataclass
class Ruleset:
    """One ruleset record: exact targets, subdomain targets and the combined rule."""

    targets: list[str] = field(default_factory=list)
    subdomain_targets: list[str] = field(default_factory=list)
    rule: Rule = STANDARD_RULE


def extract_host(url: str) -> str | None:
    """
    Return the raw host of a plaintext HTTP URL, or None.

    Only the literal `http://` prefix is accepted. Userinfo and port are
    dropped; the host keeps its original case and encoding.
    """
    if not url.startswith(HTTP_URL_PREFIX):
        return None
    try:
        host = urlsplit(url).hostname
    except ValueError:
        return None
    return host or None


class RuleCollection:
    """Index of rules by hostname, split by tier (exact / subdomain) and kind."""

    def __init__(self) -> None:
        self.targets: dict[str, Rule] = {}
        self.subdomain_targets: dict[str, Rule] = {}
        self.simple_targets: set[str] = set()
        self.simple_subdomain_targets: set[str] = set()
        self.max_label_depth = 0

    # --------------------
    # Registration
    # --------------------
    def _observe_host(self, host: str) -> None:
        depth = count_labels(host)
        if depth > self.max_label_depth:
            self.max_label_depth = depth

    def add_rule(self, rule: Rule, host: str, include_subdomains: bool = False) -> None:
        """Register `rule` for `host`; the last registration per (host, tier) wins."""
        self._observe_host(host)
        if isinstance(rule, StandardRule):
            if include_subdomains:
                self.simple_subdomain_targets.add(host)
                self.subdomain_targets.pop(host, None)
            else:
                self.simple_targets.add(host)
                self.targets.pop(host, None)
        elif include_subdomains:
            self.subdomain_targets[host] = rule
            self.simple_subdomain_targets.discard(host)
        else:
            self.targets[host] = rule
            self.simple_targets.discard(host)

    def add_ruleset(self, ruleset: Ruleset) -> None:
        """Register the ruleset's rule under every exact and every subdomain target."""
        for host in ruleset.targets:
            self.add_rule(ruleset.rule, host, include_subdomains=False)
        for host in ruleset.subdomain_targets:
            self.add_rule(ruleset.rule, host, include_subdomains=True)

    def add_simple_hosts(
        self, hosts: Iterable[str], include_subdomains: bool = False
    ) -> None:
        """Register plain HTTP -> HTTPS upgrades for `hosts`."""
        for host in hosts:
            self.add_rule(STANDARD_RULE, host, include_subdomains)

    def add(self, other: RuleCollection) -> RuleCollection:
        """
        Merge `other` into this collection. Entries from `other` win on
        collision; the label depth becomes the maximum of both.
        """
        for host, rule in other.targets.items():
            self.add_rule(rule, host, include_subdomains=False)
        for host, rule in other.subdomain_targets.items():
            self.add_rule(rule, host, include_subdomains=True)
        for host in other.simple_targets:
            self.add_rule(STANDARD_RULE, host, include_subdomains=False)
        for host in other.simple_subdomain_targets:
            self.add_rule(STANDARD_RULE, host, include_subdomains=True)
        if other.max_label_depth > self.max_label_depth:
            self.max_label_depth = other.max_label_depth
        return self

    merge = add

    # --------------------
    # Introspection
    # --------------------
    def simple_hosts(self) -> list[str]:
        """Sorted exact-match hosts upgraded with the standard rule."""
        return sorted(self.simple_targets)

    def simple_subdomain_hosts(self) -> list[str]:
        """Sorted hosts upgraded with the standard rule, subdomains included."""
        return sorted(self.simple_subdomain_targets)

    def stats(self) -> dict[str, int]:
        return {
            "targets": len(self.targets),
            "subdomain_targets": len(self.subdomain_targets),
            "simple_targets": len(self.simple_targets),
            "simple_subdomain_targets": len(self.simple_subdomain_targets),
            "max_label_depth": self.max_label_depth,
        }

    def __len__(self) -> int:
        return (
            len(self.targets)
            + len(self.subdomain_targets)
            + len(self.simple_targets)
            + len(self.simple_subdomain_targets)
        )

    def __contains__(self, host: object) -> bool:
        return (
            host in self.targets
            or host in self.subdomain_targets
            or host in self.simple_targets
            or host in self.simple_subdomain_targets
        )

    # --------------------
    # Rewrite
    # --------------------
    def rewrite(self, url: str) -> tuple[str, bool]:
        """
        Rewrite `url` using the most specific registered rule.

        Exact entries are consulted first; then the host and each parent
        suffix are checked against the subdomain entries. Hosts deeper than
        any registered entry are truncated to `max_label_depth + 1` labels
        before lookup.
        """
        raw_host = extract_host(url)
        if raw_host is None:
            return url, False
        host = canonicalize_host(raw_host)
        if host is None:
            return url, False

        if count_labels(host) > self.max_label_depth:
            host = truncate_labels(host, self.max_label_depth + 1)

        if host in self.simple_targets:
            return STANDARD_RULE.rewrite(url)
        rule = self.targets.get(host)
        if rule is not None:
            return rule.rewrite(url)

        for suffix in walk_suffixes(host):
            if suffix in self.simple_subdomain_targets:
                return STANDARD_RULE.rewrite(url)
            rule = self.subdomain_targets.get(suffix)
            if rule is not None:
                return rule.rewrite(url)
        return url, False


class RuleSnapshot:
    """
    Shared handle to the currently published collection.

    A refresh builds a new RuleCollection off to the side and publishes it
    with `swap`; readers always see a complete collection.
    """

    def __init__(self, collection: RuleCollection | None = None) -> None:
        self._collection = collection if collection is not None else RuleCollection()
        self._lock = threading.Lock()

    def get(self) -> RuleCollection:
        return self._collection

    def swap(self, collection: RuleCollection) -> RuleCollection:
        """Publish `collection` and return the previously published one."""
        with self._lock:
            previous = self._collection
            self._collection = collection
        logger.info(
            "Published rule collection (%d entries, depth %d)",
            len(collection),
            collection.max_label_depth,
        )
        return previous

    def rewrite(self, url: str) -> tuple[str, bool]:
        return self._collection.rewrite(url)

    def rewrite_url(self, url: str) -> str:
        """Return the rewritten URL, or `url` unchanged when nothing matched."""
        result, _ = self._collection.rewrite(url)
        return result


__all__ = [
    "Ruleset",
    "RuleCollection",
    "RuleSnapshot",
    "extract_host",
]
