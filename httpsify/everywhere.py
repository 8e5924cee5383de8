#!/usr/bin/env python3
"""
everywhere.py

Read HTTPS Everywhere ruleset XML files and build a RuleCollection.

A ruleset file looks like:

    <ruleset name="Example">
        <target host="example.com" />
        <target host="*.example.com" />
        <exclusion pattern="^http://example\\.com/legacy/" />
        <rule from="^http:" to="https:" />
    </ruleset>

Exclusions always go in front of the rules of the same ruleset so they can
veto a later rewrite. `*.` targets cover the host and all its subdomains.

Usage:
    python -m httpsify.everywhere <rules_dir>
"""

from __future__ import annotations

import logging
import sys
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

from httpsify import utils
from httpsify.collection import RuleCollection, Ruleset
from httpsify.rules import STANDARD_RULE, ExclusionRule, RegexRule, Rule, combine_rules

logger = logging.getLogger(__name__)

SUBDOMAIN_WILDCARD = utils.SUBDOMAIN_WILDCARD
RULESET_SUFFIX = ".xml"


class RulesetLoadError(Exception):
    """Raised when the ruleset directory or one of its files cannot be read."""


class RulesetParseError(ValueError):
    """Raised when a ruleset document is not valid ruleset XML."""


# ----------------------------------------
# XML records
# ----------------------------------------
@dataclass
class XmlRule:
    from_pattern: str
    to: str

    def is_standard_rule(self) -> bool:
        return self.from_pattern == utils.STANDARD_FROM and self.to == utils.STANDARD_TO

    def parse(self) -> Rule:
        if self.is_standard_rule():
            return STANDARD_RULE
        return RegexRule(self.from_pattern, self.to)


@dataclass
class XmlRuleset:
    name: str = ""
    default_off: str | None = None
    platform: str | None = None
    targets: list[str] = field(default_factory=list)
    rules: list[XmlRule] = field(default_factory=list)
    exclusions: list[str] = field(default_factory=list)
    tests: list[str] = field(default_factory=list)
    source: str | None = None

    @property
    def disabled(self) -> bool:
        return self.default_off is not None

    def to_ruleset(self) -> Ruleset:
        """Combine exclusions (first) and rules into one rule and split the targets."""
        combined: list[Rule] = [ExclusionRule(pattern) for pattern in self.exclusions]
        combined.extend(rule.parse() for rule in self.rules)

        targets: list[str] = []
        subdomain_targets: list[str] = []
        for raw_host in self.targets:
            if raw_host.startswith(SUBDOMAIN_WILDCARD):
                host = utils.normalize_host(raw_host[len(SUBDOMAIN_WILDCARD):])
                if host:
                    subdomain_targets.append(host)
            else:
                host = utils.normalize_host(raw_host)
                if host:
                    targets.append(host)

        return Ruleset(
            targets=targets,
            subdomain_targets=subdomain_targets,
            rule=combine_rules(combined),
        )


# ----------------------------------------
# Parsing
# ----------------------------------------
def _ruleset_from_element(elem: ET.Element, source: str | None) -> XmlRuleset:
    ruleset = XmlRuleset(
        name=elem.get("name", ""),
        default_off=elem.get("default_off"),
        platform=elem.get("platform"),
        source=source,
    )
    for child in elem:
        tag = child.tag
        if tag == "target":
            host = child.get("host")
            if host:
                ruleset.targets.append(host)
        elif tag == "rule":
            from_pattern = child.get("from")
            if from_pattern is None:
                continue
            ruleset.rules.append(XmlRule(from_pattern, child.get("to", "")))
        elif tag == "exclusion":
            pattern = child.get("pattern")
            if pattern is not None:
                ruleset.exclusions.append(pattern)
        elif tag == "test":
            url = child.get("url")
            if url:
                ruleset.tests.append(url)
    return ruleset


def parse_ruleset_document(data: str | bytes, source: str | None = None) -> list[XmlRuleset]:
    """
    Parse a `<ruleset>` document, or a `<rulesetlibrary>` bundling several,
    into XmlRuleset records.
    """
    try:
        root = ET.fromstring(data)
    except ET.ParseError as exc:
        raise RulesetParseError(f"{source or '<string>'}: {exc}") from exc
    if root.tag == "ruleset":
        return [_ruleset_from_element(root, source)]
    if root.tag == "rulesetlibrary":
        return [_ruleset_from_element(el, source) for el in root.iter("ruleset")]
    raise RulesetParseError(f"{source or '<string>'}: unexpected root element <{root.tag}>")


def parse_ruleset_xml(data: str | bytes, source: str | None = None) -> XmlRuleset:
    """Parse a single-ruleset document."""
    rulesets = parse_ruleset_document(data, source)
    if len(rulesets) != 1:
        raise RulesetParseError(
            f"{source or '<string>'}: expected one ruleset, found {len(rulesets)}"
        )
    return rulesets[0]


# ----------------------------------------
# Loading
# ----------------------------------------
def iter_rulesets(rules_path: str | Path) -> Iterator[XmlRuleset]:
    """
    Lazily yield the rulesets of every `*.xml` file in `rules_path`, in
    file-name order. Files that are not valid ruleset XML are logged and
    skipped; unreadable files abort the iteration.
    """
    try:
        files = utils.list_files_with_suffix(rules_path, RULESET_SUFFIX)
    except (FileNotFoundError, OSError) as exc:
        raise RulesetLoadError(str(exc)) from exc

    for path in files:
        try:
            data = path.read_bytes()
        except OSError as exc:
            raise RulesetLoadError(f"error reading file. [{path.name}]") from exc
        try:
            rulesets = parse_ruleset_document(data, source=path.name)
        except RulesetParseError as exc:
            logger.warning("Error occurred in file [%s] :: [%s]", path.name, exc)
            continue
        yield from rulesets


def load_rules(rules_path: str | Path, skip_default_off: bool = False) -> RuleCollection:
    """Build a RuleCollection from every ruleset file in `rules_path`."""
    collection = RuleCollection()
    loaded = 0
    disabled = 0
    for xml_ruleset in iter_rulesets(rules_path):
        if skip_default_off and xml_ruleset.disabled:
            disabled += 1
            continue
        collection.add_ruleset(xml_ruleset.to_ruleset())
        loaded += 1
    logger.info(
        "HTTPS Everywhere: %d rulesets loaded, %d default_off skipped",
        loaded,
        disabled,
    )
    return collection


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(message)s", stream=sys.stdout)
    if len(sys.argv) < 2:
        logger.error("Usage: python -m httpsify.everywhere <rules_dir>")
        sys.exit(2)
    try:
        rules = load_rules(sys.argv[1])
    except RulesetLoadError as exc:
        logger.exception("ERROR in everywhere: %s", exc)
        sys.exit(1)
    print(
        utils.format_summary(
            "everywhere",
            rules.stats(),
            ("targets", "subdomain_targets", "simple_targets", "simple_subdomain_targets"),
        )
    )
