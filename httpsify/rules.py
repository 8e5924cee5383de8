"""
rules.py

Rewrite rules and their evaluation.

Every rule exposes `rewrite(url) -> (new_url, matched)`:
  - StandardRule   — plain `http:` -> `https:` upgrade.
  - RegexRule      — regex rewrite with a JavaScript-style replacement template.
  - ExclusionRule  — matches to stop evaluation; never changes the URL.
  - RuleList       — ordered combinator, first matching rule wins.

Patterns are compiled once, at construction, and every match is bounded by
REGEX_MATCH_TIMEOUT. Rules are immutable after construction and safe to share
between threads.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Iterable, Mapping, Sequence

import regex

from httpsify import utils

logger = logging.getLogger(__name__)

HTTP_PREFIX = utils.HTTP_PREFIX
HTTPS_PREFIX = utils.HTTPS_PREFIX
REGEX_MATCH_TIMEOUT = utils.REGEX_MATCH_TIMEOUT


def _literal(text: str) -> str:
    return text.replace("\\", "\\\\")


def translate_replacement(
    template: str,
    groups: int | None = None,
    groupindex: Mapping[str, int] | None = None,
) -> str:
    """
    Convert a JavaScript-style replacement template into Python syntax.

    `$1` / `$12` -> `\\g<1>` / `\\g<12>`, `${name}` -> `\\g<name>`,
    `$&` -> `\\g<0>`, `$$` -> `$`. Backslashes are escaped so they stay
    literal. Any other `$` is kept as-is.

    When `groups` is given, a reference to a group the pattern does not
    define stays literal text (`$5`, `${name}`), the way .NET-style
    replacement works.
    """

    def has_group(ref: str) -> bool:
        if groups is None:
            return True
        if ref.isdigit():
            return int(ref) <= groups
        return ref in (groupindex or {})

    out: list[str] = []
    i = 0
    n = len(template)
    while i < n:
        ch = template[i]
        if ch == "\\":
            out.append("\\\\")
            i += 1
            continue
        if ch != "$" or i + 1 >= n:
            out.append(ch)
            i += 1
            continue
        nxt = template[i + 1]
        if nxt == "$":
            out.append("$")
            i += 2
        elif nxt == "&":
            out.append("\\g<0>")
            i += 2
        elif nxt.isdigit():
            j = i + 1
            while j < n and template[j].isdigit():
                j += 1
            ref = template[i + 1:j]
            out.append(f"\\g<{ref}>" if has_group(ref) else "$" + ref)
            i = j
        elif nxt == "{":
            close = template.find("}", i + 2)
            if close == -1:
                out.append(ch)
                i += 1
            else:
                ref = template[i + 2:close]
                out.append(f"\\g<{ref}>" if has_group(ref) else _literal("${" + ref + "}"))
                i = close + 1
        else:
            out.append(ch)
            i += 1
    return "".join(out)


def _compile(pattern: str) -> regex.Pattern | None:
    """Compile `pattern`, returning None (and logging once) on failure."""
    try:
        return regex.compile(pattern)
    except (regex.error, TypeError, ValueError) as exc:
        logger.warning("Failed to compile pattern %r: %s", pattern, exc)
        return None


# ----------------------------------------
# Rule variants
# ----------------------------------------
class Rule(ABC):
    """A single rewrite strategy."""

    @abstractmethod
    def rewrite(self, url: str) -> tuple[str, bool]:
        """Attempt to rewrite `url`; return (url_or_result, matched)."""


class StandardRule(Rule):
    """Upgrade `http:` to `https:`, leaving the rest of the URL untouched."""

    def rewrite(self, url: str) -> tuple[str, bool]:
        if url.startswith(HTTP_PREFIX):
            return HTTPS_PREFIX + url[len(HTTP_PREFIX):], True
        return url, False

    def __repr__(self) -> str:
        return "StandardRule()"


STANDARD_RULE = StandardRule()


class RegexRule(Rule):
    """Regex rewrite rule (`<rule from=... to=...>`)."""

    def __init__(self, pattern: str, replacement: str) -> None:
        self.pattern = pattern
        self.replacement = replacement
        self._regexp = _compile(pattern)
        if self._regexp is None:
            self._template = translate_replacement(replacement)
        else:
            self._template = translate_replacement(
                replacement, self._regexp.groups, self._regexp.groupindex
            )

    @property
    def compiled(self) -> bool:
        return self._regexp is not None

    def rewrite(self, url: str) -> tuple[str, bool]:
        if self._regexp is None:
            return url, False
        try:
            if self._regexp.search(url, timeout=REGEX_MATCH_TIMEOUT) is None:
                return url, False
            result = self._regexp.sub(
                self._template, url, timeout=REGEX_MATCH_TIMEOUT
            )
        except TimeoutError:
            logger.debug("Pattern %r timed out on %s", self.pattern, url)
            return url, False
        except (regex.error, IndexError, KeyError) as exc:
            logger.debug("Substitution %r failed on %s: %s", self.replacement, url, exc)
            return url, False
        return result, True

    def __repr__(self) -> str:
        return f"RegexRule({self.pattern!r}, {self.replacement!r})"


class ExclusionRule(Rule):
    """
    Matches when the pattern matches, which stops a RuleList before any
    later rewrite. The URL is always returned unchanged.

    A pattern that fails to compile always reports a match: such rulesets
    never rewrite.
    """

    def __init__(self, pattern: str) -> None:
        self.pattern = pattern
        self._regexp = _compile(pattern)

    @property
    def compiled(self) -> bool:
        return self._regexp is not None

    def rewrite(self, url: str) -> tuple[str, bool]:
        if self._regexp is None:
            return url, True
        try:
            matched = self._regexp.search(url, timeout=REGEX_MATCH_TIMEOUT) is not None
        except TimeoutError:
            logger.debug("Exclusion %r timed out on %s", self.pattern, url)
            return url, False
        return url, matched

    def __repr__(self) -> str:
        return f"ExclusionRule({self.pattern!r})"


class RuleList(Rule):
    """Evaluate rules in order; the first one that matches decides."""

    def __init__(self, rules: Iterable[Rule] = ()) -> None:
        self.rules: tuple[Rule, ...] = tuple(rules)

    def rewrite(self, url: str) -> tuple[str, bool]:
        for rule in self.rules:
            result, matched = rule.rewrite(url)
            if matched:
                return result, True
        return url, False

    def __len__(self) -> int:
        return len(self.rules)

    def __iter__(self):
        return iter(self.rules)

    def __repr__(self) -> str:
        return f"RuleList({list(self.rules)!r})"


def combine_rules(rules: Sequence[Rule]) -> Rule:
    """Return the only rule as-is, otherwise wrap the rules in a RuleList."""
    if len(rules) == 1:
        return rules[0]
    return RuleList(rules)


__all__ = [
    "Rule",
    "StandardRule",
    "STANDARD_RULE",
    "RegexRule",
    "ExclusionRule",
    "RuleList",
    "combine_rules",
    "translate_replacement",
]
