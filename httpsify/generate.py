#!/usr/bin/env python3
"""
generate.py

Build the merged rule collection and export its flattened host lists.

Stages:
  1. everywhere  — Load HTTPS Everywhere ruleset files.
  2. hsts        — Load the HSTS preload list (remote or local file).
  3. merge       — Merge the preload collection into the ruleset collection.
  4. export      — Write the simple exact / subdomain host lists atomically.

Usage:
    python -m httpsify.generate --rules <dir> --domains-out <file> --subdomains-out <file>
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Callable, Iterable

from httpsify import everywhere, hsts, utils
from httpsify.cache_utils import atomic_write_text
from httpsify.collection import RuleCollection

DEFAULT_CACHE_DIR = ".cache"

SUMMARY_KEYS = (
    "targets",
    "subdomain_targets",
    "simple_targets",
    "simple_subdomain_targets",
    "max_label_depth",
)


# ----------------------------------------
# Helpers
# ----------------------------------------
def _configure_logging() -> logging.Logger:
    """Return configured generator logger with a clean, single-line format."""
    logging.basicConfig(
        level=logging.INFO, format="%(message)s", force=True, stream=sys.stdout
    )
    return logging.getLogger("generate")


def run_stage(label: str, func: Callable[[], RuleCollection], log: logging.Logger) -> RuleCollection:
    """Run a single loading stage with consistent console output."""
    log.info("")
    log.info(f"=== {label} ===")
    start = time.perf_counter()
    collection = func()
    log.info(utils.format_summary(label, collection.stats(), SUMMARY_KEYS))
    log.info(f"Finished {label} in {time.perf_counter() - start:.2f}s")
    return collection


def write_hosts_file(hosts: Iterable[str], filename: str | Path) -> int:
    """Write sorted hosts, one per line, atomically. Returns the host count."""
    lines = sorted(hosts)
    atomic_write_text(Path(filename), "".join(host + "\n" for host in lines))
    return len(lines)


# ----------------------------------------
# Assembly
# ----------------------------------------
def build_collection(
    rules_path: str | Path | None,
    *,
    preload_url: str = hsts.DEFAULT_PRELOAD_URL,
    preload_file: str | Path | None = None,
    cache_dir: str | Path | None = None,
    timeout: int = hsts.DEFAULT_TIMEOUT,
    retries: int = hsts.DEFAULT_RETRIES,
    skip_default_off: bool = False,
    skip_hsts: bool = False,
    log: logging.Logger | None = None,
) -> RuleCollection:
    """
    Load both sources and merge the HSTS preload collection into the
    ruleset collection (preload entries win on collision). Loader errors
    propagate; no partial collection is returned.
    """
    log = log or logging.getLogger("generate")
    if rules_path is not None:
        rules = run_stage(
            "Loading https everywhere",
            lambda: everywhere.load_rules(rules_path, skip_default_off=skip_default_off),
            log,
        )
    else:
        rules = RuleCollection()

    if not skip_hsts:
        hsts_rules = run_stage(
            "Loading hsts",
            lambda: hsts.load_hsts_preload(
                preload_url,
                preload_file=preload_file,
                cache_dir=cache_dir,
                timeout=timeout,
                retries=retries,
            ),
            log,
        )
        rules.add(hsts_rules)
    return rules


def transform(
    rules_path: str | Path | None,
    domains_out: str | Path,
    subdomains_out: str | Path,
    **kwargs,
) -> RuleCollection:
    """Build the merged collection and export its simple host lists."""
    log = _configure_logging()
    run_start = time.perf_counter()
    collection = build_collection(rules_path, log=log, **kwargs)

    log.info("")
    log.info("=== Writing host lists ===")
    n_sub = write_hosts_file(collection.simple_subdomain_hosts(), subdomains_out)
    n_exact = write_hosts_file(collection.simple_hosts(), domains_out)
    log.info(f"Wrote {n_sub} subdomain hosts to: {subdomains_out}")
    log.info(f"Wrote {n_exact} hosts to: {domains_out}")
    log.info(f"Done (total {time.perf_counter() - run_start:.2f}s)")
    return collection


# ----------------------------------------
# CLI
# ----------------------------------------
def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Generate flattened HTTPS host lists from HTTPS Everywhere and HSTS preload"
    )
    parser.add_argument("--rules", "--https-everywhere-rules", dest="rules", default=None,
                        help="Directory of HTTPS Everywhere ruleset XML files")
    parser.add_argument("--domains-out", required=True, help="Output file for exact hosts")
    parser.add_argument("--subdomains-out", required=True,
                        help="Output file for hosts covering all subdomains")
    parser.add_argument("--preload-url", default=hsts.DEFAULT_PRELOAD_URL,
                        help="HSTS preload list URL")
    parser.add_argument("--preload-file", default=None,
                        help="Read the HSTS preload list from a local file instead")
    parser.add_argument("-c", "--cache", default=DEFAULT_CACHE_DIR, help="Cache directory")
    parser.add_argument("--timeout", type=int, default=hsts.DEFAULT_TIMEOUT,
                        help="Request timeout (seconds)")
    parser.add_argument("--retries", type=int, default=hsts.DEFAULT_RETRIES,
                        help="Retries for the preload download")
    parser.add_argument("--skip-default-off", action="store_true",
                        help="Ignore rulesets marked default_off")
    parser.add_argument("--skip-hsts", action="store_true",
                        help="Do not load the HSTS preload list")
    args = parser.parse_args(argv)

    try:
        transform(
            args.rules,
            args.domains_out,
            args.subdomains_out,
            preload_url=args.preload_url,
            preload_file=args.preload_file,
            cache_dir=args.cache,
            timeout=args.timeout,
            retries=args.retries,
            skip_default_off=args.skip_default_off,
            skip_hsts=args.skip_hsts,
        )
    except (everywhere.RulesetLoadError, hsts.PreloadError, OSError) as exc:
        print(f"[FATAL] {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
