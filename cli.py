"""
CLI entry point. Wires the pipeline: lookup -> history walk -> result fetch -> aggregate -> report
"""

import argparse
import json
import logging
import os
import sys
import webbrowser
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from analyzer import analyze
from config import (
    DEFAULT_DAYS,
    DEFAULT_MAX_WORKERS,
    DEFAULT_RESULT_ROOT,
    Target,
    load_config_file,
    parse_targets,
    resolve_setting,
)
from errors import AnalyzerError
from ingest.appveyor import AppVeyorClient
from normalize.util import parse_timestamp
from report.renderer import render, EXTENSIONS
from storage.cache import Cache
from storage.cache import configure_retry

_logger = logging.getLogger(__name__)


def _print_json(obj):
    print(json.dumps(obj, indent=2, default=str))


def _confirm(prompt: str) -> bool:
    return input(prompt).strip().lower() in ("y", "yes")


def _remove_cache_key(cache: Cache, key: str, force: bool):
    if not force and not _confirm(f"Are you sure you want to remove cache key '{key}' from {cache.path}? [y/N]: "):
        print("Aborted cache key removal.")
        return
    removed = cache.delete_key(key)
    if removed:
        print(f"Removed {removed} row(s) for key: {key}")
    else:
        print(f"Cache key not found: {key}")


def _clear_cache(cache: Cache, force: bool):
    if not force and not _confirm(f"Are you sure you want to clear the cache at {cache.path}? This cannot be undone. [y/N]: "):
        print("Aborted cache clear.")
        return
    cache.clear()
    print(f"Cleared cache at {cache.path}")


def _print_cache_get(cache: Cache, key: str):
    entry = cache.get(key)
    if entry is None:
        print(f"Cache key not found: {key}")
    else:
        _print_json(entry)


def _cache_action_requested(args) -> bool:
    return bool(args.cache_info or args.cache_clear or args.cache_list or args.cache_get or args.cache_remove)


def _handle_cache_actions(args):
    """Run the first requested cache inspection/management action against the cache file."""
    with Cache(args.cache or "cache.db") as cache:
        flag_actions = [
            (args.cache_info, lambda: _print_json(cache.stats())),
            (args.cache_clear, lambda: _clear_cache(cache, args.force)),
            (args.cache_list, lambda: _print_json(cache.list_keys(limit=1000))),
            (bool(args.cache_get), lambda: _print_cache_get(cache, args.cache_get)),
            (bool(args.cache_remove), lambda: _remove_cache_key(cache, args.cache_remove, args.force)),
        ]
        for enabled, handler in flag_actions:
            if enabled:
                handler()
                return


def parse_window(args, now: Optional[datetime] = None):
    """Return (start, end) as aware UTC datetimes.

    --end defaults to now; --start defaults to --days before end.
    """
    now = now or datetime.now(timezone.utc)
    end = parse_timestamp(args.end) if args.end else now
    start = parse_timestamp(args.start) if args.start else end - timedelta(days=args.days)
    return start, end


def resolve_targets(args, doc) -> List[Target]:
    """--project/--branch win over config file targets."""
    if args.project or args.branch:
        if not (args.project and args.branch):
            raise ValueError("--project and --branch must be given together")
        return [Target(args.project, args.branch, args.include_prs)]
    targets = parse_targets(doc)
    if args.include_prs:
        for t in targets:
            t.include_pull_requests = True
    return targets


def default_report_path(result_root: str, project: str, branch: str, ext: str, now: Optional[datetime] = None) -> str:
    """<root>/<project>/<branch>/results_<UTC timestamp>.<ext>"""
    now = now or datetime.now(timezone.utc)
    safe_branch = branch.replace('/', '_')
    return os.path.join(result_root, project, safe_branch, f"results_{now.strftime('%Y%m%dT%H%M%SZ')}.{ext}")


def _open_file_in_browser(path: str):
    """Open a file URL in the system default web browser."""
    webbrowser.open("file://" + os.path.abspath(path))


def write_report(out_path: str, content: str, open_html: bool = False):
    """Write the rendered report and optionally open it in the browser."""
    out_dir = os.path.dirname(out_path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    # newline='' keeps CSV rows intact on Windows and is harmless for other formats
    with open(out_path, 'w', encoding='utf-8', newline='') as fh:
        fh.write(content)
    print(f"Summary written to {out_path}")
    if open_html:
        try:
            _open_file_in_browser(out_path)
        except webbrowser.Error:
            print("Failed to open browser automatically; file saved at", out_path)


def run_target(client, target: Target, args, start: datetime, end: datetime, result_root: str, max_workers: int, out_file: str = ''):
    """Analyze one project/branch and write its report. Raises AnalyzerError on failure; nothing is written then."""
    print(f"Analyzing '{target.project}|{target.branch}' builds between {start} and {end}")
    analysis = analyze(
        client,
        target.project,
        target.branch,
        start,
        end,
        ignore_pull_requests=not target.include_pull_requests,
        max_workers=max_workers,
        fail_fast=not args.partial,
    )
    fmt = (args.output or "html").lower()
    rendered = render(analysis, fmt=fmt)
    out_path = out_file or default_report_path(result_root, target.project, target.branch, EXTENSIONS.get(fmt, fmt))
    write_report(out_path, rendered, open_html=(args.open and fmt == "html"))
    if analysis.partial:
        print(f"Warning: report for '{target.project}|{target.branch}' is PARTIAL; {len(analysis.failures)} fetch(es) failed")
    return out_path


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Aggregate AppVeyor test results over a window of build history")
    parser.add_argument("--project", type=str, default="", help="AppVeyor project name")
    parser.add_argument("--branch", type=str, default="", help="Branch to analyze")
    parser.add_argument("--config", type=str, default="", help="YAML config file (targets, endpoint, result_root, max_workers)")
    parser.add_argument("--days", type=int, default=DEFAULT_DAYS, help=f"Window length in days ending at --end (default {DEFAULT_DAYS})")
    parser.add_argument("--start", type=str, default="", help="Window start (ISO date/time, UTC if no offset)")
    parser.add_argument("--end", type=str, default="", help="Window end (ISO date/time, defaults to now)")
    parser.add_argument("--include-prs", action="store_true", help="Include pull request builds")
    parser.add_argument("--output", type=str, default="html", choices=sorted(EXTENSIONS), help="Output format")
    parser.add_argument("--out-dir", type=str, default="", help="Results root directory (overrides TESTSTATS_RESULT_ROOT env)")
    parser.add_argument("--out-file", type=str, default="", help="Output file path (single target only)")
    parser.add_argument("--open", action="store_true", help="Open the generated HTML report in the default browser")
    parser.add_argument("--api-key", type=str, default="", help="AppVeyor API key (or set APPVEYOR_API_KEY env var)")
    parser.add_argument("--endpoint", type=str, default="", help="AppVeyor API endpoint (or set APPVEYOR_ENDPOINT env var)")
    parser.add_argument("--max-workers", type=int, default=None, help=f"Concurrent fetches (default {DEFAULT_MAX_WORKERS})")
    parser.add_argument("--partial", action="store_true", help="Skip builds/jobs whose fetch fails and mark the report partial instead of aborting")
    parser.add_argument("--cache", type=str, default="", help="Path to SQLite cache file (optional)")
    # retry/backoff knobs: TESTSTATS_MAX_RETRIES, TESTSTATS_BACKOFF_BASE, TESTSTATS_BACKOFF_JITTER,
    # TESTSTATS_MAX_BACKOFF set the defaults
    parser.add_argument("--max-retries", type=int, default=None, help="Maximum attempts per HTTP request")
    parser.add_argument("--backoff-base", type=float, default=None, help="Base backoff seconds")
    parser.add_argument("--backoff-jitter", type=float, default=None, help="Jitter seconds added to backoff")
    parser.add_argument("--max-backoff", type=float, default=None, help="Maximum backoff cap in seconds")
    parser.add_argument("--cache-info", action="store_true", help="Show cache statistics (uses --cache or cache.db)")
    parser.add_argument("--cache-clear", action="store_true", help="Clear the persistent cache (uses --cache or cache.db)")
    parser.add_argument("--cache-list", action="store_true", help="List cache keys (uses --cache or cache.db)")
    parser.add_argument("--cache-get", type=str, default="", help="Show a cached entry (uses --cache or cache.db)")
    parser.add_argument("--cache-remove", type=str, default="", help="Remove a cached entry (uses --cache or cache.db)")
    parser.add_argument("--force", action="store_true", help="Skip confirmation for --cache-clear or --cache-remove")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if _cache_action_requested(args):
        _handle_cache_actions(args)
        return 0

    configure_retry(max_retries=args.max_retries, backoff_base=args.backoff_base, backoff_jitter=args.backoff_jitter, max_backoff=args.max_backoff)

    try:
        doc = load_config_file(args.config)
        targets = resolve_targets(args, doc)
        start, end = parse_window(args)
        if start >= end:
            raise ValueError(f"Window start {start} must be before end {end}")
    except (ValueError, AnalyzerError) as ex:
        parser.error(str(ex))
    if not targets:
        parser.error("Nothing to analyze: give --project and --branch or a --config file with targets")

    api_key = resolve_setting('api_key', args.api_key, doc)
    if not api_key:
        parser.error("Missing API key (CLI flag --api-key or env APPVEYOR_API_KEY)")
    endpoint = resolve_setting('endpoint', args.endpoint, doc)
    result_root = resolve_setting('result_root', args.out_dir, doc, default=DEFAULT_RESULT_ROOT)
    max_workers = resolve_setting('max_workers', args.max_workers, doc, default=DEFAULT_MAX_WORKERS, cast=int)
    if max_workers < 1:
        parser.error("--max-workers must be at least 1")

    # an explicit --out-file only makes sense for a single target
    out_file = args.out_file if len(targets) == 1 else ''
    cache = Cache(args.cache) if args.cache else None
    client = AppVeyorClient(api_key, endpoint=endpoint, cache=cache)
    failed = 0
    try:
        for target in targets:
            try:
                run_target(client, target, args, start, end, result_root, max_workers, out_file)
            except AnalyzerError as ex:
                failed += 1
                _logger.error("Run for '%s|%s' failed, no report written: %s", target.project, target.branch, ex)
    finally:
        if cache:
            cache.close()
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
