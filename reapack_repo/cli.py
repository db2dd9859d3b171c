"""
CLI entry point for reapack-repo.

Usage
─────
  # Point the repository at its public location (once)
  reapack-repo configure --remote-url https://github.com/user/ReaPack-Repo --branch main

  # Rebuild index.xml from the script headers
  reapack-repo scan

  # Validate index, README and LICENSE (add --sources to probe every URL)
  reapack-repo check --sources

  # Regenerate the README from the index
  reapack-repo readme --write

Subcommands are implemented as standalone functions (cmd_scan, cmd_check, ...)
so they can be unit-tested without invoking argparse.
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from reapack_repo.core import dependencies
from reapack_repo.domain.entities import Repository
from reapack_repo.domain.errors import RepositoryError
from reapack_repo.domain.models import CheckReport, IndexDocument, ScanResult
from reapack_repo.services.authentication import set_admin_token
from reapack_repo.services.checks import check_repository
from reapack_repo.services.index_fetcher import IndexFetcher
from reapack_repo.services.readme import render_readme
from reapack_repo.services.scanner import RepositoryScanner
from reapack_repo.services.source_checker import SourceChecker

__all__ = ["build_parser", "main"]

logger = logging.getLogger(__name__)


# ── Argument parser ────────────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reapack-repo",
        description="Build, check and publish a ReaPack repository index",
    )
    parser.add_argument(
        "--root",
        default=None,
        metavar="PATH",
        help="Repository root (default: $REAPACK_REPO_ROOT or the current directory)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Enable verbose debug logging",
    )

    sub = parser.add_subparsers(dest="subcommand")

    # ── configure ─────────────────────────────────────────────────────────
    cfg = sub.add_parser("configure", help="Update repository.json settings")
    cfg.add_argument("--name", default=None, help="Repository name")
    cfg.add_argument("--remote-url", dest="remote_url", default=None, metavar="URL",
                     help="Public URL of the hosted repository")
    cfg.add_argument("--branch", default=None, help="Published branch (default: main)")
    cfg.add_argument("--license", default=None, metavar="SPDX", help="License identifier (default: MIT)")
    cfg.add_argument("--url-template", dest="url_template", default=None, metavar="TEMPLATE",
                     help="Source URL template, e.g. '{remote_url}/raw/{ref}/{path}'")

    # ── scan ──────────────────────────────────────────────────────────────
    scan = sub.add_parser("scan", help="Rebuild index.xml from the repository tree")
    scan.add_argument(
        "--no-prune",
        action="store_true",
        default=False,
        help="Keep index entries whose file no longer exists",
    )

    # ── check ─────────────────────────────────────────────────────────────
    chk = sub.add_parser("check", help="Check index, README and LICENSE")
    chk.add_argument(
        "--sources",
        action="store_true",
        default=False,
        help="Also verify that every source URL is fetchable (network)",
    )

    # ── list ──────────────────────────────────────────────────────────────
    lst = sub.add_parser("list", help="List index entries")
    lst.add_argument("--category", default=None, help="Only this category")
    lst.add_argument("--query", default=None, metavar="Q", help="Keyword filter")

    # ── remove ────────────────────────────────────────────────────────────
    rm = sub.add_parser("remove", help="Remove an entry from the index")
    rm.add_argument("name", help="Package name, e.g. RAPID.lua")

    # ── readme ────────────────────────────────────────────────────────────
    rd = sub.add_parser("readme", help="Render the README from the index")
    rd.add_argument(
        "--write",
        action="store_true",
        default=False,
        help="Write to the configured README path instead of stdout",
    )

    # ── fetch ─────────────────────────────────────────────────────────────
    fetch = sub.add_parser("fetch", help="Download a published index and list its entries")
    fetch.add_argument("url", nargs="?", default=None,
                       help="Index URL (default: this repository's published index)")

    # ── set-token ─────────────────────────────────────────────────────────
    tok = sub.add_parser("set-token", help="Set the admin API token")
    tok.add_argument("token", help="New admin token")

    # ── serve ─────────────────────────────────────────────────────────────
    srv = sub.add_parser("serve", help="Serve index.xml, payloads and the admin API")
    srv.add_argument("--host", default="127.0.0.1")
    srv.add_argument("--port", type=int, default=8000)

    return parser


# ── Output helpers ─────────────────────────────────────────────────────────────


def _print_entries(doc_or_entries) -> None:
    entries = doc_or_entries.entries if isinstance(doc_or_entries, IndexDocument) else doc_or_entries
    if not entries:
        print("0 packages found.")
        return
    for entry in entries:
        version = entry.version or "-"
        print(f"{entry.category:<20} {entry.name:<30} {version:<10} {entry.description}")


def _print_report(report: CheckReport) -> None:
    for issue in report.issues:
        subject = f" [{issue.subject}]" if issue.subject else ""
        print(f"{issue.severity.upper():<7} {issue.code}{subject}: {issue.message}")
    status = "OK" if report.ok else "FAILED"
    print(f"{status}: {len(report.errors)} errors, {len(report.warnings)} warnings")


# ── Command implementations ───────────────────────────────────────────────────


def cmd_configure(repo: Repository, **changes) -> None:
    config = repo.config
    for key, value in changes.items():
        if value is not None:
            setattr(config, key, value)
    repo.db.save_repository_config(config)
    print(config.model_dump_json(indent=2, exclude={"admin_token_sha256", "admin_token_salt"}))


def cmd_scan(repo: Repository, prune: bool = True) -> ScanResult:
    result = RepositoryScanner(repo).scan(prune=prune)
    for name in result.added:
        print(f"added      {name}")
    for name in result.updated:
        print(f"updated    {name}")
    for name in result.removed:
        print(f"removed    {name}")
    for skipped in result.skipped:
        print(f"skipped    {skipped.path} ({skipped.reason})")
    print(f"{len(repo.index.entries)} packages in index")
    return result


def cmd_check(repo: Repository, sources: bool = False) -> CheckReport:
    report = check_repository(repo)
    if sources:
        report.extend(asyncio.run(SourceChecker(repo.config).check(repo.index)))
    _print_report(report)
    return report


def cmd_list(repo: Repository, category: Optional[str], query: Optional[str]) -> None:
    _print_entries(repo.search(query, None, category))


def cmd_remove(repo: Repository, name: str) -> None:
    entry = repo.remove_entry(name)
    print(f"Removed {entry.category}/{entry.name}")


def cmd_readme(repo: Repository, write: bool = False) -> str:
    text = render_readme(repo.index, repo.config)
    if write:
        path = repo.db.root / repo.config.readme_path
        path.write_text(text, encoding="utf-8")
        print(f"Wrote {path}")
    else:
        sys.stdout.write(text)
    return text


def cmd_fetch(repo: Repository, url: Optional[str]) -> IndexDocument:
    url = url or repo.index_url()
    if not url:
        raise RepositoryError("No URL given and remote_url is not configured")
    fetcher = IndexFetcher(
        repo.db.root / repo.config.cache_dir,
        timeout=repo.config.request_timeout_seconds,
    )
    doc = asyncio.run(fetcher.fetch(url))
    print(f"{url}: {len(doc.entries)} packages")
    _print_entries(doc)
    return doc


def cmd_set_token(repo: Repository, token: str) -> None:
    set_admin_token(repo.db, token)
    print("Admin token updated.")


def cmd_serve(root: Path, host: str, port: int) -> None:
    import uvicorn

    os.environ[dependencies.REPO_ROOT_ENV_VAR] = str(root)
    uvicorn.run("reapack_repo.main:app", host=host, port=port)


# ── Entry point ───────────────────────────────────────────────────────────────


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point. Returns exit code."""
    parser = build_parser()
    ns = parser.parse_args(argv)

    level = logging.DEBUG if ns.debug else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    if ns.subcommand is None:
        parser.print_help()
        return 0

    dependencies.configure(Path(ns.root).expanduser() if ns.root else None)
    root = dependencies.get_repo_root()

    if ns.subcommand == "serve":
        cmd_serve(root, ns.host, ns.port)
        return 0

    try:
        repo = dependencies.get_repository()

        if ns.subcommand == "configure":
            cmd_configure(
                repo,
                name=ns.name,
                remote_url=ns.remote_url,
                branch=ns.branch,
                license=ns.license,
                url_template=ns.url_template,
            )
        elif ns.subcommand == "scan":
            cmd_scan(repo, prune=not ns.no_prune)
        elif ns.subcommand == "check":
            report = cmd_check(repo, sources=ns.sources)
            return 0 if report.ok else 1
        elif ns.subcommand == "list":
            cmd_list(repo, category=ns.category, query=ns.query)
        elif ns.subcommand == "remove":
            cmd_remove(repo, ns.name)
        elif ns.subcommand == "readme":
            cmd_readme(repo, write=ns.write)
        elif ns.subcommand == "fetch":
            cmd_fetch(repo, ns.url)
        elif ns.subcommand == "set-token":
            cmd_set_token(repo, ns.token)
    except (RepositoryError, ValueError) as exc:
        logger.debug(f"{ns.subcommand} failed", exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
