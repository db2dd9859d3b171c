"""
Repository checks.

* check_index: invariants of the index itself (unique names,
  descriptions, versions, source URL syntax)
* check_readme: the README points at index.xml, names exactly one
  license and describes every script it lists
* check_license_file: the LICENSE file declares the configured license
* check_repository: all of the above for a Repository on disk

Network reachability of source URLs lives in services.source_checker.
"""
from __future__ import annotations

import logging
import re
import urllib.parse
from pathlib import PurePosixPath
from typing import Dict, List, Optional, Set, Tuple

from reapack_repo.domain.entities import Repository, entry_problems
from reapack_repo.domain.models import CheckReport, IndexDocument, RepositoryConfig
from reapack_repo.domain.reapack_utils import index_url, is_http_url

logger = logging.getLogger(__name__)

_URL_RE = re.compile(r"https?://[^\s)<>\]\"'`]+")
_HEADING_RE = re.compile(r"^(#{1,6})\s+(.*?)\s*#*\s*$")
_BULLET_RE = re.compile(r"^(\s*)[-*+]\s+(.*)$")
_NAMED_ITEM_RE = re.compile(
    r"^(?:\[\s*)?(?:\*\*|__|`)(?P<name>[^*_`]+)(?:\*\*|__|`)(?:\s*\]\([^)]*\))?\s*(?P<rest>.*)$"
)
_LINK_ITEM_RE = re.compile(r"^\[(?P<name>[^\]]+)\]\([^)]*\)\s*(?P<rest>.*)$")
_SEPARATOR_RE = re.compile(r"^\s*(?:[-:–—|]+)\s*")
_PLAIN_SPLIT_RE = re.compile(r"\s+[-–—]\s+|:\s+")
_SCRIPTS_HEADING_RE = re.compile(r"^\W*(?:available\s+)?(?:scripts?|packages?)\W*$", re.IGNORECASE)
_LICENSE_HEADING_RE = re.compile(r"licen[cs]e", re.IGNORECASE)

# (SPDX identifier, pattern). Acronyms are matched case-sensitively.
LICENSE_PATTERNS: List[Tuple[str, re.Pattern]] = [
    ("MIT", re.compile(r"\bMIT\b")),
    ("Apache-2.0", re.compile(r"\bApache(?:[- ]License)?[ ,-]*(?:Version\s*)?2(?:\.0)?\b")),
    ("GPL-2.0", re.compile(r"(?<![\w-])(?:GPL-?2(?:\.0)?|GPLv2)\b")),
    ("GPL-3.0", re.compile(r"(?<![\w-])(?:GPL-?3(?:\.0)?|GPLv3)\b")),
    ("LGPL-2.1", re.compile(r"\bLGPL-?v?2\.1\b")),
    ("LGPL-3.0", re.compile(r"\bLGPL-?v?3(?:\.0)?\b")),
    ("BSD-2-Clause", re.compile(r"\bBSD-2-Clause\b")),
    ("BSD-3-Clause", re.compile(r"\bBSD-3-Clause\b")),
    ("MPL-2.0", re.compile(r"\bMPL-?2\.0\b")),
    ("ISC", re.compile(r"\bISC\b")),
    ("Unlicense", re.compile(r"\bUnlicense\b")),
    ("CC0-1.0", re.compile(r"\bCC0(?:-1\.0)?\b")),
    ("WTFPL", re.compile(r"\bWTFPL\b")),
    ("Zlib", re.compile(r"\bZlib\b")),
]


def find_license_ids(text: str, configured: Optional[str] = None) -> Set[str]:
    """
    License identifiers named in `text`. The configured identifier is also
    matched literally, so licenses without a pattern (e.g. EUPL-1.2) are found.
    """
    ids = {spdx for spdx, pattern in LICENSE_PATTERNS if pattern.search(text)}
    if configured and configured not in ids:
        literal = re.compile(r"(?<![\w.-])" + re.escape(configured) + r"(?![\w-]|\.\w)")
        if literal.search(text):
            ids.add(configured)
    return ids


# ---------------------------------------------------------------------------
# Index
# ---------------------------------------------------------------------------


def check_index(doc: IndexDocument, config: Optional[RepositoryConfig] = None) -> CheckReport:
    report = CheckReport()
    seen: Dict[str, str] = {}

    for entry in doc.entries:
        key = entry.name.lower()
        if key in seen:
            report.add(
                "duplicate-name",
                f"Package name {entry.name} is used in both {seen[key]} and {entry.category}",
                subject=entry.name,
            )
        else:
            seen[key] = entry.category

        for code, message in entry_problems(entry):
            report.add(code, message, subject=entry.name)

        if not entry.versions:
            report.add("no-versions", f"{entry.name} has no versions", subject=entry.name, severity="warning")
        elif entry.source_url is None:
            report.add("no-source", f"{entry.name} {entry.version} has no source", subject=entry.name)

    return report


# ---------------------------------------------------------------------------
# README
# ---------------------------------------------------------------------------


def split_sections(text: str) -> List[Tuple[int, str, List[str]]]:
    """Split markdown into (level, title, body lines). Text before the first heading has level 0."""
    sections: List[Tuple[int, str, List[str]]] = [(0, "", [])]
    in_code = False
    for line in text.splitlines():
        if line.lstrip().startswith("```"):
            in_code = not in_code
        m = None if in_code else _HEADING_RE.match(line)
        if m:
            sections.append((len(m.group(1)), m.group(2).strip(), []))
        else:
            sections[-1][2].append(line)
    return sections


def _find_section(sections, title_re: re.Pattern) -> Optional[Tuple[int, List[Tuple[int, str, List[str]]]]]:
    """Return (level, [section + its sub-sections]) for the first heading matching title_re."""
    for i, (level, title, _) in enumerate(sections):
        if level and title_re.search(title):
            block = [sections[i]]
            for sub in sections[i + 1:]:
                if sub[0] <= level:
                    break
                block.append(sub)
            return level, block
    return None


def _has_text(value: str) -> bool:
    return re.search(r"\w", value) is not None


def parse_script_item(text: str) -> Tuple[str, str]:
    """Split a list item into (name, description)."""
    text = text.strip()
    m = _NAMED_ITEM_RE.match(text) or _LINK_ITEM_RE.match(text)
    if m:
        name = m.group("name").strip()
        rest = _SEPARATOR_RE.sub("", m.group("rest"), count=1)
        return name, rest.strip()
    parts = _PLAIN_SPLIT_RE.split(text, maxsplit=1)
    if len(parts) == 2:
        return parts[0].strip(), parts[1].strip()
    return text, ""


def readme_scripts(text: str) -> Optional[List[Tuple[str, str]]]:
    """
    Scripts listed in the README's "Scripts" section as (name, description).

    Sub-headings under the section each name one script, described by the
    first line of text beneath them; otherwise every top-level list item is a
    script. Returns None when the README has no such section.
    """
    found = _find_section(split_sections(text), _SCRIPTS_HEADING_RE)
    if found is None:
        return None
    _, block = found

    scripts: List[Tuple[str, str]] = []
    if len(block) > 1:
        child_level = min(level for level, _, _ in block[1:])
        for level, title, lines in block[1:]:
            if level != child_level:
                continue
            name, inline = parse_script_item(title)
            description = inline
            if not description:
                for line in lines:
                    stripped = line.strip()
                    if stripped:
                        bullet = _BULLET_RE.match(line)
                        description = bullet.group(2).strip() if bullet else stripped
                        break
            scripts.append((name, description))
        return scripts

    items = [(len(m.group(1).expandtabs(4)), m.group(2)) for m in map(_BULLET_RE.match, block[0][2]) if m]
    if not items:
        return scripts
    top = min(indent for indent, _ in items)
    for indent, item in items:
        if indent == top:
            scripts.append(parse_script_item(item))
    return scripts


def check_readme(text: str, config: RepositoryConfig, doc: Optional[IndexDocument] = None) -> CheckReport:
    report = CheckReport()

    # 1. Installation URL
    urls = [u.rstrip(".,;") for u in _URL_RE.findall(text)]
    install_urls = [u for u in urls if u.lower().endswith(".xml")]
    if not install_urls:
        report.add("readme-install-url", "README contains no installation URL ending in index.xml", subject="README")
    for url in install_urls:
        name = PurePosixPath(urllib.parse.urlsplit(url).path).name if is_http_url(url) else ""
        if name != "index.xml":
            report.add(
                "readme-install-url",
                f"Installation URL {url} is not a valid http(s) address of index.xml",
                subject=url,
            )
    if config.remote_url and install_urls:
        expected = index_url(config.remote_url, config.branch)
        if expected not in install_urls:
            report.add(
                "readme-install-url-mismatch",
                f"README installation URL does not match the published index {expected}",
                subject="README",
            )

    sections = split_sections(text)

    # 2. License section
    found = _find_section(sections, _LICENSE_HEADING_RE)
    if found is None:
        report.add("readme-license", "README has no license section", subject="README")
    else:
        body = "\n".join(line for _, _, lines in found[1] for line in lines)
        ids = find_license_ids(body, config.license)
        if not ids:
            report.add("readme-license", "License section names no license identifier", subject="README")
        elif len(ids) > 1:
            report.add(
                "readme-license",
                f"License section is ambiguous: {', '.join(sorted(ids))}",
                subject="README",
            )
        elif ids != {config.license}:
            report.add(
                "readme-license",
                f"License section names {next(iter(ids))}, expected {config.license}",
                subject="README",
            )

    # 3. Scripts section
    scripts = readme_scripts(text)
    if scripts is None:
        report.add("readme-scripts", "README has no Scripts section", subject="README")
        scripts = []
    elif not scripts:
        report.add("readme-scripts", "Scripts section lists no scripts", subject="README")
    for name, description in scripts:
        if not _has_text(description):
            report.add("readme-script-description", f"Script {name} has no description", subject=name)

    if doc is not None:
        listed = {name.lower() for name, _ in scripts}
        for entry in doc.entries:
            if entry.name.lower() not in listed and entry.display_name.lower() not in listed:
                report.add(
                    "readme-script-missing",
                    f"Package {entry.name} is not listed in the README",
                    subject=entry.name,
                    severity="warning",
                )

    return report


def check_license_file(text: str, config: RepositoryConfig) -> CheckReport:
    report = CheckReport()
    first_line = next((line.strip() for line in text.splitlines() if line.strip()), "")
    if not first_line:
        report.add("license-file", "LICENSE file is empty", subject="LICENSE")
        return report
    ids = find_license_ids(first_line, config.license)
    if ids != {config.license}:
        found = ", ".join(sorted(ids)) or "no license"
        report.add(
            "license-file",
            f"LICENSE declares {found}, expected {config.license}",
            subject="LICENSE",
        )
    return report


def check_repository(repository: Repository) -> CheckReport:
    """Index, README and LICENSE checks for a repository on disk."""
    config = repository.config
    doc = repository.index
    report = check_index(doc, config)

    readme_path = repository.db.root / config.readme_path
    if readme_path.is_file():
        report.extend(check_readme(readme_path.read_text(encoding="utf-8"), config, doc))
    else:
        report.add("readme-missing", f"{config.readme_path} not found", subject=config.readme_path)

    license_path = repository.db.root / config.license_path
    if license_path.is_file():
        report.extend(check_license_file(license_path.read_text(encoding="utf-8"), config))
    else:
        report.add("license-file", f"{config.license_path} not found", subject=config.license_path)

    logger.info(f"Checks finished: {len(report.errors)} errors, {len(report.warnings)} warnings")
    return report
