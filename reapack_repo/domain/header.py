"""
Metadata header parsing.

Scripts carry their package metadata in the leading comment block, e.g.

    -- @description RAPID - Recording Auto-Placement & Intelligent Dynamics
    -- @author Frank Acklin
    -- @version 2.4.1
    -- @changelog
    --   Fixed ReaPack metadata for package distribution
    -- @link GitHub https://github.com/acklin83/RAPID
    -- @provides
    --   [main] .

Files that cannot hold comments get the same keys from a YAML sidecar
(<file>.reapack.yml), see header_from_manifest().
"""
from __future__ import annotations

import re
import textwrap
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from reapack_repo.domain.models import LinkEntry
from reapack_repo.domain.reapack_utils import is_http_url

COMMENT_PREFIXES = ("--", "//", "#", ";")

PLATFORMS = {
    "windows", "win32", "win64",
    "darwin", "darwin32", "darwin64", "darwin-arm64",
    "linux", "linux32", "linux64", "linux-armv7l", "linux-aarch64",
}

_TAG_RE = re.compile(r"^@([A-Za-z][\w-]*)\s*:?\s*(.*)$")
_PROVIDES_RE = re.compile(r"^\[([^\]]*)\]\s*(.*)$")
_TAG_ALIASES = {
    "desc": "description",
    "links": "link",
    "website": "link",
    "screenshots": "screenshot",
}
_LINK_RELS = {"link": "website", "donation": "donation", "screenshot": "screenshot"}


class ProvidesLine(BaseModel):
    """One line of a @provides block."""

    file: str = Field(description="File path relative to the package, '.' for the package file itself.")
    url: Optional[str] = Field(default=None, description="Explicit download URL overriding the template.")
    platform: Optional[str] = Field(default=None)
    main: List[str] = Field(default_factory=list, description="Action-list sections to register the file in.")
    nomain: bool = Field(default=False)


class ScriptHeader(BaseModel):
    """Package metadata read from a script header and/or sidecar manifest."""

    description: Optional[str] = None
    author: Optional[str] = None
    version: Optional[str] = None
    changelog: Optional[str] = None
    about: Optional[str] = None
    type: Optional[str] = None
    links: List[LinkEntry] = Field(default_factory=list)
    provides: List[ProvidesLine] = Field(default_factory=list)
    noindex: bool = False
    metapackage: bool = False
    extra: Dict[str, str] = Field(default_factory=dict)

    @property
    def has_metadata(self) -> bool:
        return bool(
            self.description or self.author or self.version or self.changelog
            or self.about or self.links or self.provides or self.noindex
            or self.metapackage or self.type or self.extra
        )

    def merged(self, override: "ScriptHeader") -> "ScriptHeader":
        """Return a copy where every value set in `override` wins."""
        data = self.model_dump()
        for key, value in override.model_dump().items():
            if value in (None, [], {}, False):
                continue
            data[key] = value
        return ScriptHeader(**data)


def parse_link(line: str, rel: str = "website") -> Optional[LinkEntry]:
    """Parse 'Title https://url' or a bare URL. Returns None when the line holds no URL."""
    tokens = line.split()
    if not tokens or not is_http_url(tokens[-1]):
        return None
    title = " ".join(tokens[:-1]) or None
    return LinkEntry(rel=rel, title=title, url=tokens[-1])


def parse_provides(line: str) -> Optional[ProvidesLine]:
    """
    Parse a @provides line: '[options] file [url]'.

    Options: main, main=section1,section2, nomain and platform names.
    """
    line = line.strip()
    if not line:
        return None

    options: List[str] = []
    m = _PROVIDES_RE.match(line)
    if m:
        options = m.group(1).split()
        line = m.group(2).strip()
    if not line:
        return None

    url = None
    tokens = line.split()
    if len(tokens) > 1 and is_http_url(tokens[-1]):
        url = tokens[-1]
        line = line[: line.rfind(url)].strip()

    entry = ProvidesLine(file=line, url=url)
    for option in options:
        if option == "main":
            entry.main = ["main"]
        elif option.startswith("main="):
            entry.main = [s for s in option[5:].split(",") if s]
        elif option == "nomain":
            entry.nomain = True
        elif option in PLATFORMS:
            entry.platform = option
    return entry


def _comment_lines(text: str) -> List[str]:
    """
    Extract the bodies of the leading comment lines.

    Stops at the first line that is neither a comment nor blank. A blank line
    ends the header once some comment text has been collected.
    """
    bodies: List[str] = []
    in_block = False

    for raw in text.splitlines():
        line = raw.rstrip()
        stripped = line.lstrip()

        if in_block:
            if "]]" in line:
                bodies.append(line[: line.index("]]")])
                in_block = False
            else:
                bodies.append(line)
            continue

        if not stripped:
            if bodies:
                break
            continue

        if stripped.startswith("--[["):
            rest = stripped[4:]
            if rest.startswith("["):
                rest = rest[1:]
            if "]]" in rest:
                bodies.append(rest[: rest.index("]]")])
            else:
                bodies.append(rest)
                in_block = True
            continue

        # JSFX effects name themselves with a 'desc:' line.
        if stripped.lower().startswith("desc:"):
            bodies.append("@description " + stripped[5:].strip())
            continue

        for prefix in COMMENT_PREFIXES:
            if stripped.startswith(prefix):
                body = stripped[len(prefix):]
                # '#!/usr/bin/env ...' and '-- ---' separators carry nothing
                if body.startswith("!") and prefix == "#":
                    body = ""
                bodies.append(body)
                break
        else:
            break

    return bodies


def _collect_tags(bodies: List[str]) -> List[tuple]:
    tags: List[tuple] = []
    current: Optional[Dict[str, Any]] = None

    def close() -> None:
        if current is None:
            return
        block = current["lines"]
        while block and not block[-1].strip():
            block.pop()
        value = textwrap.dedent("\n".join(block)).strip("\n")
        first = current["first"].strip()
        if first and value:
            value = first + "\n" + value
        elif first:
            value = first
        tags.append((current["name"], value))

    for body in bodies:
        stripped = body.strip()
        indent = len(body) - len(body.lstrip())
        m = _TAG_RE.match(stripped)
        if m:
            close()
            name = m.group(1).lower()
            current = {
                "name": _TAG_ALIASES.get(name, name),
                "first": m.group(2),
                "indent": indent,
                "lines": [],
            }
        elif current is not None and (not stripped or indent > current["indent"]):
            current["lines"].append(body)
        else:
            close()
            current = None
    close()
    return tags


def parse_header(text: str) -> ScriptHeader:
    """Parse the metadata header at the top of a script."""
    header = ScriptHeader()
    for name, value in _collect_tags(_comment_lines(text)):
        if name in ("description", "author", "version", "type"):
            setattr(header, name, " ".join(value.split()) or None)
        elif name in ("changelog", "about"):
            setattr(header, name, value or None)
        elif name in _LINK_RELS:
            for line in value.splitlines():
                link = parse_link(line, rel=_LINK_RELS[name])
                if link is not None:
                    header.links.append(link)
        elif name == "provides":
            for line in value.splitlines():
                provided = parse_provides(line)
                if provided is not None:
                    header.provides.append(provided)
        elif name in ("noindex", "metapackage"):
            setattr(header, name, True)
        else:
            header.extra[name] = value
    return header


def header_from_manifest(data: Optional[Dict[str, Any]]) -> ScriptHeader:
    """
    Build a header from a parsed sidecar manifest (YAML mapping).

    Versions written unquoted in YAML arrive as numbers and are converted back
    to strings.
    """
    header = ScriptHeader()
    if not data:
        return header
    if not isinstance(data, dict):
        raise ValueError("Sidecar manifest must be a mapping")

    for key in ("description", "author", "version", "type"):
        value = data.get(key)
        if value is not None:
            setattr(header, key, str(value).strip() or None)
    for key in ("changelog", "about"):
        value = data.get(key)
        if value is not None:
            setattr(header, key, str(value).strip() or None)

    for item in data.get("links") or []:
        if isinstance(item, dict):
            header.links.append(LinkEntry(**item))
        else:
            link = parse_link(str(item))
            if link is not None:
                header.links.append(link)

    for item in data.get("provides") or []:
        provided = parse_provides(str(item))
        if provided is not None:
            header.provides.append(provided)

    header.noindex = bool(data.get("noindex", False))
    header.metapackage = bool(data.get("metapackage", False))
    return header
