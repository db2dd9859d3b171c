"""
Read and write the ReaPack repository index (index.xml).

XML structure produced
──────────────────────
<index version="1" name="ReaPack-Repo">
  <category name="RAPID">
    <reapack name="RAPID.lua" type="script" desc="RAPID - ...">
      <metadata>
        <description>markdown about text</description>
        <link rel="website" href="https://github.com/...">GitHub</link>
      </metadata>
      <version name="2.4.1" author="Frank Acklin" time="2025-01-01T12:00:00Z">
        <changelog>Fixed ReaPack metadata</changelog>
        <source main="main">https://github.com/.../raw/main/RAPID/RAPID.lua</source>
      </version>
    </reapack>
  </category>
  <metadata>
    <description>repository description</description>
  </metadata>
</index>
"""
from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import ValidationError

from reapack_repo.domain.errors import IndexFormatError
from reapack_repo.domain.models import (
    IndexDocument,
    LinkEntry,
    PackageIndexEntry,
    SourceEntry,
    VersionEntry,
)
from reapack_repo.domain.reapack_utils import version_key

logger = logging.getLogger(__name__)

XML_DECLARATION = '<?xml version="1.0" encoding="utf-8"?>\n'


def format_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.warning(f"Ignoring unparseable version time: {value!r}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------


def _metadata_element(parent: ET.Element, about: Optional[str], links: List[LinkEntry]) -> None:
    if not about and not links:
        return
    meta = ET.SubElement(parent, "metadata")
    if about:
        ET.SubElement(meta, "description").text = about
    for link in links:
        el = ET.SubElement(meta, "link", {"rel": link.rel})
        if link.title:
            el.set("href", link.url)
            el.text = link.title
        else:
            el.text = link.url


def _version_element(parent: ET.Element, version: VersionEntry) -> None:
    attrs = {"name": version.name}
    if version.author:
        attrs["author"] = version.author
    if version.time:
        attrs["time"] = format_time(version.time)
    el = ET.SubElement(parent, "version", attrs)
    if version.changelog:
        ET.SubElement(el, "changelog").text = version.changelog
    for source in version.sources:
        src_attrs = {}
        if source.main:
            src_attrs["main"] = " ".join(source.main)
        if source.platform:
            src_attrs["platform"] = source.platform
        if source.file:
            src_attrs["file"] = source.file
        ET.SubElement(el, "source", src_attrs).text = source.url


def dump_index(doc: IndexDocument) -> str:
    """Serialise an IndexDocument to index.xml text."""
    root = ET.Element("index", {"version": str(doc.version)})
    if doc.name:
        root.set("name", doc.name)

    for category in doc.categories:
        cat_el = ET.SubElement(root, "category", {"name": category})
        entries = sorted(
            (e for e in doc.entries if e.category == category),
            key=lambda e: e.name.lower(),
        )
        for entry in entries:
            pkg_el = ET.SubElement(
                cat_el,
                "reapack",
                {"name": entry.name, "type": entry.type, "desc": entry.description},
            )
            _metadata_element(pkg_el, entry.about, entry.links)
            for version in sorted(entry.versions, key=lambda v: version_key(v.name)):
                _version_element(pkg_el, version)

    _metadata_element(root, doc.about, doc.links)

    ET.indent(root, space="  ")
    return XML_DECLARATION + ET.tostring(root, encoding="unicode") + "\n"


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------


def _read_metadata(parent: ET.Element) -> tuple:
    about = None
    links: List[LinkEntry] = []
    meta = parent.find("metadata")
    if meta is None:
        return about, links
    desc = meta.find("description")
    if desc is not None and desc.text:
        about = desc.text
    for el in meta.findall("link"):
        text = (el.text or "").strip()
        href = el.get("href")
        url = href or text
        if not url:
            continue
        title = text if href and text and text != href else None
        rel = el.get("rel", "website")
        if rel not in ("website", "donation", "screenshot"):
            rel = "website"
        links.append(LinkEntry(rel=rel, title=title, url=url))
    return about, links


def _read_version(el: ET.Element) -> VersionEntry:
    name = el.get("name")
    if not name:
        raise IndexFormatError("<version> element without a name")
    changelog_el = el.find("changelog")
    sources = []
    for src in el.findall("source"):
        url = (src.text or "").strip()
        if not url:
            raise IndexFormatError(f"Empty <source> in version {name}")
        sources.append(
            SourceEntry(
                url=url,
                file=src.get("file"),
                platform=src.get("platform"),
                main=(src.get("main") or "").split(),
            )
        )
    return VersionEntry(
        name=name,
        author=el.get("author"),
        time=parse_time(el.get("time")),
        changelog=changelog_el.text if changelog_el is not None and changelog_el.text else None,
        sources=sources,
    )


def load_index(text: str) -> IndexDocument:
    """Parse index.xml text. Raises IndexFormatError for malformed documents."""
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        raise IndexFormatError(f"index.xml is not well-formed: {e}") from e

    if root.tag != "index":
        raise IndexFormatError(f"Unexpected root element <{root.tag}>, expected <index>")

    try:
        format_version = int(root.get("version", "1"))
    except ValueError as e:
        raise IndexFormatError(f"Invalid index version: {root.get('version')!r}") from e

    entries: List[PackageIndexEntry] = []
    try:
        for cat_el in root.findall("category"):
            category = cat_el.get("name")
            if not category:
                raise IndexFormatError("<category> element without a name")
            for pkg_el in cat_el.findall("reapack"):
                name = pkg_el.get("name")
                if not name:
                    raise IndexFormatError(f"<reapack> without a name in category {category}")
                about, links = _read_metadata(pkg_el)
                versions = [_read_version(v) for v in pkg_el.findall("version")]
                versions.sort(key=lambda v: version_key(v.name))
                entries.append(
                    PackageIndexEntry(
                        name=name,
                        description=pkg_el.get("desc", ""),
                        category=category,
                        type=pkg_el.get("type", "script"),
                        about=about,
                        links=links,
                        versions=versions,
                    )
                )
        about, links = _read_metadata(root)
    except ValidationError as e:
        raise IndexFormatError(f"Invalid index entry: {e}") from e

    return IndexDocument(
        name=root.get("name"),
        version=format_version,
        entries=entries,
        about=about,
        links=links,
    )
