"""
Crawl the repository tree and merge the packages it contains into the index.

Layout convention: every top-level directory is a category; every file inside
it with a metadata header (or a <file>.reapack.yml sidecar) and a version is a
package. The package name is the file path relative to its category.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Callable, Dict, Iterator, List, Optional, Tuple

import yaml

from reapack_repo.domain.entities import Repository
from reapack_repo.domain.errors import InvalidEntryError
from reapack_repo.domain.header import ScriptHeader, header_from_manifest, parse_header
from reapack_repo.domain.models import (
    PackageIndexEntry,
    ScanResult,
    SkippedFile,
    SourceEntry,
    VersionEntry,
)
from reapack_repo.domain.reapack_utils import is_valid_version, package_type_for, version_key
from reapack_repo.storage.xml_db_manager import INDEX_FILENAME

logger = logging.getLogger(__name__)

SIDECAR_SUFFIX = ".reapack.yml"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


class RepositoryScanner:
    """Builds index entries from the files of a repository working tree."""

    def __init__(self, repository: Repository, clock: Optional[Callable[[], datetime]] = None):
        self.repository = repository
        self.root = repository.db.root
        self.clock = clock or _utcnow

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def iter_category_dirs(self) -> Iterator[Path]:
        ignore = {name.lower() for name in self.repository.config.ignore}
        cache_dir = self.repository.config.cache_dir.strip("/").split("/")[0].lower()
        for path in sorted(self.root.iterdir(), key=lambda p: p.name.lower()):
            if not path.is_dir() or path.name.startswith((".", "_")):
                continue
            if path.name.lower() in ignore or path.name.lower() == cache_dir:
                continue
            yield path

    def iter_candidate_files(self, category_dir: Path) -> Iterator[Path]:
        for path in sorted(category_dir.rglob("*")):
            if not path.is_file():
                continue
            rel_parts = path.relative_to(category_dir).parts
            if any(part.startswith(".") for part in rel_parts):
                continue
            if path.name.endswith(SIDECAR_SUFFIX):
                continue
            yield path

    def read_header(self, path: Path) -> ScriptHeader:
        """Header from the file itself, overridden by its sidecar manifest."""
        header = ScriptHeader()
        if package_type_for(path.name) in ("script", "effect") or path.suffix == "":
            header = parse_header(path.read_text(encoding="utf-8", errors="replace"))

        sidecar = path.with_name(path.name + SIDECAR_SUFFIX)
        if sidecar.exists():
            data = yaml.safe_load(sidecar.read_text(encoding="utf-8"))
            header = header.merged(header_from_manifest(data))
        return header

    # ------------------------------------------------------------------
    # Entry construction
    # ------------------------------------------------------------------

    def _expand_provides(self, package_path: PurePosixPath, file_pattern: str) -> List[str]:
        """Resolve a @provides file (possibly a glob) to package-relative paths."""
        base = package_path.parent
        if not any(ch in file_pattern for ch in "*?["):
            return [file_pattern]
        matches = sorted((self.root / base).glob(file_pattern))
        return [
            m.relative_to(self.root / base).as_posix()
            for m in matches
            if m.is_file() and not m.name.endswith(SIDECAR_SUFFIX)
        ]

    def build_sources(
        self,
        package_path: PurePosixPath,
        package_type: str,
        header: ScriptHeader,
        version: str,
    ) -> List[SourceEntry]:
        package = package_path.name
        default_main = ["main"] if package_type == "script" else []

        if not header.provides:
            url = self.repository.source_url_for(package_path.as_posix(), version, package)
            return [SourceEntry(url=url, main=default_main)]

        sources: List[SourceEntry] = []
        for provided in header.provides:
            for file in self._expand_provides(package_path, provided.file):
                if file == ".":
                    path = package_path
                    file_attr = None
                else:
                    path = package_path.parent / file
                    file_attr = file
                url = provided.url or self.repository.source_url_for(path.as_posix(), version, package)
                if provided.main:
                    main = provided.main
                elif file == "." and not provided.nomain:
                    main = default_main
                else:
                    main = []
                sources.append(SourceEntry(url=url, file=file_attr, platform=provided.platform, main=main))
        return sources

    def build_entry(self, category: str, path: Path, header: ScriptHeader) -> PackageIndexEntry:
        """Build a single-version entry for a package file."""
        rel_path = PurePosixPath(path.relative_to(self.root).as_posix())
        name = PurePosixPath(path.relative_to(self.root / category).as_posix()).as_posix()
        package_type = header.type or package_type_for(path.name) or "script"

        version = VersionEntry(
            name=header.version,
            author=header.author,
            time=None,
            changelog=header.changelog,
            sources=self.build_sources(rel_path, package_type, header, header.version),
        )
        entry = PackageIndexEntry(
            name=name,
            description=header.description or PurePosixPath(name).stem,
            category=category,
            type=package_type,
            about=header.about,
            links=header.links,
            versions=[version],
        )
        entry.path = rel_path.as_posix()
        return entry

    # ------------------------------------------------------------------
    # Scan + merge
    # ------------------------------------------------------------------

    def discover(self) -> Tuple[List[PackageIndexEntry], List[SkippedFile]]:
        found: List[PackageIndexEntry] = []
        skipped: List[SkippedFile] = []
        claimed: Dict[str, str] = {}

        for category_dir in self.iter_category_dirs():
            category = category_dir.name
            for path in self.iter_candidate_files(category_dir):
                rel = path.relative_to(self.root).as_posix()
                sidecar = path.with_name(path.name + SIDECAR_SUFFIX)
                if package_type_for(path.name) is None and not sidecar.exists():
                    continue

                try:
                    header = self.read_header(path)
                except (OSError, ValueError, yaml.YAMLError) as e:
                    logger.warning(f"Cannot read metadata of {rel}: {e}")
                    skipped.append(SkippedFile(path=rel, reason=f"unreadable metadata: {e}"))
                    continue

                if header.noindex:
                    skipped.append(SkippedFile(path=rel, reason="@noindex"))
                    continue
                if not header.version:
                    skipped.append(SkippedFile(path=rel, reason="no @version"))
                    continue
                if not is_valid_version(header.version):
                    logger.warning(f"Skipping {rel}: invalid version {header.version!r}")
                    skipped.append(SkippedFile(path=rel, reason=f"invalid version {header.version!r}"))
                    continue

                try:
                    entry = self.build_entry(category, path, header)
                except ValueError as e:
                    logger.warning(f"Skipping {rel}: {e}")
                    skipped.append(SkippedFile(path=rel, reason=str(e)))
                    continue

                key = entry.name.lower()
                if key in claimed:
                    logger.warning(f"Skipping {rel}: name {entry.name} already used by {claimed[key]}")
                    skipped.append(SkippedFile(path=rel, reason=f"duplicate name, already used by {claimed[key]}"))
                    continue
                claimed[key] = rel
                found.append(entry)

        return found, skipped

    def _hosted_here(self, entry: PackageIndexEntry) -> bool:
        remote = (self.repository.config.remote_url or "").rstrip("/")
        url = entry.source_url
        return bool(remote) and url is not None and url.startswith(remote + "/")

    def scan(self, prune: bool = True) -> ScanResult:
        """
        Merge the packages found in the tree into the index and save it.

        New versions are appended with the current time; re-scanned versions
        keep their original release time. With `prune`, entries hosted in this
        repository whose file no longer exists are removed.
        """
        if not self.repository.config.remote_url:
            raise InvalidEntryError("remote_url must be configured before scanning")

        result = ScanResult()
        found, result.skipped = self.discover()
        index = self.repository.index
        now = self.clock()
        seen = set()

        for scanned in found:
            seen.add(scanned.name.lower())
            new_version = scanned.versions[0]
            existing = index.find(scanned.name)

            if existing is None:
                new_version.time = now
                index.entries.append(scanned)
                result.added.append(scanned.name)
                logger.info(f"New package {scanned.category}/{scanned.name} v{new_version.name}")
                continue

            if existing.category != scanned.category:
                owner = f"{existing.category}/{existing.name}"
                logger.warning(f"Skipping {scanned.path}: name {scanned.name} already used by {owner}")
                result.skipped.append(SkippedFile(path=scanned.path, reason=f"duplicate name, already used by {owner}"))
                continue

            before = existing.model_dump()
            existing.description = scanned.description
            existing.type = scanned.type
            existing.about = scanned.about
            existing.links = scanned.links
            existing.path = scanned.path

            current = next((v for v in existing.versions if v.name == new_version.name), None)
            if current is None:
                new_version.time = now
                existing.versions.append(new_version)
                existing.versions.sort(key=lambda v: version_key(v.name))
                logger.info(f"New version {existing.name} v{new_version.name}")
            else:
                current.author = new_version.author
                current.changelog = new_version.changelog
                current.sources = new_version.sources
                if current.time is None:
                    current.time = now

            if existing.model_dump() != before:
                result.updated.append(existing.name)
            else:
                result.unchanged.append(existing.name)

        if prune:
            for entry in list(index.entries):
                if entry.name.lower() in seen or not self._hosted_here(entry):
                    continue
                if (self.root / entry.category / entry.name).exists():
                    continue
                index.entries.remove(entry)
                result.removed.append(entry.name)
                logger.info(f"Removed package {entry.category}/{entry.name} (file no longer exists)")

        if result.changed or not (self.root / INDEX_FILENAME).exists():
            self.repository.save()

        logger.info(
            f"Scan complete: {len(result.added)} added, {len(result.updated)} updated, "
            f"{len(result.removed)} removed, {len(result.skipped)} skipped"
        )
        return result
