from typing import List, Optional, Tuple
import logging

from reapack_repo.domain.errors import (
    DuplicateEntryError,
    EntryNotFoundError,
    InvalidEntryError,
)
from reapack_repo.domain.models import (
    IndexDocument,
    PackageIndexEntry,
    RepositoryConfig,
    VersionEntry,
)
from reapack_repo.domain.reapack_utils import (
    index_url,
    is_http_url,
    is_valid_version,
    match_text,
    render_source_url,
    version_key,
)
from reapack_repo.storage.db_manager import DatabaseManager

logger = logging.getLogger(__name__)


def entry_problems(entry: PackageIndexEntry) -> List[Tuple[str, str]]:
    """
    Return (code, message) pairs for every invariant the entry violates on its own.

    Uniqueness of the name is a property of the whole index and is checked by
    the Repository / check_index.
    """
    problems: List[Tuple[str, str]] = []
    if not entry.name.strip():
        problems.append(("missing-name", "Entry has an empty name"))
    if not entry.description.strip():
        problems.append(("missing-description", f"{entry.name} has no description"))
    if not entry.category.strip():
        problems.append(("missing-category", f"{entry.name} has no category"))

    seen = set()
    for version in entry.versions:
        if not is_valid_version(version.name):
            problems.append(("invalid-version", f"{entry.name}: invalid version {version.name!r}"))
        if version.name in seen:
            problems.append(("duplicate-version", f"{entry.name}: version {version.name} listed twice"))
        seen.add(version.name)
        for source in version.sources:
            if not is_http_url(source.url):
                problems.append(
                    ("invalid-source-url", f"{entry.name} {version.name}: source URL {source.url!r} is not an http(s) URL")
                )
    return problems


class Repository:
    """
    The package index and the operations a maintainer performs on it.

    Every mutating operation validates the entry, keeps entry names unique
    (case-insensitively, across categories) and persists the index.
    """

    def __init__(self, db: DatabaseManager):
        self.db = db

    @property
    def config(self) -> RepositoryConfig:
        return self.db.get_repository_config()

    @property
    def index(self) -> IndexDocument:
        return self.db.get_index()

    def save(self) -> None:
        self.db.save_index(self.index)

    # ------------------------------------------------------------------
    # Read-only access
    # ------------------------------------------------------------------

    def list_entries(self, category: Optional[str] = None) -> List[PackageIndexEntry]:
        entries = self.index.entries
        if category:
            entries = [e for e in entries if e.category.lower() == category.lower()]
        return sorted(entries, key=lambda e: (e.category.lower(), e.name.lower()))

    def get_entry(self, name: str) -> Optional[PackageIndexEntry]:
        return self.index.find(name)

    def require_entry(self, name: str) -> PackageIndexEntry:
        entry = self.get_entry(name)
        if entry is None:
            raise EntryNotFoundError(f"Package {name} not found")
        return entry

    def search(
        self,
        keyword: Optional[str],
        match_type: Optional[str] = None,
        category: Optional[str] = None,
    ) -> List[PackageIndexEntry]:
        """
        Filter entries by keyword. The keyword is matched against the name,
        display name, description and category; an empty keyword matches all.
        """
        entries = self.list_entries(category)
        if not keyword:
            return entries
        results = []
        for entry in entries:
            fields = [entry.name, entry.display_name, entry.description, entry.category]
            if any(match_text(value, keyword, match_type) for value in fields):
                results.append(entry)
        return results

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _validate(self, entry: PackageIndexEntry) -> None:
        problems = entry_problems(entry)
        if problems:
            raise InvalidEntryError("; ".join(message for _, message in problems))

    def add_entry(self, entry: PackageIndexEntry) -> PackageIndexEntry:
        if self.get_entry(entry.name) is not None:
            raise DuplicateEntryError(f"Package {entry.name} already exists")
        self._validate(entry)
        entry.versions.sort(key=lambda v: version_key(v.name))
        self.index.entries.append(entry)
        self.save()
        logger.info(f"Added package {entry.category}/{entry.name}")
        return entry

    def update_entry(self, name: str, entry: PackageIndexEntry) -> PackageIndexEntry:
        existing = self.require_entry(name)
        if entry.name.lower() != existing.name.lower() and self.get_entry(entry.name) is not None:
            raise DuplicateEntryError(f"Package {entry.name} already exists")
        self._validate(entry)
        entry.versions.sort(key=lambda v: version_key(v.name))
        if entry.path is None:
            entry.path = existing.path

        entries = self.index.entries
        entries[entries.index(existing)] = entry
        self.save()
        logger.info(f"Updated package {entry.category}/{entry.name}")
        return entry

    def add_version(self, name: str, version: VersionEntry) -> PackageIndexEntry:
        entry = self.require_entry(name)
        if any(v.name == version.name for v in entry.versions):
            raise DuplicateEntryError(f"{entry.name} already has version {version.name}")
        candidate = entry.model_copy(deep=True)
        candidate.versions.append(version)
        self._validate(candidate)

        entry.versions.append(version)
        entry.versions.sort(key=lambda v: version_key(v.name))
        self.save()
        logger.info(f"Added version {version.name} to {entry.name}")
        return entry

    def remove_entry(self, name: str) -> PackageIndexEntry:
        entry = self.require_entry(name)
        self.index.entries.remove(entry)
        self.save()
        logger.info(f"Removed package {entry.category}/{entry.name}")
        return entry

    # ------------------------------------------------------------------
    # URLs
    # ------------------------------------------------------------------

    def source_url_for(self, path: str, version: str = "", package: str = "") -> str:
        config = self.config
        if not config.remote_url:
            raise InvalidEntryError("remote_url is not configured; cannot build source URLs")
        return render_source_url(
            config.url_template,
            remote_url=config.remote_url,
            ref=config.branch,
            path=path,
            version=version,
            package=package,
        )

    def index_url(self) -> Optional[str]:
        config = self.config
        if not config.remote_url:
            return None
        return index_url(config.remote_url, config.branch)
