"""
Pydantic models for the ReaPack repository.

This module defines all data models used throughout the application, including:
- Repository configuration and settings
- Package index entries, versions and sources
- Check reports and scan results

All models use Pydantic for validation, serialization, and type safety.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import List, Optional, Literal

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Repository Configuration Models
# ---------------------------------------------------------------------------


class RepositoryConfig(BaseModel):
    """
    Top-level configuration for the ReaPack repository.

    Persisted at: <REPO_ROOT>/repository.json
    """

    # Basic repository identification
    name: str = Field(
        default="ReaPack-Repo",
        description="Repository name written to the <index name=...> attribute.",
    )
    remote_url: Optional[str] = Field(
        default=None,
        description="Public URL of the hosted repository (e.g. 'https://github.com/user/ReaPack-Repo').",
    )
    branch: str = Field(
        default="main",
        description="Branch the index and payloads are published from.",
    )
    url_template: str = Field(
        default="{remote_url}/raw/{ref}/{path}",
        description="Template for source URLs. Placeholders: remote_url, ref, path, version, package.",
    )
    license: str = Field(
        default="MIT",
        description="License identifier every script in the repository is published under.",
    )
    readme_path: str = Field(
        default="README.md",
        description="README location relative to the repository root.",
    )
    license_path: str = Field(
        default="LICENSE",
        description="License file location relative to the repository root.",
    )
    ignore: List[str] = Field(
        default_factory=lambda: ["tests", "docs", "reapack_repo", "node_modules"],
        description="Top-level directory names that are never treated as categories.",
    )

    # Background jobs and networking
    refresh_interval_seconds: int = Field(
        default=3600,
        ge=0,
        description="How often (in seconds) the server rescans the tree. 0 disables the periodic rescan.",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for outgoing HTTP requests (source checks, index downloads).",
    )
    max_concurrent_requests: int = Field(
        default=8,
        ge=1,
        description="Upper bound on simultaneous outgoing HTTP requests.",
    )
    cache_dir: str = Field(
        default=".reapack-cache",
        description="Directory (relative to the root) used to cache downloaded indexes.",
    )

    # Admin API
    admin_token_sha256: Optional[str] = Field(
        default=None,
        description="Salted SHA256 of the admin token. The admin API is disabled while unset.",
    )
    admin_token_salt: Optional[str] = Field(
        default=None,
        description="Salt used when hashing the admin token.",
    )

    created_at: datetime = Field(
        default_factory=_utcnow,
        description="Timestamp when this repository configuration was first created.",
    )


# ---------------------------------------------------------------------------
# Package Index Models
# ---------------------------------------------------------------------------


PackageType = Literal[
    "script",
    "extension",
    "effect",
    "data",
    "theme",
    "langpack",
    "webinterface",
    "projecttpl",
    "tracktpl",
    "midinotenames",
    "autoitem",
]


class LinkEntry(BaseModel):
    """A link in an entry's (or the index's) <metadata> block."""

    rel: Literal["website", "donation", "screenshot"] = Field(
        default="website",
        description="Link relation as understood by ReaPack.",
    )
    title: Optional[str] = Field(
        default=None,
        description="Optional label shown instead of the URL.",
    )
    url: str = Field(
        description="Target URL.",
    )


class SourceEntry(BaseModel):
    """
    One downloadable file of a package version.

    A version usually has a single source (the package file itself, flagged
    as 'main'), but packages may ship extra files or per-platform binaries.
    """

    url: str = Field(
        description="Absolute URL the package manager downloads the file from.",
    )
    file: Optional[str] = Field(
        default=None,
        description="Install path relative to the package, when it differs from the package file.",
    )
    platform: Optional[str] = Field(
        default=None,
        description="Restricts the source to one platform (e.g. 'win64', 'darwin').",
    )
    main: List[str] = Field(
        default_factory=list,
        description="Action-list sections the file is registered in (e.g. ['main']). Empty means not registered.",
    )


class VersionEntry(BaseModel):
    """A single released version of a package."""

    name: str = Field(
        description="Version string (e.g. '2.4.1').",
    )
    author: Optional[str] = Field(
        default=None,
        description="Author credited for this version.",
    )
    time: Optional[datetime] = Field(
        default=None,
        description="Release timestamp (UTC).",
    )
    changelog: Optional[str] = Field(
        default=None,
        description="Release notes for this version.",
    )
    sources: List[SourceEntry] = Field(
        default_factory=list,
        description="Files making up this version.",
    )


class PackageIndexEntry(BaseModel):
    """
    A package in the index (one <reapack> element).

    The entry name must be unique within the index. Versions are kept sorted
    ascending so that the last one is the latest release.
    """

    name: str = Field(
        description="Package name as written to the index, e.g. 'RAPID.lua'.",
    )
    description: str = Field(
        description="Short one-line summary of the package.",
    )
    category: str = Field(
        description="Category the package is listed under.",
    )
    type: PackageType = Field(
        default="script",
        description="ReaPack package type.",
    )
    about: Optional[str] = Field(
        default=None,
        description="Long description (markdown).",
    )
    links: List[LinkEntry] = Field(
        default_factory=list,
        description="Website, donation and screenshot links.",
    )
    versions: List[VersionEntry] = Field(
        default_factory=list,
        description="Released versions, oldest first.",
    )

    # Internal storage path (not persisted to the index)
    path: Optional[str] = Field(
        default=None,
        exclude=True,
        description="Path of the package file relative to the repository root. Populated by the scanner.",
    )

    @property
    def display_name(self) -> str:
        """Human-readable name, e.g. 'RAPID' for 'RAPID.lua'."""
        name = PurePosixPath(self.name).name
        stem = name.rsplit(".", 1)[0] if "." in name else name
        return stem or self.name

    @property
    def latest(self) -> Optional[VersionEntry]:
        return self.versions[-1] if self.versions else None

    @property
    def version(self) -> Optional[str]:
        latest = self.latest
        return latest.name if latest else None

    @property
    def source_url(self) -> Optional[str]:
        """URL of the main source of the latest version (first source as fallback)."""
        latest = self.latest
        if latest is None or not latest.sources:
            return None
        for source in latest.sources:
            if source.main:
                return source.url
        return latest.sources[0].url


class IndexDocument(BaseModel):
    """
    The whole repository index (index.xml).

    Entries are stored flat; categories are derived from each entry when the
    index is written.
    """

    name: Optional[str] = Field(
        default=None,
        description="Repository name.",
    )
    version: int = Field(
        default=1,
        description="Index format version.",
    )
    entries: List[PackageIndexEntry] = Field(
        default_factory=list,
        description="All packages of the repository.",
    )
    about: Optional[str] = Field(
        default=None,
        description="Repository-level description.",
    )
    links: List[LinkEntry] = Field(
        default_factory=list,
        description="Repository-level links.",
    )

    @property
    def categories(self) -> List[str]:
        return sorted({e.category for e in self.entries})

    def find(self, name: str) -> Optional[PackageIndexEntry]:
        """Case-insensitive lookup by entry name."""
        key = name.lower()
        for entry in self.entries:
            if entry.name.lower() == key:
                return entry
        return None


# ---------------------------------------------------------------------------
# Checks and scanning
# ---------------------------------------------------------------------------


class CheckIssue(BaseModel):
    """A single problem found by one of the repository checks."""

    severity: Literal["error", "warning"] = Field(
        default="error",
        description="Errors fail the check; warnings are informational.",
    )
    code: str = Field(
        description="Stable machine-readable issue code, e.g. 'duplicate-name'.",
    )
    subject: Optional[str] = Field(
        default=None,
        description="What the issue is about (entry name, URL, file).",
    )
    message: str = Field(
        description="Human-readable explanation.",
    )


class CheckReport(BaseModel):
    """Result of running one or more checks."""

    issues: List[CheckIssue] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def errors(self) -> List[CheckIssue]:
        return [i for i in self.issues if i.severity == "error"]

    @property
    def warnings(self) -> List[CheckIssue]:
        return [i for i in self.issues if i.severity == "warning"]

    def add(self, code: str, message: str, subject: Optional[str] = None, severity: str = "error") -> None:
        self.issues.append(CheckIssue(severity=severity, code=code, subject=subject, message=message))

    def extend(self, other: "CheckReport") -> "CheckReport":
        self.issues.extend(other.issues)
        return self


class SkippedFile(BaseModel):
    path: str
    reason: str


class ScanResult(BaseModel):
    """Summary of a scanner run."""

    added: List[str] = Field(default_factory=list)
    updated: List[str] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)
    unchanged: List[str] = Field(default_factory=list)
    skipped: List[SkippedFile] = Field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.updated or self.removed)
