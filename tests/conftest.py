"""Shared fixtures: a small ReaPack repository tree on disk."""

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

REMOTE_URL = "https://github.com/acklin83/ReaPack-Repo"

RAPID_LUA = """\
-- @description RAPID - Recording Auto-Placement & Intelligent Dynamics
-- @author Frank Acklin
-- @version 2.4.1
-- @changelog
--   Fixed ReaPack metadata for package distribution
--   LUFS Calibration System: Create/update profiles from reference tracks
-- @about
--   # RAPID
--
--   Professional workflow automation for REAPER that automates track mapping,
--   media import, and LUFS normalization.
-- @link GitHub https://github.com/acklin83/RAPID
-- @provides
--   [main] .


local r = reaper
-- @version 9.9 this is code, not header
"""

MIXNOTE_LUA = """\
-- @description Mixnote - REAPER Integration for Audio Review Platform
-- @author Frank Acklin
-- @version 2.0
-- @changelog
--   Initial ReaPack release

local r = reaper
"""

README_MD = f"""\
# ReaPack-Repo

## Installation

1. Extensions → ReaPack → Import repositories
2. Paste `{REMOTE_URL}/raw/main/index.xml`

## Scripts

- **RAPID** - Automates track mapping, media import and LUFS normalization
- **Mixnote** - REAPER integration for the Mixnote review platform

## License

MIT License. See [LICENSE](LICENSE).
"""

LICENSE_TXT = """\
MIT License

Copyright (c) 2025 Frank Acklin
"""

FIXED_TIME = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def write_repo(root: Path, remote_url: str = REMOTE_URL) -> Path:
    (root / "RAPID").mkdir(parents=True)
    (root / "RAPID" / "RAPID.lua").write_text(RAPID_LUA, encoding="utf-8")
    (root / "Mixnote").mkdir()
    (root / "Mixnote" / "Mixnote.lua").write_text(MIXNOTE_LUA, encoding="utf-8")
    (root / "README.md").write_text(README_MD, encoding="utf-8")
    (root / "LICENSE").write_text(LICENSE_TXT, encoding="utf-8")
    config = {"name": "ReaPack-Repo", "remote_url": remote_url, "branch": "main"}
    (root / "repository.json").write_text(json.dumps(config), encoding="utf-8")
    return root


@pytest.fixture
def repo_root(tmp_path):
    return write_repo(tmp_path / "repo")


@pytest.fixture
def db(repo_root):
    from reapack_repo.storage.xml_db_manager import XmlDatabaseManager
    manager = XmlDatabaseManager(repo_root)
    manager.initialize()
    return manager


@pytest.fixture
def repository(db):
    from reapack_repo.domain.entities import Repository
    return Repository(db)


@pytest.fixture
def scanner(repository):
    from reapack_repo.services.scanner import RepositoryScanner
    return RepositoryScanner(repository, clock=lambda: FIXED_TIME)


def make_entry(name="RAPID.lua", category="RAPID", version="1.0", description="Track mapping"):
    from reapack_repo.domain.models import PackageIndexEntry, SourceEntry, VersionEntry
    return PackageIndexEntry(
        name=name,
        description=description,
        category=category,
        versions=[
            VersionEntry(
                name=version,
                author="Frank Acklin",
                time=FIXED_TIME,
                sources=[SourceEntry(url=f"{REMOTE_URL}/raw/main/{category}/{name}", main=["main"])],
            )
        ],
    )
