"""Tests for the Repository aggregate and its XML-backed storage."""

import json
import time

import pytest

from reapack_repo.domain.entities import Repository, entry_problems
from reapack_repo.domain.errors import (
    DuplicateEntryError,
    EntryNotFoundError,
    InvalidEntryError,
    PayloadPathError,
)
from reapack_repo.domain.models import SourceEntry, VersionEntry
from reapack_repo.domain.reapack_utils import is_valid_version
from reapack_repo.storage.xml_db_manager import XmlDatabaseManager
from tests.conftest import REMOTE_URL, make_entry


# ─────────────────────────────────────────────────────────────────────────────
# 1. Storage
# ─────────────────────────────────────────────────────────────────────────────

class TestXmlDatabaseManager:

    def test_missing_config_is_created_with_defaults(self, tmp_path):
        db = XmlDatabaseManager(tmp_path)
        db.initialize()
        raw = json.loads((tmp_path / "repository.json").read_text(encoding="utf-8"))
        assert raw["branch"] == "main"
        assert raw["license"] == "MIT"

    def test_existing_config_is_completed(self, db, repo_root):
        raw = json.loads((repo_root / "repository.json").read_text(encoding="utf-8"))
        assert raw["remote_url"] == REMOTE_URL
        assert "url_template" in raw

    def test_corrupt_config_falls_back_to_defaults(self, tmp_path):
        (tmp_path / "repository.json").write_text("{not json", encoding="utf-8")
        db = XmlDatabaseManager(tmp_path)
        db.initialize()
        assert db.get_repository_config().remote_url is None

    def test_index_round_trip_through_disk(self, db, repo_root):
        index = db.get_index()
        index.entries.append(make_entry())
        db.save_index(index)

        reopened = XmlDatabaseManager(repo_root)
        reopened.initialize()
        assert reopened.get_index().find("RAPID.lua") is not None
        assert reopened.get_index().name == "ReaPack-Repo"

    def test_no_temp_files_left_behind(self, db, repo_root):
        db.save_index(db.get_index())
        assert not list(repo_root.glob(".*.tmp"))

    def test_payload_path_inside_root(self, db, repo_root):
        assert db.get_payload_path("RAPID/RAPID.lua") == (repo_root / "RAPID" / "RAPID.lua").resolve()

    def test_payload_path_escaping_root(self, db):
        with pytest.raises(PayloadPathError):
            db.get_payload_path("../outside.lua")

    def test_store_payload(self, db, repo_root):
        path = db.store_payload("New/Script.lua", b"-- @version 1.0\n")
        assert path.read_bytes() == b"-- @version 1.0\n"
        assert path.parent == (repo_root / "New").resolve()


# ─────────────────────────────────────────────────────────────────────────────
# 2. Repository lifecycle
# ─────────────────────────────────────────────────────────────────────────────

class TestRepository:

    def test_add_and_get(self, repository):
        repository.add_entry(make_entry())
        assert repository.get_entry("RAPID.lua").description == "Track mapping"
        assert (repository.db.root / "index.xml").exists()

    def test_lookup_is_case_insensitive(self, repository):
        repository.add_entry(make_entry())
        assert repository.get_entry("rapid.LUA") is not None

    def test_duplicate_name_rejected_across_categories(self, repository):
        repository.add_entry(make_entry())
        with pytest.raises(DuplicateEntryError):
            repository.add_entry(make_entry(category="Other"))

    def test_empty_description_rejected(self, repository):
        with pytest.raises(InvalidEntryError):
            repository.add_entry(make_entry(description="   "))

    def test_invalid_version_rejected(self, repository):
        with pytest.raises(InvalidEntryError):
            repository.add_entry(make_entry(version="v1"))

    def test_update_entry(self, repository):
        repository.add_entry(make_entry())
        repository.update_entry("RAPID.lua", make_entry(description="Updated"))
        assert repository.get_entry("RAPID.lua").description == "Updated"
        assert len(repository.index.entries) == 1

    def test_update_missing_entry(self, repository):
        with pytest.raises(EntryNotFoundError):
            repository.update_entry("nope.lua", make_entry())

    def test_rename_onto_existing_name_rejected(self, repository):
        repository.add_entry(make_entry())
        repository.add_entry(make_entry(name="Mixnote.lua", category="Mixnote"))
        with pytest.raises(DuplicateEntryError):
            repository.update_entry("Mixnote.lua", make_entry(name="RAPID.lua", category="Mixnote"))

    def test_add_version_keeps_order(self, repository):
        repository.add_entry(make_entry(version="1.0"))
        for name in ("1.10", "1.2"):
            repository.add_version(
                "RAPID.lua",
                VersionEntry(name=name, sources=[SourceEntry(url=f"{REMOTE_URL}/raw/main/RAPID/RAPID.lua")]),
            )
        entry = repository.get_entry("RAPID.lua")
        assert [v.name for v in entry.versions] == ["1.0", "1.2", "1.10"]
        assert entry.version == "1.10"

    def test_add_duplicate_version(self, repository):
        repository.add_entry(make_entry(version="1.0"))
        with pytest.raises(DuplicateEntryError):
            repository.add_version("RAPID.lua", VersionEntry(name="1.0"))

    def test_remove_entry(self, repository):
        repository.add_entry(make_entry())
        repository.remove_entry("RAPID.lua")
        assert repository.get_entry("RAPID.lua") is None
        with pytest.raises(EntryNotFoundError):
            repository.remove_entry("RAPID.lua")

    def test_changes_persist(self, repository, repo_root):
        repository.add_entry(make_entry())
        fresh = XmlDatabaseManager(repo_root)
        fresh.initialize()
        assert Repository(fresh).get_entry("RAPID.lua") is not None

    def test_search(self, repository):
        repository.add_entry(make_entry())
        repository.add_entry(make_entry(name="Mixnote.lua", category="Mixnote", description="Review comments"))
        assert [e.name for e in repository.search("review")] == ["Mixnote.lua"]
        assert [e.name for e in repository.search("RAP*", "Wildcard")] == ["RAPID.lua"]
        assert [e.name for e in repository.search("rapid", "Exact")] == []
        assert len(repository.search(None)) == 2
        assert [e.name for e in repository.list_entries("mixnote")] == ["Mixnote.lua"]

    def test_urls(self, repository):
        assert repository.index_url() == f"{REMOTE_URL}/raw/main/index.xml"
        assert repository.source_url_for("My Scripts/a b.lua") == f"{REMOTE_URL}/raw/main/My%20Scripts/a%20b.lua"


class TestEntryProblems:

    def test_valid_entry(self):
        assert entry_problems(make_entry()) == []

    def test_non_http_source(self):
        entry = make_entry()
        entry.versions[0].sources[0].url = "ftp://example.com/a.lua"
        assert [code for code, _ in entry_problems(entry)] == ["invalid-source-url"]

    def test_duplicate_versions(self):
        entry = make_entry()
        entry.versions.append(entry.versions[0].model_copy())
        assert "duplicate-version" in [code for code, _ in entry_problems(entry)]

    def test_derived_fields(self):
        entry = make_entry()
        assert entry.display_name == "RAPID"
        assert entry.version == "1.0"
        assert entry.source_url == f"{REMOTE_URL}/raw/main/RAPID/RAPID.lua"


class TestVersionNames:

    @pytest.mark.parametrize("name", ["1", "1.0", "2.4.1", "1.0beta2", "1.0-rc1", "0.9_pre"])
    def test_valid(self, name):
        assert is_valid_version(name)

    @pytest.mark.parametrize("name", ["", None, "v1", ".1", "1.0 beta", "1.0!", "1.0\n"])
    def test_invalid(self, name):
        assert not is_valid_version(name)

    def test_long_invalid_name_is_rejected_quickly(self):
        name = "1" + "a" * 5000 + "!"
        started = time.perf_counter()
        assert not is_valid_version(name)
        assert not is_valid_version("1." * 5000 + "!")
        assert time.perf_counter() - started < 0.5

    def test_add_version_rejects_long_invalid_name(self, repository):
        repository.add_entry(make_entry())
        started = time.perf_counter()
        with pytest.raises(InvalidEntryError):
            repository.add_version(
                "RAPID.lua",
                VersionEntry(
                    name="1" + "a" * 5000 + "!",
                    sources=[SourceEntry(url=f"{REMOTE_URL}/raw/main/RAPID/RAPID.lua")],
                ),
            )
        assert time.perf_counter() - started < 0.5
        assert [v.name for v in repository.get_entry("RAPID.lua").versions] == ["1.0"]
