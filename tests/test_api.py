"""HTTP API tests using FastAPI's TestClient."""

import asyncio
import xml.etree.ElementTree as ET
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from reapack_repo import main
from reapack_repo.core import dependencies
from reapack_repo.domain.errors import InvalidEntryError
from reapack_repo.main import app
from reapack_repo.services.authentication import ADMIN_TOKEN_HEADER, set_admin_token
from tests.conftest import RAPID_LUA, REMOTE_URL, make_entry, write_repo

TOKEN = "s3cret-token"
AUTH = {ADMIN_TOKEN_HEADER: TOKEN}


@pytest.fixture
def client(repo_root):
    dependencies.configure(repo_root)
    set_admin_token(dependencies.get_db_manager(), TOKEN)
    dependencies.get_scanner().scan()
    with TestClient(app) as c:
        yield c
    dependencies.configure(None)


def _entry_json(**kwargs):
    return make_entry(**kwargs).model_dump(mode="json")


# ─────────────────────────────────────────────────────────────────────────────
# 1. Publishing
# ─────────────────────────────────────────────────────────────────────────────

class TestPublish:

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_index_xml(self, client):
        resp = client.get("/index.xml")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("application/xml")
        root = ET.fromstring(resp.content)
        names = [p.get("name") for p in root.iter("reapack")]
        assert names == ["Mixnote.lua", "RAPID.lua"]

    def test_index_xml_by_branch(self, client):
        assert client.get("/raw/main/index.xml").status_code == 200
        assert client.get("/raw/dev/index.xml").status_code == 404

    def test_raw_payload(self, client):
        resp = client.get("/raw/main/RAPID/RAPID.lua")
        assert resp.status_code == 200
        assert resp.content == RAPID_LUA.encode("utf-8")

    def test_private_files_are_not_served(self, client):
        assert client.get("/raw/main/repository.json").status_code == 404
        assert client.get("/raw/main/RAPID/missing.lua").status_code == 404
        assert client.get("/raw/dev/RAPID/RAPID.lua").status_code == 404

    def test_list_packages(self, client):
        data = client.get("/api/packages").json()["Data"]
        assert [p["name"] for p in data] == ["Mixnote.lua", "RAPID.lua"]
        assert client.get("/api/packages", params={"q": "mixnote"}).json()["Data"][0]["name"] == "Mixnote.lua"
        assert client.get("/api/packages", params={"category": "rapid"}).json()["Data"][0]["name"] == "RAPID.lua"
        assert client.get("/api/packages", params={"q": "mix", "match": "Exact"}).json()["Data"] == []

    def test_get_package(self, client):
        data = client.get("/api/packages/RAPID.lua").json()["Data"]
        assert data["display_name"] == "RAPID"
        assert data["version"] == "2.4.1"
        assert data["source_url"] == f"{REMOTE_URL}/raw/main/RAPID/RAPID.lua"
        assert "path" not in data

    def test_get_missing_package(self, client):
        assert client.get("/api/packages/nope.lua").status_code == 404


# ─────────────────────────────────────────────────────────────────────────────
# 2. Admin authentication
# ─────────────────────────────────────────────────────────────────────────────

class TestAdminAuth:

    def test_missing_token(self, client):
        assert client.post("/admin/rescan").status_code == 401

    def test_wrong_token(self, client):
        assert client.post("/admin/rescan", headers={ADMIN_TOKEN_HEADER: "nope"}).status_code == 401

    def test_admin_disabled_without_token(self, tmp_path):
        dependencies.configure(write_repo(tmp_path / "plain"))
        try:
            with TestClient(app) as c:
                assert c.get("/admin/check", headers=AUTH).status_code == 403
        finally:
            dependencies.configure(None)


# ─────────────────────────────────────────────────────────────────────────────
# 3. Admin operations
# ─────────────────────────────────────────────────────────────────────────────

class TestAdminPackages:

    def test_create_package(self, client):
        resp = client.post("/admin/packages", json=_entry_json(name="New.lua", category="Tools"), headers=AUTH)
        assert resp.status_code == 201
        assert resp.json()["Data"]["name"] == "New.lua"
        assert client.get("/api/packages/new.lua").status_code == 200

    def test_create_duplicate(self, client):
        resp = client.post("/admin/packages", json=_entry_json(name="rapid.lua", category="Other"), headers=AUTH)
        assert resp.status_code == 409

    def test_create_invalid(self, client):
        resp = client.post("/admin/packages", json=_entry_json(name="New.lua", description=""), headers=AUTH)
        assert resp.status_code == 422

    def test_update_package(self, client):
        resp = client.put(
            "/admin/packages/Mixnote.lua",
            json=_entry_json(name="Mixnote.lua", category="Mixnote", version="2.0", description="Review notes"),
            headers=AUTH,
        )
        assert resp.status_code == 200
        assert resp.json()["Data"]["description"] == "Review notes"

    def test_update_missing(self, client):
        assert client.put("/admin/packages/nope.lua", json=_entry_json(), headers=AUTH).status_code == 404

    def test_add_version(self, client):
        version = {"name": "2.5", "sources": [{"url": f"{REMOTE_URL}/raw/main/RAPID/RAPID.lua", "main": ["main"]}]}
        resp = client.post("/admin/packages/RAPID.lua/versions", json=version, headers=AUTH)
        assert resp.status_code == 201
        assert resp.json()["Data"]["version"] == "2.5"

        assert client.post("/admin/packages/RAPID.lua/versions", json=version, headers=AUTH).status_code == 409
        bad = dict(version, name="latest")
        assert client.post("/admin/packages/RAPID.lua/versions", json=bad, headers=AUTH).status_code == 422

    def test_delete_package(self, client):
        assert client.delete("/admin/packages/Mixnote.lua", headers=AUTH).status_code == 204
        assert client.delete("/admin/packages/Mixnote.lua", headers=AUTH).status_code == 404
        assert client.get("/api/packages/Mixnote.lua").status_code == 404


class TestAdminUploadAndChecks:

    def test_upload_script(self, client, repo_root):
        resp = client.post(
            "/admin/upload",
            data={"category": "Tools"},
            files={"file": ("Tool.lua", b"-- @description Handy tool\n-- @version 1.0\n")},
            headers=AUTH,
        )
        assert resp.status_code == 201
        assert resp.json()["Data"]["added"] == ["Tool.lua"]
        assert (repo_root / "Tools" / "Tool.lua").exists()
        assert client.get("/raw/main/Tools/Tool.lua").status_code == 200

    def test_upload_without_version(self, client):
        resp = client.post(
            "/admin/upload",
            data={"category": "Tools"},
            files={"file": ("Draft.lua", b"-- @description Draft\n")},
            headers=AUTH,
        )
        assert resp.status_code == 422
        assert "no @version" in resp.json()["detail"]

    def test_upload_invalid_category(self, client):
        for category in (".git", "a/b", "tests"):
            resp = client.post(
                "/admin/upload",
                data={"category": category},
                files={"file": ("Tool.lua", b"-- @version 1.0\n")},
                headers=AUTH,
            )
            assert resp.status_code == 400

    def test_rescan(self, client):
        resp = client.post("/admin/rescan", headers=AUTH)
        assert resp.status_code == 200
        assert sorted(resp.json()["Data"]["unchanged"]) == ["Mixnote.lua", "RAPID.lua"]

    def test_check(self, client):
        body = client.get("/admin/check", headers=AUTH).json()
        assert body == {"ok": True, "issues": []}

    def test_check_reports_problems(self, client, repo_root):
        (repo_root / "LICENSE").write_text("Apache License 2.0\n", encoding="utf-8")
        body = client.get("/admin/check", headers=AUTH).json()
        assert body["ok"] is False
        assert [i["code"] for i in body["issues"]] == ["license-file"]


# ─────────────────────────────────────────────────────────────────────────────
# 4. Periodic rescan
# ─────────────────────────────────────────────────────────────────────────────

class StopLoop(Exception):
    pass


class FailingScanner:
    """Raises the queued errors in turn, then stops the loop."""

    def __init__(self, errors):
        self.errors = list(errors)
        self.calls = 0

    def scan(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        raise StopLoop()


class TestPeriodicRescan:

    def _run(self, monkeypatch, scanner):
        repo = SimpleNamespace(config=SimpleNamespace(refresh_interval_seconds=0))
        monkeypatch.setattr(main, "get_repository", lambda: repo)
        monkeypatch.setattr(main, "get_scanner", lambda: scanner)
        with pytest.raises(StopLoop):
            asyncio.run(main.periodic_rescan_loop())

    def test_os_errors_do_not_stop_the_loop(self, monkeypatch):
        scanner = FailingScanner([PermissionError("index.xml is read-only"), OSError("disk full")])
        self._run(monkeypatch, scanner)
        assert scanner.calls == 3

    def test_repository_errors_do_not_stop_the_loop(self, monkeypatch):
        scanner = FailingScanner([InvalidEntryError("remote_url must be configured before scanning")])
        self._run(monkeypatch, scanner)
        assert scanner.calls == 2
