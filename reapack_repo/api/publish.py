from __future__ import annotations

from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from fastapi.responses import FileResponse

from reapack_repo.core.dependencies import get_repository
from reapack_repo.domain.entities import Repository
from reapack_repo.domain.errors import PayloadPathError
from reapack_repo.domain.index_xml import dump_index
from reapack_repo.domain.models import PackageIndexEntry
from reapack_repo.domain.reapack_utils import strip_nulls
from reapack_repo.storage.xml_db_manager import CONFIG_FILENAME, INDEX_FILENAME

logger = logging.getLogger(__name__)
router = APIRouter()

XML_MEDIA_TYPE = "application/xml"


def entry_to_dict(entry: PackageIndexEntry) -> Dict[str, Any]:
    """JSON view of an entry, including the derived fields package managers look at."""
    data = entry.model_dump(mode="json")
    data["display_name"] = entry.display_name
    data["version"] = entry.version
    data["source_url"] = entry.source_url
    return strip_nulls(data)


def _index_response(repo: Repository) -> Response:
    return Response(content=dump_index(repo.index), media_type=XML_MEDIA_TYPE)


# ---------------------------------------------------------------------------
# 1. index.xml
# ---------------------------------------------------------------------------

@router.get("/index.xml")
async def get_index(repo: Repository = Depends(get_repository)) -> Response:
    return _index_response(repo)


@router.get("/raw/{ref}/index.xml")
async def get_index_for_ref(ref: str, repo: Repository = Depends(get_repository)) -> Response:
    """
    Same URL layout as the hosted repository: <remote>/raw/<branch>/index.xml.
    """
    if ref != repo.config.branch:
        raise HTTPException(status_code=404, detail=f"Unknown ref {ref}")
    return _index_response(repo)


# ---------------------------------------------------------------------------
# 2. Raw payloads
# ---------------------------------------------------------------------------

@router.get("/raw/{ref}/{path:path}")
async def get_payload(ref: str, path: str, repo: Repository = Depends(get_repository)) -> FileResponse:
    if ref != repo.config.branch:
        raise HTTPException(status_code=404, detail=f"Unknown ref {ref}")

    parts = PurePosixPath(path).parts
    if not parts or any(part.startswith(".") for part in parts) or path in (CONFIG_FILENAME, INDEX_FILENAME):
        raise HTTPException(status_code=404, detail="File not found")

    try:
        file_path = repo.db.get_payload_path(path)
    except PayloadPathError:
        raise HTTPException(status_code=404, detail="File not found")

    if not file_path.is_file():
        raise HTTPException(status_code=404, detail="File not found")

    logger.debug(f"Serving payload {path}")
    return FileResponse(path=file_path, filename=file_path.name, media_type="application/octet-stream")


# ---------------------------------------------------------------------------
# 3. Read-only package API
# ---------------------------------------------------------------------------

@router.get("/api/packages")
async def list_packages(
    q: Optional[str] = Query(default=None, description="Keyword matched against name, description and category"),
    match: Optional[str] = Query(default=None, description="Exact, CaseInsensitive, StartsWith, Substring or Wildcard"),
    category: Optional[str] = Query(default=None),
    repo: Repository = Depends(get_repository),
) -> dict:
    entries: List[PackageIndexEntry] = repo.search(q, match, category)
    return {"Data": [entry_to_dict(e) for e in entries]}


@router.get("/api/packages/{name}")
async def get_package(name: str, repo: Repository = Depends(get_repository)) -> dict:
    entry = repo.get_entry(name)
    if entry is None:
        raise HTTPException(status_code=404, detail="Package not found")
    return {"Data": entry_to_dict(entry)}
