"""
Admin API endpoints for maintaining the package index.

This module provides the maintainer's interface for:
- Creating, updating and removing index entries
- Adding versions to an entry
- Uploading script payloads into the repository tree
- Rescanning the tree and running the repository checks

Every endpoint requires the X-Admin-Token header.
"""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Optional
import logging

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    Header,
    HTTPException,
    Query,
    Response,
    UploadFile,
    status,
)

from reapack_repo.api.publish import entry_to_dict
from reapack_repo.core.dependencies import get_repository, get_scanner
from reapack_repo.domain.entities import Repository
from reapack_repo.domain.errors import (
    DuplicateEntryError,
    EntryNotFoundError,
    InvalidEntryError,
    PayloadPathError,
)
from reapack_repo.domain.models import PackageIndexEntry, VersionEntry
from reapack_repo.services.authentication import admin_enabled, verify_admin_token
from reapack_repo.services.checks import check_repository
from reapack_repo.services.scanner import RepositoryScanner
from reapack_repo.services.source_checker import SourceChecker

logger = logging.getLogger(__name__)


async def require_admin_token(
    x_admin_token: Optional[str] = Header(default=None),
    repo: Repository = Depends(get_repository),
) -> None:
    """
    Dependency function to require a valid admin token.

    Raises:
        HTTPException: 403 if no token is configured, 401 if the header is
        missing or wrong.
    """
    config = repo.config
    if not admin_enabled(config):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin API is disabled; set a token with 'reapack-repo set-token'",
        )
    if not verify_admin_token(config, x_admin_token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing admin token",
        )


router = APIRouter(prefix="/admin", dependencies=[Depends(require_admin_token)])


# ---------------------------------------------------------------------------
# Entries
# ---------------------------------------------------------------------------

@router.post("/packages", status_code=status.HTTP_201_CREATED)
async def create_package(entry: PackageIndexEntry, repo: Repository = Depends(get_repository)) -> dict:
    try:
        created = repo.add_entry(entry)
    except DuplicateEntryError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except InvalidEntryError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return {"Data": entry_to_dict(created)}


@router.put("/packages/{name}")
async def update_package(name: str, entry: PackageIndexEntry, repo: Repository = Depends(get_repository)) -> dict:
    try:
        updated = repo.update_entry(name, entry)
    except EntryNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except DuplicateEntryError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except InvalidEntryError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return {"Data": entry_to_dict(updated)}


@router.delete("/packages/{name}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_package(name: str, repo: Repository = Depends(get_repository)) -> Response:
    try:
        repo.remove_entry(name)
    except EntryNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/packages/{name}/versions", status_code=status.HTTP_201_CREATED)
async def add_package_version(
    name: str,
    version: VersionEntry,
    repo: Repository = Depends(get_repository),
) -> dict:
    try:
        entry = repo.add_version(name, version)
    except EntryNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except DuplicateEntryError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except InvalidEntryError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return {"Data": entry_to_dict(entry)}


# ---------------------------------------------------------------------------
# Payloads and scanning
# ---------------------------------------------------------------------------

@router.post("/upload", status_code=status.HTTP_201_CREATED)
async def upload_payload(
    category: str = Form(...),
    file: UploadFile = File(...),
    repo: Repository = Depends(get_repository),
    scanner: RepositoryScanner = Depends(get_scanner),
) -> dict:
    """
    Store an uploaded script under <category>/<filename> and rescan so the
    package (or its new version) appears in the index.
    """
    filename = PurePosixPath((file.filename or "").replace("\\", "/")).name
    category = category.strip()
    if not filename or filename.startswith("."):
        raise HTTPException(status_code=400, detail="Invalid file name")
    if not category or "/" in category or "\\" in category or category.startswith((".", "_")):
        raise HTTPException(status_code=400, detail="Invalid category")
    if category.lower() in {name.lower() for name in repo.config.ignore}:
        raise HTTPException(status_code=400, detail=f"Category {category} is excluded from the index")

    relative_path = f"{category}/{filename}"
    content = await file.read()
    try:
        repo.db.store_payload(relative_path, content)
        result = scanner.scan(prune=False)
    except PayloadPathError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except InvalidEntryError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    for skipped in result.skipped:
        if skipped.path == relative_path:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"{relative_path} was stored but not indexed: {skipped.reason}",
            )

    logger.info(f"Uploaded {relative_path}")
    return {"Data": result.model_dump()}


@router.post("/rescan")
async def rescan(
    prune: bool = Query(default=True),
    scanner: RepositoryScanner = Depends(get_scanner),
) -> dict:
    try:
        result = scanner.scan(prune=prune)
    except InvalidEntryError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return {"Data": result.model_dump()}


@router.get("/check")
async def run_checks(
    sources: bool = Query(default=False, description="Also verify that every source URL is fetchable"),
    repo: Repository = Depends(get_repository),
) -> dict:
    report = check_repository(repo)
    if sources:
        report.extend(await SourceChecker(repo.config).check(repo.index))
    return {
        "ok": report.ok,
        "issues": [issue.model_dump() for issue in report.issues],
    }
