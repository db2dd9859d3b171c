from pathlib import Path
from typing import Optional
import os

from reapack_repo.storage.db_manager import DatabaseManager
from reapack_repo.storage.xml_db_manager import XmlDatabaseManager
from reapack_repo.domain.entities import Repository
from reapack_repo.services.scanner import RepositoryScanner

REPO_ROOT_ENV_VAR = "REAPACK_REPO_ROOT"

_root_override: Optional[Path] = None
_db_manager: Optional[DatabaseManager] = None
_repository: Optional[Repository] = None
_scanner: Optional[RepositoryScanner] = None


def get_repo_root() -> Path:
    """
    Determine the repository root.

    Priority:
    1. Explicit override (CLI --root / configure())
    2. Environment variable REAPACK_REPO_ROOT
    3. The current working directory
    """
    if _root_override is not None:
        return _root_override
    env_path = os.environ.get(REPO_ROOT_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return Path.cwd()


def configure(root: Optional[Path]) -> None:
    """Point the dependency singletons at another repository root."""
    global _root_override
    _root_override = root
    reset()


def reset() -> None:
    global _db_manager, _repository, _scanner
    _db_manager = None
    _repository = None
    _scanner = None


def get_db_manager() -> DatabaseManager:
    global _db_manager
    if _db_manager is None:
        _db_manager = XmlDatabaseManager(get_repo_root())
        _db_manager.initialize()
    return _db_manager


def get_repository() -> Repository:
    global _repository
    if _repository is None:
        _repository = Repository(get_db_manager())
    return _repository


def get_scanner() -> RepositoryScanner:
    global _scanner
    if _scanner is None:
        _scanner = RepositoryScanner(get_repository())
    return _scanner
