import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from reapack_repo.domain.errors import PayloadPathError
from reapack_repo.domain.index_xml import dump_index, load_index
from reapack_repo.domain.models import IndexDocument, RepositoryConfig
from reapack_repo.storage.db_manager import DatabaseManager

logger = logging.getLogger(__name__)

INDEX_FILENAME = "index.xml"
CONFIG_FILENAME = "repository.json"


def _atomic_write(path: Path, data: bytes) -> None:
    """Write to a temporary file next to `path`, then move it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class XmlDatabaseManager(DatabaseManager):
    """
    Keeps the index as <root>/index.xml and the configuration as
    <root>/repository.json, i.e. exactly the files that get published.
    """

    def __init__(self, root: Path):
        self._root = root.resolve()
        self._index: Optional[IndexDocument] = None
        self._repository_config: Optional[RepositoryConfig] = None

        # Ensure root directory exists
        if not self._root.exists():
            self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    @property
    def index_path(self) -> Path:
        return self._root / INDEX_FILENAME

    def initialize(self) -> None:
        self._load_repository_config()
        self._load_index_from_disk()

    def get_repository_config(self) -> RepositoryConfig:
        if self._repository_config is None:
            return self._load_repository_config()
        return self._repository_config

    def save_repository_config(self, config: RepositoryConfig) -> None:
        self._repository_config = config
        config_path = self._root / CONFIG_FILENAME
        _atomic_write(config_path, config.model_dump_json(indent=2).encode("utf-8"))

    def get_index(self) -> IndexDocument:
        if self._index is None:
            return self._load_index_from_disk()
        return self._index

    def save_index(self, index: IndexDocument) -> None:
        if not index.name:
            index.name = self.get_repository_config().name
        _atomic_write(self.index_path, dump_index(index).encode("utf-8"))
        self._index = index
        logger.debug(f"Wrote {self.index_path} ({len(index.entries)} entries)")

    def get_payload_path(self, relative_path: str) -> Path:
        candidate = (self._root / relative_path).resolve()
        if candidate != self._root and self._root not in candidate.parents:
            raise PayloadPathError(f"Path escapes the repository root: {relative_path}")
        return candidate

    def store_payload(self, relative_path: str, content: bytes) -> Path:
        target = self.get_payload_path(relative_path)
        if target == self._root:
            raise PayloadPathError("Payload path must name a file")
        _atomic_write(target, content)
        logger.info(f"Stored payload {relative_path} ({len(content)} bytes)")
        return target

    def _load_repository_config(self) -> RepositoryConfig:
        path = self._root / CONFIG_FILENAME
        if path.exists():
            try:
                raw = json.loads(path.read_text(encoding="utf-8"))
                config = RepositoryConfig(**raw)
            except (ValueError, ValidationError, TypeError) as e:
                logger.warning(f"Invalid {path}, falling back to defaults: {e}")
                config = RepositoryConfig()
        else:
            config = RepositoryConfig()

        # Persist with all fields populated (including any new defaults).
        self.save_repository_config(config)
        return config

    def _load_index_from_disk(self) -> IndexDocument:
        if self.index_path.exists():
            index = load_index(self.index_path.read_text(encoding="utf-8"))
            logger.debug(f"Loaded {len(index.entries)} entries from {self.index_path}")
        else:
            index = IndexDocument(name=self.get_repository_config().name)
        self._index = index
        return index
