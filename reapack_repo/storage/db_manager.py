from abc import ABC, abstractmethod
from pathlib import Path

from reapack_repo.domain.models import IndexDocument, RepositoryConfig


class DatabaseManager(ABC):
    """
    Abstract base class for storage/database management.
    """

    @property
    @abstractmethod
    def root(self) -> Path:
        """Repository root directory (the working tree that is published)."""
        pass

    @abstractmethod
    def initialize(self) -> None:
        """Initialize the storage subsystem (e.g. load from disk)."""
        pass

    @abstractmethod
    def get_repository_config(self) -> RepositoryConfig:
        """Retrieve repository configuration."""
        pass

    @abstractmethod
    def save_repository_config(self, config: RepositoryConfig) -> None:
        """Save repository configuration."""
        pass

    @abstractmethod
    def get_index(self) -> IndexDocument:
        """Get the full repository index."""
        pass

    @abstractmethod
    def save_index(self, index: IndexDocument) -> None:
        """Persist the repository index."""
        pass

    @abstractmethod
    def get_payload_path(self, relative_path: str) -> Path:
        """
        Resolve a repository-relative path to an absolute path inside the root.
        Required for serving downloads.
        """
        pass

    @abstractmethod
    def store_payload(self, relative_path: str, content: bytes) -> Path:
        """Write a payload file into the repository tree and return its absolute path."""
        pass
