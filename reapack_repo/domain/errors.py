"""
Exception hierarchy for the repository tooling.

Storage and domain code raise subclasses of RepositoryError; the HTTP layer
maps them onto status codes and the CLI onto exit codes.
"""


class RepositoryError(Exception):
    """Root exception for all reapack-repo errors."""


class DuplicateEntryError(RepositoryError, ValueError):
    """Raised when an entry name (or a version of an entry) already exists."""


class EntryNotFoundError(RepositoryError, LookupError):
    """Raised when no entry with the requested name exists."""


class InvalidEntryError(RepositoryError, ValueError):
    """Raised when an entry violates an index invariant (description, version, URL)."""


class IndexFormatError(RepositoryError, ValueError):
    """Raised when index.xml cannot be parsed."""


class PayloadPathError(RepositoryError, ValueError):
    """Raised when a payload path points outside the repository root."""


class FetchError(RepositoryError):
    """Raised when a remote index cannot be downloaded and no cached copy exists."""
