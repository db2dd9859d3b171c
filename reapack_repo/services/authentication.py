from __future__ import annotations

import hashlib
import logging
import secrets
from typing import Optional

from reapack_repo.domain.models import RepositoryConfig
from reapack_repo.storage.db_manager import DatabaseManager

logger = logging.getLogger(__name__)

ADMIN_TOKEN_HEADER = "X-Admin-Token"


def _hash_token_sha256(token: str, salt: str) -> str:
    data = (salt + token).encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def set_admin_token(db: DatabaseManager, token: str) -> RepositoryConfig:
    """Store a salted hash of `token`; the token itself is never persisted."""
    if not token:
        raise ValueError("Admin token must not be empty")
    config = db.get_repository_config()
    salt = secrets.token_hex(16)
    config.admin_token_salt = salt
    config.admin_token_sha256 = _hash_token_sha256(token, salt)
    db.save_repository_config(config)
    logger.info("Admin token updated")
    return config


def admin_enabled(config: RepositoryConfig) -> bool:
    return bool(config.admin_token_sha256 and config.admin_token_salt)


def verify_admin_token(config: RepositoryConfig, token: Optional[str]) -> bool:
    if not token or not admin_enabled(config):
        return False
    expected = config.admin_token_sha256
    actual = _hash_token_sha256(token, config.admin_token_salt)
    return secrets.compare_digest(expected, actual)
