"""
Render the repository README from the index.
"""
from __future__ import annotations

import logging
from pathlib import Path

from jinja2 import Environment, FileSystemLoader

from reapack_repo.domain.errors import InvalidEntryError
from reapack_repo.domain.models import IndexDocument, RepositoryConfig
from reapack_repo.domain.reapack_utils import index_url

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parents[1] / "templates"
README_TEMPLATE = "README.md.j2"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    keep_trailing_newline=True,
    trim_blocks=False,
    autoescape=False,
)


def render_readme(doc: IndexDocument, config: RepositoryConfig) -> str:
    if not config.remote_url:
        raise InvalidEntryError("remote_url must be configured to render the installation URL")
    if not doc.entries:
        raise InvalidEntryError("The index has no packages to list in the README, run a scan first")

    entries = sorted(doc.entries, key=lambda e: (e.category.lower(), e.name.lower()))
    template = _env.get_template(README_TEMPLATE)
    text = template.render(
        config=config,
        about=doc.about,
        entries=entries,
        index_url=index_url(config.remote_url, config.branch),
    )
    logger.debug(f"Rendered README with {len(entries)} scripts")
    return text
