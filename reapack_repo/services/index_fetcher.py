"""
Download and cache a published ReaPack index.
"""
from __future__ import annotations

import asyncio
import hashlib
import logging
from pathlib import Path
from typing import Optional

import aiofiles
import httpx

from reapack_repo.domain.errors import FetchError, IndexFormatError
from reapack_repo.domain.index_xml import load_index
from reapack_repo.domain.models import IndexDocument

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3


class IndexFetcher:
    """Fetches index.xml files (e.g. the published copy of this repository) into a cache directory."""

    def __init__(
        self,
        cache_dir: Path,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_delay: float = 1.0,
    ):
        self.cache_dir = cache_dir
        self.timeout = timeout
        self.transport = transport
        self.retry_delay = retry_delay

    def cache_path(self, url: str) -> Path:
        digest = hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]
        return self.cache_dir / f"{digest}.xml"

    async def download(self, url: str) -> Path:
        """
        Download `url` into the cache and return the cached file.

        The body is streamed to a temp file and parsed before it is moved into
        place, so a failed download or a malformed body never replaces a good
        cached copy.
        """
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        target = self.cache_path(url)
        tmp_path = target.with_name(target.name + ".tmp")

        last_error: Optional[Exception] = None
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                if tmp_path.exists():
                    tmp_path.unlink()
                async with httpx.AsyncClient(
                    follow_redirects=True, timeout=self.timeout, transport=self.transport
                ) as client:
                    async with client.stream("GET", url) as response:
                        response.raise_for_status()
                        async with aiofiles.open(tmp_path, "wb") as f:
                            async for chunk in response.aiter_bytes():
                                await f.write(chunk)
                last_error = None
                break
            except httpx.HTTPError as e:
                last_error = e
                tmp_path.unlink(missing_ok=True)
                if attempt < MAX_ATTEMPTS:
                    logger.warning(f"Download of {url} failed (attempt {attempt}/{MAX_ATTEMPTS}): {e}. Retrying...")
                    await asyncio.sleep(self.retry_delay * attempt)

        if last_error is not None:
            raise FetchError(f"Failed to download {url}: {last_error}") from last_error

        try:
            async with aiofiles.open(tmp_path, "r", encoding="utf-8") as f:
                load_index(await f.read())
        except (IndexFormatError, UnicodeDecodeError) as e:
            tmp_path.unlink(missing_ok=True)
            raise FetchError(f"Downloaded {url} is not a valid index: {e}") from e

        tmp_path.replace(target)
        logger.info(f"Downloaded {url} to {target}")
        return target

    async def fetch(self, url: str) -> IndexDocument:
        """Download and parse an index, falling back to the cached copy when offline."""
        try:
            path = await self.download(url)
        except FetchError:
            cached = self.cache_path(url)
            if not cached.exists():
                raise
            logger.warning(f"Using cached copy of {url} from {cached}")
            path = cached

        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            text = await f.read()
        return load_index(text)
