"""
Verify that every source URL in the index resolves to a fetchable artifact.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional

import httpx

from reapack_repo.domain.models import CheckReport, IndexDocument, RepositoryConfig

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3


class SourceChecker:
    """
    Issues HEAD requests (GET when the server refuses HEAD) for each distinct
    source URL, with bounded concurrency and a small retry loop for flaky
    connections.
    """

    def __init__(
        self,
        config: RepositoryConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_delay: float = 1.0,
    ):
        self.config = config
        self.transport = transport
        self.retry_delay = retry_delay

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            follow_redirects=True,
            timeout=self.config.request_timeout_seconds,
            transport=self.transport,
        )

    async def probe(self, client: httpx.AsyncClient, url: str) -> Optional[str]:
        """Return None when the URL resolves, otherwise a description of the failure."""
        last_error: Optional[str] = None
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                response = await client.head(url)
                if response.status_code == 405:
                    async with client.stream("GET", url) as streamed:
                        response = streamed
                if response.is_success:
                    return None
                last_error = f"HTTP {response.status_code}"
                # Client errors will not fix themselves.
                if response.status_code < 500:
                    return last_error
            except httpx.HTTPError as e:
                last_error = f"{type(e).__name__}: {e}"

            if attempt < MAX_ATTEMPTS:
                logger.debug(f"Probe of {url} failed (attempt {attempt}/{MAX_ATTEMPTS}): {last_error}. Retrying...")
                await asyncio.sleep(self.retry_delay * attempt)
        return last_error

    async def check(self, doc: IndexDocument) -> CheckReport:
        # url -> entry names referencing it
        owners: Dict[str, List[str]] = {}
        for entry in doc.entries:
            for version in entry.versions:
                for source in version.sources:
                    owners.setdefault(source.url, [])
                    if entry.name not in owners[source.url]:
                        owners[source.url].append(entry.name)

        semaphore = asyncio.Semaphore(self.config.max_concurrent_requests)

        async with self._client() as client:

            async def bounded(url: str) -> Optional[str]:
                async with semaphore:
                    return await self.probe(client, url)

            urls = list(owners)
            results = await asyncio.gather(*(bounded(url) for url in urls))

        report = CheckReport()
        for url, failure in zip(urls, results):
            if failure is None:
                continue
            logger.warning(f"Source {url} is unreachable: {failure}")
            report.add(
                "unreachable-source",
                f"{url} ({', '.join(owners[url])}) is not fetchable: {failure}",
                subject=url,
            )
        logger.info(f"Checked {len(urls)} source URLs, {len(report.issues)} unreachable")
        return report
