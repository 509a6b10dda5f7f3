"""
Elasticsearch client for the searchable log index.

- Processor checks the cluster once at startup; unreachable is fatal.
- Indexer writes one document per log event; failures are reported, never raised.
"""
import logging
from typing import Any, Optional

from elasticsearch import ApiError, AsyncElasticsearch, TransportError

from logharbor.core.errors import StartupError

logger = logging.getLogger("logharbor.search")


class SearchIndex:
    """Thin wrapper over AsyncElasticsearch exposing index(collection, document)."""

    def __init__(self, url: str, client: Optional[AsyncElasticsearch] = None):
        self._url = url
        self._es = client or AsyncElasticsearch(url, request_timeout=10)

    async def check(self) -> None:
        """Fail startup when the cluster does not answer."""
        try:
            ok = await self._es.ping()
        except (ApiError, TransportError) as exc:
            raise StartupError(f"Elasticsearch unreachable at {self._url}: {exc}") from exc
        if not ok:
            raise StartupError(f"Elasticsearch unreachable at {self._url}")
        logger.info("Elasticsearch reachable at %s", self._url)

    async def ping(self) -> bool:
        try:
            return bool(await self._es.ping())
        except (ApiError, TransportError):
            return False

    async def index(self, collection: str, document: dict[str, Any]) -> bool:
        """Write one document. Returns False on any client/server error."""
        try:
            await self._es.index(index=collection, document=document)
        except (ApiError, TransportError) as exc:
            logger.warning("Error indexing to Elasticsearch: %s", exc)
            return False
        return True

    async def close(self) -> None:
        await self._es.close()
