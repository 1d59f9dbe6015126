"""
Batched Fetcher
One multi-get per referenced collection, degrading to an empty result on failure.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence
import asyncio
import logging

from services.feature_flags import feature_flags

logger = logging.getLogger(__name__)


class BatchStore(Protocol):
    async def multi_get(self, collection: str, ids: Sequence[str]) -> List[Optional[Dict[str, Any]]]:
        ...


@dataclass
class FetchResult:
    """Documents aligned positionally with ``ids``; None marks an absent document."""
    collection: str
    ids: List[str] = field(default_factory=list)
    docs: List[Optional[Dict[str, Any]]] = field(default_factory=list)
    failed: bool = False
    error: Optional[str] = None

    def items(self):
        """(id, doc) pairs for present documents only."""
        for doc_id, doc in zip(self.ids, self.docs):
            if doc is not None:
                yield doc_id, doc

    def found_count(self) -> int:
        return sum(1 for doc in self.docs if doc is not None)


class BatchFetcher:
    """Issues exactly one ``multi_get`` per call.

    A failed or timed-out fetch is logged and returned as ``failed=True`` with
    every position absent; it never raises except on cancellation.
    """

    def __init__(self, store: BatchStore, timeout_seconds: Optional[float] = None):
        self.store = store
        self._timeout_seconds = timeout_seconds

    @property
    def timeout_seconds(self) -> Optional[float]:
        if self._timeout_seconds is not None:
            return self._timeout_seconds
        value = feature_flags.get_flag("read_model.fetch_timeout_seconds", 5.0)
        try:
            value = float(value)
        except (TypeError, ValueError):
            return None
        return value if value > 0 else None

    async def fetch(self, collection: str, ids: Sequence[str]) -> FetchResult:
        ids = list(ids or [])
        if not ids:
            return FetchResult(collection=collection)

        try:
            docs = await asyncio.wait_for(
                self.store.multi_get(collection, ids),
                timeout=self.timeout_seconds,
            )
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            logger.warning(
                "Batched fetch timed out | collection=%s ids=%d timeout=%ss",
                collection,
                len(ids),
                self.timeout_seconds,
            )
            return self._degraded(collection, ids, "timeout")
        except Exception as e:
            logger.warning("Batched fetch failed | collection=%s ids=%d error=%s", collection, len(ids), e)
            return self._degraded(collection, ids, str(e) or type(e).__name__)

        docs = list(docs or [])
        if len(docs) != len(ids):
            logger.warning(
                "Batched fetch returned misaligned results | collection=%s expected=%d got=%d",
                collection,
                len(ids),
                len(docs),
            )
            return self._degraded(collection, ids, "misaligned result")

        return FetchResult(
            collection=collection,
            ids=ids,
            docs=[doc if isinstance(doc, dict) else None for doc in docs],
        )

    async def fetch_many(self, requests: Dict[str, Sequence[str]]) -> Dict[str, FetchResult]:
        """Fetch several collections concurrently; keys of ``requests`` are collection names."""
        collections = list(requests.keys())
        if not collections:
            return {}
        if feature_flags.get_flag("read_model.concurrent_fetch", True):
            results = await asyncio.gather(*[self.fetch(c, requests[c]) for c in collections])
        else:
            results = [await self.fetch(c, requests[c]) for c in collections]
        return dict(zip(collections, results))

    @staticmethod
    def _degraded(collection: str, ids: List[str], error: str) -> FetchResult:
        return FetchResult(
            collection=collection,
            ids=ids,
            docs=[None] * len(ids),
            failed=True,
            error=error,
        )
