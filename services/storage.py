"""
Storage Service Layer
Document-store primitives (single get + aligned multi-get) on SQLAlchemy async.
"""
from sqlalchemy import select, delete, and_
from typing import Any, Callable, Dict, List, Optional, Sequence
import logging

from database import AsyncSessionLocal, Document
from settings import sanitize_id

logger = logging.getLogger(__name__)


class DocumentStore:
    """Storage service providing collection/id keyed document operations.

    ``get_by_id`` and ``multi_get`` raise on transport failures; deciding
    whether a failure is fatal belongs to the caller.
    """

    def __init__(self, session_factory: Optional[Callable[[], Any]] = None):
        self._session_factory = session_factory or AsyncSessionLocal

    def get_session(self):
        """Get database session context manager"""
        return self._session_factory()

    # ---------- reads ----------

    async def get_by_id(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Return one document's data, or None when it does not exist."""
        doc_id = sanitize_id(doc_id)
        if not collection or not doc_id:
            return None
        async with self.get_session() as session:
            row = await session.get(Document, (collection, doc_id))
            if row is None:
                return None
            return dict(row.data or {})

    async def multi_get(self, collection: str, ids: Sequence[str]) -> List[Optional[Dict[str, Any]]]:
        """Fetch many documents in one query.

        The result is aligned with ``ids``: position i holds the data for
        ids[i], or None when that document is absent.
        """
        if not ids:
            return []
        wanted = [sanitize_id(i) for i in ids]
        lookup = sorted({i for i in wanted if i})
        found: Dict[str, Dict[str, Any]] = {}
        if lookup:
            async with self.get_session() as session:
                query = select(Document.id, Document.data).where(
                    and_(Document.collection == collection, Document.id.in_(lookup))
                )
                result = await session.execute(query)
                for doc_id, data in result.all():
                    found[doc_id] = dict(data or {})
        return [found.get(i) if i else None for i in wanted]

    async def list_ids(self, collection: str, limit: int = 100) -> List[str]:
        async with self.get_session() as session:
            query = (
                select(Document.id)
                .where(Document.collection == collection)
                .order_by(Document.id)
                .limit(limit)
            )
            result = await session.execute(query)
            return list(result.scalars().all())

    # ---------- writes (seeding / admin tooling) ----------

    async def put(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        await self.put_many(collection, {doc_id: data})

    async def put_many(self, collection: str, docs: Dict[str, Dict[str, Any]]) -> int:
        """Upsert documents keyed by id. Returns the number written."""
        rows = {sanitize_id(k): v for k, v in docs.items() if sanitize_id(k)}
        if not rows:
            return 0
        async with self.get_session() as session:
            for doc_id, data in rows.items():
                await session.merge(Document(collection=collection, id=doc_id, data=dict(data or {})))
            await session.commit()
        logger.info("Upserted %d documents into %s", len(rows), collection)
        return len(rows)

    async def delete(self, collection: str, doc_id: str) -> None:
        async with self.get_session() as session:
            await session.execute(
                delete(Document).where(
                    and_(Document.collection == collection, Document.id == sanitize_id(doc_id))
                )
            )
            await session.commit()


storage = DocumentStore()
