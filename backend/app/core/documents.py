from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from google.api_core import exceptions as gcp_exceptions
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from loguru import logger
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from infrastructure.config import settings

T = TypeVar("T")

# Errors worth another commit attempt; everything else propagates immediately
TRANSIENT_STORE_ERRORS = (
    gcp_exceptions.ServiceUnavailable,
    gcp_exceptions.DeadlineExceeded,
    gcp_exceptions.InternalServerError,
)


@dataclass
class StoredDocument:
    id: str
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BatchOperation:
    """A single write inside a batched commit: 'update' (partial patch) or 'delete'."""
    kind: str
    collection: str
    doc_id: str
    patch: Optional[Dict[str, Any]] = None

    @classmethod
    def update(cls, collection: str, doc_id: str, patch: Dict[str, Any]) -> "BatchOperation":
        return cls("update", collection, doc_id, patch)

    @classmethod
    def delete(cls, collection: str, doc_id: str) -> "BatchOperation":
        return cls("delete", collection, doc_id)


class StoreTransaction(ABC):
    """Read-then-write view handed to DocumentStore.run_transaction callbacks.

    All reads must happen before the first write.
    """

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[StoredDocument]:
        ...

    @abstractmethod
    def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        ...

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> None:
        ...


class DocumentStore(ABC):
    """Document database operations used by the user data services."""

    max_batch_size: int = 500

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[StoredDocument]:
        ...

    @abstractmethod
    async def find_by_field(
        self, collection: str, field_name: str, value: Any, limit: Optional[int] = None
    ) -> List[StoredDocument]:
        ...

    @abstractmethod
    async def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        ...

    @abstractmethod
    async def update(self, collection: str, doc_id: str, patch: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        ...

    @abstractmethod
    async def commit_batch(self, operations: List[BatchOperation]) -> None:
        """Commits at most max_batch_size operations atomically."""

    @abstractmethod
    async def run_transaction(self, callback: Callable[[StoreTransaction], Awaitable[T]]) -> T:
        ...

    async def commit_in_batches(self, operations: List[BatchOperation]) -> int:
        """Splits operations into commits no larger than max_batch_size."""
        committed = 0
        for start in range(0, len(operations), self.max_batch_size):
            chunk = operations[start:start + self.max_batch_size]
            await self.commit_batch(chunk)
            committed += len(chunk)
            logger.debug(f"Committed batch of {len(chunk)} ops ({committed}/{len(operations)})")
        return committed


def _store_retry():
    return retry(
        stop=stop_after_attempt(settings.STORE_RETRY_ATTEMPTS),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=8),
        retry=retry_if_exception_type(TRANSIENT_STORE_ERRORS),
        reraise=True,
    )


class _FirestoreTransaction(StoreTransaction):
    def __init__(self, client: firestore.AsyncClient, transaction: firestore.AsyncTransaction):
        self.client = client
        self.transaction = transaction

    async def get(self, collection: str, doc_id: str) -> Optional[StoredDocument]:
        snap = await self.client.collection(collection).document(doc_id).get(transaction=self.transaction)
        if not snap.exists:
            return None
        return StoredDocument(id=snap.id, data=snap.to_dict() or {})

    def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        self.transaction.set(self.client.collection(collection).document(doc_id), data, merge=merge)

    def delete(self, collection: str, doc_id: str) -> None:
        self.transaction.delete(self.client.collection(collection).document(doc_id))


class FirestoreDocumentStore(DocumentStore):
    """DocumentStore backed by the async Cloud Firestore client."""

    def __init__(self, client: firestore.AsyncClient, max_batch_size: Optional[int] = None):
        self.client = client
        self.max_batch_size = max_batch_size or settings.FIRESTORE_BATCH_LIMIT

    def _ref(self, collection: str, doc_id: str):
        return self.client.collection(collection).document(doc_id)

    async def get(self, collection: str, doc_id: str) -> Optional[StoredDocument]:
        snap = await self._ref(collection, doc_id).get()
        if not snap.exists:
            return None
        return StoredDocument(id=snap.id, data=snap.to_dict() or {})

    async def find_by_field(
        self, collection: str, field_name: str, value: Any, limit: Optional[int] = None
    ) -> List[StoredDocument]:
        query = self.client.collection(collection).where(filter=FieldFilter(field_name, "==", value))
        if limit:
            query = query.limit(limit)
        snaps = await query.get()
        return [StoredDocument(id=s.id, data=s.to_dict() or {}) for s in snaps]

    async def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        await self._ref(collection, doc_id).set(data, merge=merge)

    async def update(self, collection: str, doc_id: str, patch: Dict[str, Any]) -> None:
        await self._ref(collection, doc_id).update(patch)

    async def delete(self, collection: str, doc_id: str) -> None:
        await self._ref(collection, doc_id).delete()

    async def commit_batch(self, operations: List[BatchOperation]) -> None:
        if len(operations) > self.max_batch_size:
            raise ValueError(f"Batch of {len(operations)} exceeds limit {self.max_batch_size}")

        @_store_retry()
        async def _commit():
            # A fresh WriteBatch per attempt; a committed batch cannot be reused
            batch = self.client.batch()
            for op in operations:
                ref = self._ref(op.collection, op.doc_id)
                if op.kind == "update":
                    batch.update(ref, op.patch or {})
                elif op.kind == "delete":
                    batch.delete(ref)
                else:
                    raise ValueError(f"Unknown batch operation: {op.kind}")
            await batch.commit()

        await _commit()

    async def run_transaction(self, callback: Callable[[StoreTransaction], Awaitable[T]]) -> T:
        transaction = self.client.transaction()

        @firestore.async_transactional
        async def _run(txn):
            return await callback(_FirestoreTransaction(self.client, txn))

        return await _run(transaction)
