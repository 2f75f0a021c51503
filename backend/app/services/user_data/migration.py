from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from app.core.documents import BatchOperation, DocumentStore, StoredDocument, StoreTransaction
from app.core.storage import BlobStore
from app.services.user_data.mirror import ObjectMirror, ReferenceMap
from app.services.user_data.resolver import IdentityResolver, ResolvedIdentity
from app.services.user_data.rewriter import ReferenceRewriter
from infrastructure.config import settings

STATUS_MIGRATED = "migrated"
STATUS_ALREADY_MIGRATED = "already_migrated"
STATUS_NOT_FOUND = "not_found"
STATUS_RESUMED = "resumed"
STATUS_INVALID = "invalid"
STATUS_FAILED = "failed"


@dataclass
class MigrationResult:
    ok: bool
    new_user_id: str = ""
    old_user_id: Optional[str] = None
    status: Optional[str] = None
    resolved_user_id: Optional[str] = None
    user_doc_migrated: bool = False
    update_results: Dict[str, int] = field(default_factory=dict)
    mirrored: int = 0
    mirror_errors: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def failed(cls, error: str, **kwargs: Any) -> "MigrationResult":
        return cls(ok=False, status=STATUS_INVALID, error=error, **kwargs)


class UserMigrationService:
    """
    Moves a user's data from a guest id to an authenticated id.

    Steps: resolve the user document, mirror storage objects, swap the user
    document to the new key in a transaction, then re-tag dependent documents
    in batches. Only the swap is atomic; every other step is idempotent so a
    retry from scratch converges.
    """

    def __init__(
        self,
        documents: Optional[DocumentStore] = None,
        blobs: Optional[BlobStore] = None,
        collections: Optional[List[str]] = None,
        resolver: Optional[IdentityResolver] = None,
        mirror: Optional[ObjectMirror] = None,
        rewriter: Optional[ReferenceRewriter] = None,
    ):
        if documents is None or blobs is None:
            from app.infrastructure.firebase import get_blob_store, get_document_store
            documents = documents or get_document_store()
            blobs = blobs or get_blob_store()

        self.documents = documents
        self.blobs = blobs
        self.collections = collections if collections is not None else settings.migration_collections
        self.resolver = resolver or IdentityResolver(documents)
        self.mirror = mirror or ObjectMirror(blobs)
        self.rewriter = rewriter or ReferenceRewriter()
        self.users_collection = self.resolver.collection
        self.id_field = self.resolver.id_field
        self.owner_field = self.rewriter.owner_field

    async def migrate(self, old_user_id: Optional[str], new_user_id: Optional[str]) -> MigrationResult:
        old_id = (old_user_id or "").strip()
        new_id = (new_user_id or "").strip()

        if not new_id:
            logger.error("Migration rejected: newUserId is required")
            return MigrationResult.failed("newUserId is required", old_user_id=old_id or None)
        if old_id and old_id == new_id:
            logger.error(f"Migration rejected: oldUserId == newUserId ({new_id!r})")
            return MigrationResult.failed("oldUserId and newUserId must be different", old_user_id=old_id, new_user_id=new_id)

        result = MigrationResult(ok=True, old_user_id=old_id or None, new_user_id=new_id)
        log = logger.bind(old_user_id=old_id or None, new_user_id=new_id)
        log.info(f"[Migration] Starting: {old_id or '(self-heal)'} -> {new_id}")

        try:
            if settings.MIGRATION_DEBUG_SNAPSHOTS:
                await self._log_ownership("before", [old_id, new_id])

            await self._run(old_id, new_id, result)

            if settings.MIGRATION_DEBUG_SNAPSHOTS:
                await self._log_ownership("after", [old_id, result.resolved_user_id, new_id])
        except Exception as e:
            # Whatever already committed stays committed; a rerun picks up from there
            log.exception(f"[Migration] Failed: {e}")
            result.ok = False
            result.status = STATUS_FAILED
            result.error = str(e) or "Migration failed"
            return result

        log.info(
            f"[Migration] Done: status={result.status} user_doc_migrated={result.user_doc_migrated} "
            f"updates={result.update_results} mirrored={result.mirrored}"
        )
        return result

    async def _run(self, old_id: str, new_id: str, result: MigrationResult) -> None:
        resolved = await self.resolver.resolve(old_id, new_id)

        if resolved is None:
            await self._resume(old_id, new_id, result)
            return

        result.resolved_user_id = resolved.key
        if resolved.key == new_id:
            logger.info(f"[Migration] User document already keyed by {new_id!r}, nothing to do")
            result.status = STATUS_ALREADY_MIGRATED
            return

        source_ids = self._source_ids(resolved, old_id, new_id)
        references = await self._mirror_all(source_ids, new_id, result)

        result.user_doc_migrated = await self._swap_identity(resolved.key, new_id)

        dependents = await self._collect_dependents(source_ids)
        await self._apply_patches(dependents, new_id, references, result)
        result.status = STATUS_MIGRATED

    async def _resume(self, old_id: str, new_id: str, result: MigrationResult) -> None:
        """
        No user document to move. With an explicit old id, dependent documents may
        still carry it (crash after the swap), so they are swept anyway.
        """
        if not old_id:
            logger.info(f"[Migration] No user document found for {new_id!r}, nothing to do")
            result.status = STATUS_NOT_FOUND
            return

        dependents = await self._collect_dependents([old_id])
        if not any(dependents.values()):
            logger.info(f"[Migration] No user document or dependent data for {old_id!r}, nothing to do")
            result.status = STATUS_NOT_FOUND
            return

        logger.warning(f"[Migration] User document for {old_id!r} is gone but dependent data remains, resuming")
        result.resolved_user_id = old_id
        references = await self._mirror_all([old_id], new_id, result)
        await self._apply_patches(dependents, new_id, references, result)
        result.status = STATUS_RESUMED

    def _source_ids(self, resolved: ResolvedIdentity, old_id: str, new_id: str) -> List[str]:
        # A field match means dependents may be tagged with the requested id rather than the key
        ids = [resolved.key]
        if old_id and old_id not in ids:
            ids.append(old_id)
        return [i for i in ids if i != new_id]

    async def _mirror_all(self, source_ids: List[str], new_id: str, result: MigrationResult) -> ReferenceMap:
        references: ReferenceMap = {}
        for source_id in source_ids:
            mirrored = await self.mirror.mirror(source_id, new_id)
            references.update(mirrored.references)
            result.mirrored += mirrored.mirrored
            result.mirror_errors.extend(mirrored.errors)
        return references

    async def _swap_identity(self, old_key: str, new_id: str) -> bool:
        users = self.users_collection
        id_field = self.id_field

        async def _swap(txn: StoreTransaction) -> bool:
            old_doc = await txn.get(users, old_key)
            new_doc = await txn.get(users, new_id)

            if new_doc is not None and new_doc.data.get(id_field) == new_id:
                logger.warning(f"[Migration] {users}/{new_id} already migrated, skipping swap")
                return False
            if old_doc is None:
                logger.warning(f"[Migration] {users}/{old_key} vanished before swap, skipping")
                return False

            txn.set(users, new_id, {**old_doc.data, id_field: new_id}, merge=True)
            txn.delete(users, old_key)
            return True

        swapped = await self.documents.run_transaction(_swap)
        if swapped:
            logger.info(f"[Migration] Swapped {users}/{old_key} -> {users}/{new_id}")
        return swapped

    async def _collect_dependents(self, source_ids: List[str]) -> Dict[str, List[Tuple[str, StoredDocument]]]:
        dependents: Dict[str, List[Tuple[str, StoredDocument]]] = {}
        for collection in self.collections:
            found: List[Tuple[str, StoredDocument]] = []
            for source_id in source_ids:
                docs = await self.documents.find_by_field(collection, self.owner_field, source_id)
                found.extend((source_id, doc) for doc in docs)
            logger.info(f"[Migration] {collection}: {len(found)} documents to re-tag")
            dependents[collection] = found
        return dependents

    async def _apply_patches(
        self,
        dependents: Dict[str, List[Tuple[str, StoredDocument]]],
        new_id: str,
        references: ReferenceMap,
        result: MigrationResult,
    ) -> None:
        for collection, docs in dependents.items():
            operations = [
                BatchOperation.update(collection, doc.id, self.rewriter.build_patch(doc.data, source_id, new_id, references))
                for source_id, doc in docs
            ]
            result.update_results[collection] = await self.documents.commit_in_batches(operations)

    async def _log_ownership(self, label: str, user_ids: List[Optional[str]]) -> None:
        ids = sorted({i for i in user_ids if i})
        for collection in self.collections:
            counts = {}
            for user_id in ids:
                counts[user_id] = len(await self.documents.find_by_field(collection, self.owner_field, user_id))
            logger.debug(f"[Migration] Ownership {label}: {collection} {counts}")
