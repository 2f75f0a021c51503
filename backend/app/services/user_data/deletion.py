from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from loguru import logger

from app.core.auth_provider import IdentityProvider
from app.core.documents import BatchOperation, DocumentStore
from app.core.storage import BlobStore
from app.services.user_data.resolver import IdentityResolver, ResolvedIdentity
from infrastructure.config import settings


@dataclass
class DeletionResult:
    ok: bool
    user_id: str = ""
    status: str = "completed"  # "completed" | "invalid" | "failed"
    deleted: Dict[str, Any] = field(default_factory=lambda: {"users": 0, "collections": {}, "storage": 0})
    auth_deleted: bool = False
    profile_image_deleted: bool = False
    errors: List[str] = field(default_factory=list)
    error: Optional[str] = None


class UserDeletionService:
    """
    Removes a user and everything they own. Safe to re-run: each step treats
    "nothing there" as done, and dependent documents go before the user document
    so an interrupted run can always be repeated by id.
    """

    def __init__(
        self,
        documents: Optional[DocumentStore] = None,
        blobs: Optional[BlobStore] = None,
        identity_provider: Optional[IdentityProvider] = None,
        collections: Optional[List[str]] = None,
        folders: Optional[List[str]] = None,
        resolver: Optional[IdentityResolver] = None,
    ):
        if documents is None or blobs is None or identity_provider is None:
            from app.infrastructure.firebase import get_blob_store, get_document_store, get_identity_provider
            documents = documents or get_document_store()
            blobs = blobs or get_blob_store()
            identity_provider = identity_provider or get_identity_provider()

        self.documents = documents
        self.blobs = blobs
        self.identity_provider = identity_provider
        self.collections = collections if collections is not None else settings.deletion_collections
        self.folders = folders if folders is not None else settings.storage_folders
        self.resolver = resolver or IdentityResolver(documents)

    async def delete(self, user_id: Optional[str], delete_auth_account: Optional[bool] = None) -> DeletionResult:
        user_id = (user_id or "").strip()
        if not user_id:
            logger.error("Deletion rejected: userId is required")
            return DeletionResult(ok=False, status="invalid", error="userId is required")

        if delete_auth_account is None:
            delete_auth_account = settings.DELETE_AUTH_ACCOUNT

        result = DeletionResult(ok=True, user_id=user_id)
        log = logger.bind(user_id=user_id)
        log.info(f"[Deletion] Starting for {user_id!r}")

        try:
            # 1. User documents (and the profile image they point at)
            user_docs = await self.resolver.find_all(user_id)
            if not user_docs:
                log.info("[Deletion] No user document, continuing with dependent data")
            for doc in user_docs:
                if await self._delete_profile_image(doc):
                    result.profile_image_deleted = True

            # 2. Dependent documents
            for collection in self.collections:
                result.deleted["collections"][collection] = await self._delete_dependents(collection, user_id, result)

            # 3. User documents themselves
            for doc in user_docs:
                await self.documents.delete(self.resolver.collection, doc.key)
                result.deleted["users"] += 1
                log.info(f"[Deletion] Deleted {self.resolver.collection}/{doc.key}")

            # 4. Storage folders
            result.deleted["storage"] = await self._delete_storage(user_id, result)

            # 5. Auth account
            if delete_auth_account:
                result.auth_deleted = await self._delete_auth_account(user_id, result)
        except Exception as e:
            log.exception(f"[Deletion] Failed: {e}")
            result.ok = False
            result.status = "failed"
            result.error = str(e) or "Deletion failed"
            return result

        if result.errors:
            log.warning(f"[Deletion] Completed with {len(result.errors)} errors: {result.errors}")
        log.info(f"[Deletion] Done: deleted={result.deleted} auth_deleted={result.auth_deleted}")
        return result

    async def _delete_profile_image(self, doc: ResolvedIdentity) -> bool:
        reference = doc.data.get(settings.PROFILE_IMAGE_FIELD)
        if not reference or not isinstance(reference, str):
            return False

        path = self.blobs.path_from_reference(reference)
        if not path:
            logger.info(f"[Deletion] Profile image is not in bucket {self.blobs.bucket_name}: {reference[:100]}")
            return False

        try:
            if not await self.blobs.exists(path):
                logger.info(f"[Deletion] Profile image already gone: {path}")
                return False
            return await self.blobs.delete(path)
        except Exception as e:
            # The folder sweep in step 4 gets another chance at it
            logger.error(f"[Deletion] Could not delete profile image {path}: {e}")
            return False

    async def _delete_dependents(self, collection: str, user_id: str, result: DeletionResult) -> int:
        try:
            docs = await self.documents.find_by_field(collection, settings.OWNER_FIELD, user_id)
            if not docs:
                logger.info(f"[Deletion] {collection}: nothing to delete")
                return 0
            deleted = await self.documents.commit_in_batches(
                [BatchOperation.delete(collection, doc.id) for doc in docs]
            )
            logger.info(f"[Deletion] {collection}: deleted {deleted} documents")
            return deleted
        except Exception as e:
            logger.error(f"[Deletion] {collection}: failed: {e}")
            result.errors.append(f"Failed to clean collection {collection}: {e}")
            return 0

    async def _delete_storage(self, user_id: str, result: DeletionResult) -> int:
        total = 0
        for folder in self.folders:
            prefix = f"{folder}/{user_id}/"
            try:
                names = await self.blobs.list(prefix)
            except Exception as e:
                logger.error(f"[Deletion] Listing {prefix} failed: {e}")
                result.errors.append(f"Failed to process folder {folder}: {e}")
                continue

            deleted = 0
            for name in names:
                try:
                    if await self.blobs.delete(name):
                        deleted += 1
                except Exception as e:
                    logger.error(f"[Deletion] Deleting {name} failed: {e}")
                    result.errors.append(f"Failed to delete {name}: {e}")
            logger.info(f"[Deletion] {prefix}: {deleted}/{len(names)} files deleted")
            total += deleted
        return total

    async def _delete_auth_account(self, user_id: str, result: DeletionResult) -> bool:
        try:
            return await self.identity_provider.delete_account(user_id)
        except Exception as e:
            logger.error(f"[Deletion] Auth account deletion failed for {user_id!r}: {e}")
            result.errors.append(f"Failed to delete auth account: {e}")
            return False
