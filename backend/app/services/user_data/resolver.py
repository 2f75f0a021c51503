from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from loguru import logger

from app.core.documents import DocumentStore
from infrastructure.config import settings


@dataclass
class ResolvedIdentity:
    """The primary user record as actually stored. `key` may differ from the id that was asked for."""
    key: str
    data: Dict[str, Any] = field(default_factory=dict)
    matched_by: str = "key"  # "key" | "field"


class IdentityResolver:
    """
    Finds the canonical user document either by document key or by the `id` field.
    Documents created before the auth uid was known carry a random key and the
    logical id only in the field, so both lookups are needed.
    """

    def __init__(
        self,
        store: DocumentStore,
        collection: Optional[str] = None,
        id_field: Optional[str] = None,
    ):
        self.store = store
        self.collection = collection or settings.USERS_COLLECTION
        self.id_field = id_field or settings.USERS_ID_FIELD

    async def resolve(self, requested_id: Optional[str], target_id: Optional[str] = None) -> Optional[ResolvedIdentity]:
        # No usable old id: self-heal by locating the record whose field already holds the target
        if not requested_id or requested_id == target_id:
            logger.info(f"Resolving user by {self.id_field}=={target_id!r} (self-heal)")
            return await self._by_field(target_id)

        doc = await self.store.get(self.collection, requested_id)
        if doc is not None:
            logger.info(f"Resolved user {requested_id!r} by document key")
            return ResolvedIdentity(key=doc.id, data=doc.data, matched_by="key")

        return await self._by_field(requested_id)

    async def _by_field(self, value: Optional[str]) -> Optional[ResolvedIdentity]:
        if not value:
            return None
        matches = await self.store.find_by_field(self.collection, self.id_field, value, limit=1)
        if not matches:
            logger.info(f"No user document for {self.id_field}=={value!r}")
            return None

        doc = matches[0]
        if doc.id != value:
            logger.warning(f"User key/field divergence: key={doc.id!r} {self.id_field}={value!r}")
        return ResolvedIdentity(key=doc.id, data=doc.data, matched_by="field")

    async def find_all(self, user_id: str) -> List[ResolvedIdentity]:
        """Every primary document for user_id, by key and by field, deduplicated by key."""
        found: Dict[str, ResolvedIdentity] = {}

        doc = await self.store.get(self.collection, user_id)
        if doc is not None:
            found[doc.id] = ResolvedIdentity(key=doc.id, data=doc.data, matched_by="key")

        for match in await self.store.find_by_field(self.collection, self.id_field, user_id):
            found.setdefault(match.id, ResolvedIdentity(key=match.id, data=match.data, matched_by="field"))

        if len(found) > 1:
            logger.warning(f"Found {len(found)} user documents for {user_id!r}: {sorted(found)}")
        return list(found.values())
