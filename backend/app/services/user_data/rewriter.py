from typing import Any, Dict, List, Mapping, Optional, Tuple

from google.cloud.firestore_v1.field_path import FieldPath

from app.services.user_data.mirror import ReferenceMap
from infrastructure.config import settings


class ReferenceRewriter:
    """
    Builds the sparse update that moves one dependent document to a new owner.

    Nested maps are walked field by field so the patch only touches what changed.
    Lists cannot be patched element-wise in Firestore, so a list that contains a
    changed reference is emitted whole.
    """

    def __init__(self, owner_field: Optional[str] = None, folders: Optional[List[str]] = None):
        self.owner_field = owner_field or settings.OWNER_FIELD
        folders = folders if folders is not None else settings.storage_folders
        self._markers = tuple(f"{f}/" for f in folders) + tuple(f"{f}%2F" for f in folders)

    def build_patch(self, data: Mapping[str, Any], old_id: str, new_id: str, references: ReferenceMap) -> Dict[str, Any]:
        patch: Dict[str, Any] = {self.owner_field: new_id}
        for key, value in data.items():
            if key == self.owner_field:
                continue
            self._walk(value, (key,), old_id, new_id, references, patch)
        return patch

    def is_reference(self, value: str, references: ReferenceMap) -> bool:
        return value in references or any(marker in value for marker in self._markers)

    def rewrite_value(self, value: str, old_id: str, new_id: str, references: ReferenceMap) -> str:
        if not self.is_reference(value, references):
            return value
        if value in references:
            return references[value]
        # Tokenless or unmapped locator: plain substitution of the id segment
        if old_id and old_id in value:
            return value.replace(old_id, new_id)
        return value

    def _walk(self, value: Any, path: Tuple[str, ...], old_id: str, new_id: str,
              references: ReferenceMap, patch: Dict[str, Any]) -> None:
        if isinstance(value, Mapping):
            for key, child in value.items():
                self._walk(child, path + (str(key),), old_id, new_id, references, patch)
        elif isinstance(value, list):
            rewritten = self._rewrite_whole(value, old_id, new_id, references)
            if rewritten != value:
                patch[FieldPath(*path).to_api_repr()] = rewritten
        elif isinstance(value, str):
            rewritten = self.rewrite_value(value, old_id, new_id, references)
            if rewritten != value:
                patch[FieldPath(*path).to_api_repr()] = rewritten

    def _rewrite_whole(self, value: Any, old_id: str, new_id: str, references: ReferenceMap) -> Any:
        """Rewrites a value as a unit (used for lists and anything inside them)."""
        if isinstance(value, str):
            return self.rewrite_value(value, old_id, new_id, references)
        if isinstance(value, list):
            return [self._rewrite_whole(item, old_id, new_id, references) for item in value]
        if isinstance(value, Mapping):
            return {k: self._rewrite_whole(v, old_id, new_id, references) for k, v in value.items()}
        return value
