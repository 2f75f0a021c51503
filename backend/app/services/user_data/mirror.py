import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from loguru import logger

from app.core.storage import BlobStore, DOWNLOAD_TOKENS_KEY, all_tokens, first_token
from infrastructure.config import settings

# old locator (download URL, gs:// URI or raw path) -> new locator
ReferenceMap = Dict[str, str]


@dataclass
class MirrorResult:
    references: ReferenceMap = field(default_factory=dict)
    mirrored: int = 0
    errors: List[str] = field(default_factory=list)


class ObjectMirror:
    """
    Copies <folder>/<old_id>/* to <folder>/<new_id>/* for every storage folder.
    Source objects stay where they are; nothing here deletes.
    """

    def __init__(self, blobs: BlobStore, folders: Optional[List[str]] = None):
        self.blobs = blobs
        self.folders = folders if folders is not None else settings.storage_folders

    async def mirror(self, old_user_id: str, new_user_id: str) -> MirrorResult:
        result = MirrorResult()
        for folder in self.folders:
            src_prefix = f"{folder}/{old_user_id}/"
            try:
                names = await self.blobs.list(src_prefix)
            except Exception as e:
                # References into this folder keep pointing at the old prefix
                logger.warning(f"Mirror: listing {src_prefix} failed, folder skipped: {e}")
                result.errors.append(f"Failed to list {src_prefix}: {e}")
                continue

            logger.info(f"Mirror: {len(names)} objects under {src_prefix}")
            for name in names:
                dst = f"{folder}/{new_user_id}/{name[len(src_prefix):]}"
                try:
                    await self._mirror_object(name, dst, result.references)
                    result.mirrored += 1
                except Exception as e:
                    logger.warning(f"Mirror: copy {name} -> {dst} failed: {e}")
                    result.errors.append(f"Failed to copy {name}: {e}")

        logger.info(f"Mirror done: {result.mirrored} objects, {len(result.references)} references, {len(result.errors)} errors")
        return result

    async def _mirror_object(self, src: str, dst: str, references: ReferenceMap) -> None:
        old_metadata = await self.blobs.get_metadata(src)
        await self.blobs.copy(src, dst)

        new_metadata = await self.blobs.get_metadata(dst)
        token = first_token(new_metadata)
        if not token:
            token = str(uuid.uuid4())
            await self.blobs.set_metadata(dst, {**new_metadata, DOWNLOAD_TOKENS_KEY: token})

        new_url = self.blobs.download_url(dst, token)
        for old_token in all_tokens(old_metadata):
            references[self.blobs.download_url(src, old_token)] = new_url
        references[self.blobs.download_url(src)] = new_url
        references[self.blobs.gs_uri(src)] = self.blobs.gs_uri(dst)
        references[src] = new_url
