import re
from abc import ABC, abstractmethod
from typing import Dict, List, Optional
from urllib.parse import quote, unquote

from asgiref.sync import sync_to_async
from google.api_core.exceptions import NotFound
from loguru import logger

from infrastructure.config import settings

# Custom metadata key the Firebase console and client SDKs use for download tokens
DOWNLOAD_TOKENS_KEY = "firebaseStorageDownloadTokens"
FIREBASE_DOWNLOAD_HOST = "https://firebasestorage.googleapis.com"

_DOWNLOAD_URL_PATTERN = re.compile(r"firebasestorage\.googleapis\.com/v0/b/([^/]+)/o/([^?#]+)")
_GS_URI_PATTERN = re.compile(r"^gs://([^/]+)/(.+)$")


def first_token(metadata: Optional[Dict[str, str]]) -> Optional[str]:
    """Returns the token Firebase uses for download URLs (the first of a comma-separated list)."""
    tokens = all_tokens(metadata)
    return tokens[0] if tokens else None


def all_tokens(metadata: Optional[Dict[str, str]]) -> List[str]:
    raw = (metadata or {}).get(DOWNLOAD_TOKENS_KEY) or ""
    return [t.strip() for t in raw.split(",") if t.strip()]


class BlobStore(ABC):
    """Object storage operations plus the locator formats the mobile app persists."""

    def __init__(self, bucket_name: str, folders: Optional[List[str]] = None):
        self.bucket_name = bucket_name
        self.folders = folders if folders is not None else settings.storage_folders

    @abstractmethod
    async def list(self, prefix: str) -> List[str]:
        """Returns object names under prefix."""

    @abstractmethod
    async def copy(self, src: str, dst: str) -> None:
        ...

    @abstractmethod
    async def get_metadata(self, name: str) -> Dict[str, str]:
        """Custom metadata of an object; empty when it has none."""

    @abstractmethod
    async def set_metadata(self, name: str, metadata: Dict[str, str]) -> None:
        ...

    @abstractmethod
    async def delete(self, name: str) -> bool:
        """Deletes an object. Returns False if it did not exist."""

    @abstractmethod
    async def exists(self, name: str) -> bool:
        ...

    def download_url(self, name: str, token: Optional[str] = None) -> str:
        url = f"{FIREBASE_DOWNLOAD_HOST}/v0/b/{self.bucket_name}/o/{quote(name, safe='')}?alt=media"
        if token:
            url += f"&token={token}"
        return url

    def gs_uri(self, name: str) -> str:
        return f"gs://{self.bucket_name}/{name}"

    def path_from_reference(self, reference: str) -> Optional[str]:
        """
        Extracts the object name from a download URL, gs:// URI or raw path.
        Returns None for references pointing outside this bucket, and for raw
        paths outside the configured folders.
        """
        if not reference or not isinstance(reference, str):
            return None

        match = _DOWNLOAD_URL_PATTERN.search(reference)
        if match:
            bucket, encoded_path = match.groups()
            return unquote(encoded_path) if bucket == self.bucket_name else None

        match = _GS_URI_PATTERN.match(reference)
        if match:
            bucket, path = match.groups()
            return path if bucket == self.bucket_name else None

        if "://" in reference:
            return None
        # Raw paths are only trusted inside a user-data folder
        path = reference.lstrip("/")
        if any(path.startswith(f"{folder}/") for folder in self.folders):
            return path
        return None


class FirebaseBlobStore(BlobStore):
    """
    BlobStore over a google.cloud.storage Bucket (as returned by firebase_admin.storage.bucket()).
    The storage client is synchronous, so every call goes through sync_to_async.
    """

    def __init__(self, bucket):
        super().__init__(bucket.name)
        self.bucket = bucket

    async def list(self, prefix: str) -> List[str]:
        def _list():
            return [blob.name for blob in self.bucket.list_blobs(prefix=prefix)]
        return await sync_to_async(_list, thread_sensitive=False)()

    async def copy(self, src: str, dst: str) -> None:
        def _copy():
            self.bucket.copy_blob(self.bucket.blob(src), self.bucket, dst)
        await sync_to_async(_copy, thread_sensitive=False)()

    async def get_metadata(self, name: str) -> Dict[str, str]:
        def _get():
            blob = self.bucket.get_blob(name)
            if blob is None:
                return {}
            return dict(blob.metadata or {})
        return await sync_to_async(_get, thread_sensitive=False)()

    async def set_metadata(self, name: str, metadata: Dict[str, str]) -> None:
        def _set():
            blob = self.bucket.blob(name)
            blob.metadata = metadata
            blob.patch()
        await sync_to_async(_set, thread_sensitive=False)()

    async def delete(self, name: str) -> bool:
        def _delete():
            try:
                self.bucket.blob(name).delete()
                return True
            except NotFound:
                logger.debug(f"Storage object already gone: {name}")
                return False
        return await sync_to_async(_delete, thread_sensitive=False)()

    async def exists(self, name: str) -> bool:
        return await sync_to_async(self.bucket.blob(name).exists, thread_sensitive=False)()
