"""
Process-wide Firebase handles.

Services accept their stores as constructor arguments; these getters supply the
defaults used outside of tests. Nothing touches the network until first use.
"""
from functools import lru_cache

import firebase_admin
from firebase_admin import credentials, firestore_async, storage
from loguru import logger

from app.core.auth_provider import FirebaseIdentityProvider, IdentityProvider
from app.core.documents import DocumentStore, FirestoreDocumentStore
from app.core.storage import BlobStore, FirebaseBlobStore
from infrastructure.config import settings


@lru_cache(maxsize=1)
def get_firebase_app() -> firebase_admin.App:
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    options = {}
    if settings.FIREBASE_PROJECT_ID:
        options["projectId"] = settings.FIREBASE_PROJECT_ID
    if settings.FIREBASE_STORAGE_BUCKET:
        options["storageBucket"] = settings.FIREBASE_STORAGE_BUCKET

    if settings.GOOGLE_APPLICATION_CREDENTIALS:
        cred = credentials.Certificate(settings.GOOGLE_APPLICATION_CREDENTIALS)
    else:
        cred = credentials.ApplicationDefault()

    app = firebase_admin.initialize_app(cred, options or None)
    logger.info(f"Firebase app initialized (project={settings.FIREBASE_PROJECT_ID or 'default'})")
    return app


@lru_cache(maxsize=1)
def get_document_store() -> DocumentStore:
    return FirestoreDocumentStore(firestore_async.client(app=get_firebase_app()))


@lru_cache(maxsize=1)
def get_blob_store() -> BlobStore:
    return FirebaseBlobStore(storage.bucket(settings.FIREBASE_STORAGE_BUCKET, app=get_firebase_app()))


@lru_cache(maxsize=1)
def get_identity_provider() -> IdentityProvider:
    return FirebaseIdentityProvider(app=get_firebase_app())
