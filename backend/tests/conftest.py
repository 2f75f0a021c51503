import pytest
from fastapi.testclient import TestClient

from app.api.dependencies import get_deletion_service, get_identity_provider, get_migration_service
from app.main import app
from app.services.user_data import UserDeletionService, UserMigrationService
from fakes import FakeIdentityProvider, InMemoryBlobStore, InMemoryDocumentStore

MIGRATION_COLLECTIONS = ["daily_tasks", "face-analysis", "meal-analysis", "reel_progress"]
DELETION_COLLECTIONS = ["daily_tasks", "face-analysis", "meal-analysis", "videos", "reel_progress", "reels"]
FOLDERS = ["meals", "selfies"]


@pytest.fixture
def document_store():
    return InMemoryDocumentStore()


@pytest.fixture
def blob_store():
    return InMemoryBlobStore()


@pytest.fixture
def identity_provider():
    return FakeIdentityProvider()


@pytest.fixture
def migration_service(document_store, blob_store):
    return UserMigrationService(documents=document_store, blobs=blob_store, collections=MIGRATION_COLLECTIONS)


@pytest.fixture
def deletion_service(document_store, blob_store, identity_provider):
    return UserDeletionService(
        documents=document_store,
        blobs=blob_store,
        identity_provider=identity_provider,
        collections=DELETION_COLLECTIONS,
        folders=FOLDERS,
    )


@pytest.fixture
def client(migration_service, deletion_service, identity_provider):
    app.dependency_overrides[get_migration_service] = lambda: migration_service
    app.dependency_overrides[get_deletion_service] = lambda: deletion_service
    app.dependency_overrides[get_identity_provider] = lambda: identity_provider

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()
