from typing import List, Optional
from pydantic import Field, field_validator, ValidationInfo
from pydantic_settings import BaseSettings


def _split_csv(raw: str) -> List[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings(BaseSettings):
    PROJECT_NAME: str = "HabitFlow"
    # Env
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    API_V1_STR: str = "/api/v1"
    # Comma-separated list of origins.
    ALLOWED_ORIGINS: str = "http://localhost:3000"

    # Firebase
    FIREBASE_PROJECT_ID: Optional[str] = None
    FIREBASE_STORAGE_BUCKET: Optional[str] = Field(default=None, validate_default=True)
    GOOGLE_APPLICATION_CREDENTIALS: Optional[str] = None

    @field_validator("FIREBASE_STORAGE_BUCKET", mode="before")
    @classmethod
    def validate_storage_bucket(cls, v: Optional[str], info: ValidationInfo) -> Optional[str]:
        if v:
            return v

        env = info.data.get("ENVIRONMENT", "development")
        if env == "production":
            raise ValueError("FIREBASE_STORAGE_BUCKET must be set in production environment!")

        # Dev/emulator: fall back to the default bucket of the firebase app
        return None

    # Firestore layout
    USERS_COLLECTION: str = "users"
    USERS_ID_FIELD: str = "id"
    OWNER_FIELD: str = "userId"
    PROFILE_IMAGE_FIELD: str = "imageForAiUrl"
    MIGRATION_COLLECTIONS: str = "daily_tasks,face-analysis,meal-analysis,reel_progress"
    DELETION_COLLECTIONS: str = "daily_tasks,face-analysis,meal-analysis,videos,reel_progress,reels"

    # Storage layout
    STORAGE_FOLDERS: str = "meals,selfies"

    # Firestore rejects commits with more than 500 writes
    FIRESTORE_BATCH_LIMIT: int = 500
    STORE_RETRY_ATTEMPTS: int = 3

    # Behaviour flags
    DELETE_AUTH_ACCOUNT: bool = True
    DELETE_REQUIRES_AUTH: bool = True
    MIGRATION_DEBUG_SNAPSHOTS: bool = False

    @property
    def migration_collections(self) -> List[str]:
        return _split_csv(self.MIGRATION_COLLECTIONS)

    @property
    def deletion_collections(self) -> List[str]:
        return _split_csv(self.DELETION_COLLECTIONS)

    @property
    def storage_folders(self) -> List[str]:
        return _split_csv(self.STORAGE_FOLDERS)

    @property
    def allowed_origins(self) -> List[str]:
        return _split_csv(self.ALLOWED_ORIGINS)

    class Config:
        case_sensitive = True
        env_file = ".env"

settings = Settings()
