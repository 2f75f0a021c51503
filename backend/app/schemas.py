from pydantic import BaseModel, AliasChoices, ConfigDict, Field
from typing import Optional, List, Dict, Any
from pydantic import field_validator


def _clean_id(v: Any) -> str:
    if v is None:
        return ""
    return str(v).strip()


class MigrateUserRequest(BaseModel):
    # The mobile clients send camelCase; older builds used snake_case
    old_user_id: str = Field(default="", validation_alias=AliasChoices("oldUserId", "old_user_id"))
    new_user_id: str = Field(default="", validation_alias=AliasChoices("newUserId", "new_user_id"))

    @field_validator("old_user_id", "new_user_id", mode="before")
    @classmethod
    def strip_ids(cls, v):
        return _clean_id(v)


class DeleteUserRequest(BaseModel):
    user_id: str = Field(default="", validation_alias=AliasChoices("userId", "user_id"))

    @field_validator("user_id", mode="before")
    @classmethod
    def strip_id(cls, v):
        return _clean_id(v)


class MigrationSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: Optional[str] = None
    resolved_user_id: Optional[str] = Field(default=None, serialization_alias="resolvedUserId")
    user_doc_migrated: bool = Field(default=False, serialization_alias="userDocMigrated")
    update_results: Dict[str, int] = Field(default_factory=dict, serialization_alias="updateResults")
    mirrored: int = 0
    mirror_errors: List[str] = Field(default_factory=list, serialization_alias="mirrorErrors")


class MigrateUserResponse(BaseModel):
    ok: bool = True
    message: str
    result: Optional[MigrationSummary] = None


class DeletedCounts(BaseModel):
    users: int = 0
    collections: Dict[str, int] = Field(default_factory=dict)
    storage: int = 0


class DeleteUserResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    message: str
    deleted: DeletedCounts
    auth_deleted: bool = Field(default=False, serialization_alias="authDeleted")
    profile_image_deleted: bool = Field(default=False, serialization_alias="profileImageDeleted")
    errors: List[str] = Field(default_factory=list)
