from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.api.dependencies import get_deletion_service, get_migration_service, get_token_claims
from app.schemas import (
    DeletedCounts,
    DeleteUserRequest,
    DeleteUserResponse,
    MigrateUserRequest,
    MigrateUserResponse,
    MigrationSummary,
)
from app.services.user_data import UserDeletionService, UserMigrationService
from common.errors import InvalidRequestError, PermissionDeniedError

logger = structlog.get_logger()

router = APIRouter(
    prefix="/users",
    tags=["users"]
)


def _failure_status(status: Optional[str]) -> int:
    # invalid input -> 400, store or service failure -> 500
    return 400 if status == "invalid" else 500


def _error(status_code: int, error: str, **extra: Any) -> JSONResponse:
    return JSONResponse({"ok": False, "error": error, **extra}, status_code=status_code)


@router.post("/setup")
async def setup_user(
    req: MigrateUserRequest,
    service: UserMigrationService = Depends(get_migration_service),
):
    """Moves guest data to the authenticated uid. With only newUserId, repairs a key/field mismatch."""
    logger.info("user_setup_requested", old_user_id=req.old_user_id or None, new_user_id=req.new_user_id or None)

    if not req.new_user_id:
        raise InvalidRequestError("Missing newUserId. Send JSON: { newUserId } or { oldUserId, newUserId }.")
    if req.old_user_id and req.old_user_id == req.new_user_id:
        raise InvalidRequestError("oldUserId and newUserId must be different when both provided.")

    result = await service.migrate(req.old_user_id, req.new_user_id)

    if not result.ok:
        logger.error("user_setup_failed", error=result.error, status=result.status)
        return _error(_failure_status(result.status), result.error or "Migration failed.")

    body = MigrateUserResponse(
        message="User data migrated successfully.",
        result=MigrationSummary(
            status=result.status,
            resolved_user_id=result.resolved_user_id,
            user_doc_migrated=result.user_doc_migrated,
            update_results=result.update_results,
            mirrored=result.mirrored,
            mirror_errors=result.mirror_errors,
        ),
    )
    return JSONResponse(body.model_dump(by_alias=True), status_code=200)


@router.post("/delete")
async def delete_user(
    req: DeleteUserRequest,
    claims: Optional[Dict[str, Any]] = Depends(get_token_claims),
    service: UserDeletionService = Depends(get_deletion_service),
):
    """Deletes the caller's account and all related data. Callers may only delete themselves."""
    if not req.user_id:
        raise InvalidRequestError("Missing userId. Send JSON: { userId }.")

    if claims is not None and claims.get("uid") != req.user_id:
        logger.error("user_delete_uid_mismatch", token_uid=claims.get("uid"), requested_user_id=req.user_id)
        raise PermissionDeniedError("You can only delete your own account. Token UID does not match requested userId.")

    logger.info("user_delete_requested", user_id=req.user_id)
    result = await service.delete(req.user_id)

    if not result.ok:
        logger.error("user_delete_failed", error=result.error, status=result.status)
        return _error(_failure_status(result.status), result.error or "Deletion failed.", deleted=result.deleted)

    body = DeleteUserResponse(
        message="User and all related data deleted successfully.",
        deleted=DeletedCounts(**result.deleted),
        auth_deleted=result.auth_deleted,
        profile_image_deleted=result.profile_image_deleted,
        errors=result.errors,
    )
    return JSONResponse(body.model_dump(by_alias=True), status_code=200)
