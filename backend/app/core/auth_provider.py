from abc import ABC, abstractmethod
from typing import Any, Dict

from asgiref.sync import sync_to_async
from firebase_admin import auth
from firebase_admin.exceptions import FirebaseError
from loguru import logger

from common.errors import AuthenticationError, ServiceError


class IdentityProvider(ABC):
    @abstractmethod
    async def delete_account(self, uid: str) -> bool:
        """Deletes the account. Returns False when no such account exists."""

    @abstractmethod
    async def verify_token(self, token: str) -> Dict[str, Any]:
        """Returns the decoded token claims or raises AuthenticationError."""


class FirebaseIdentityProvider(IdentityProvider):
    def __init__(self, app=None):
        self.app = app

    async def delete_account(self, uid: str) -> bool:
        try:
            await sync_to_async(auth.delete_user, thread_sensitive=False)(uid, app=self.app)
        except auth.UserNotFoundError:
            logger.warning(f"Auth account {uid} not found (guest user or already deleted)")
            return False
        except FirebaseError as e:
            raise ServiceError(f"Firebase Auth rejected deletion of {uid}: {e}", service_name="firebase_auth") from e
        return True

    async def verify_token(self, token: str) -> Dict[str, Any]:
        try:
            return await sync_to_async(auth.verify_id_token, thread_sensitive=False)(token, app=self.app)
        except auth.ExpiredIdTokenError as e:
            raise AuthenticationError("Token expired. Please reauthenticate and try again.") from e
        except (auth.InvalidIdTokenError, ValueError) as e:
            raise AuthenticationError("Invalid authentication token. Please reauthenticate and try again.") from e
        except FirebaseError as e:
            # Key fetch or backend failure, not the caller's fault
            raise ServiceError(f"Token verification unavailable: {e}", service_name="firebase_auth") from e
