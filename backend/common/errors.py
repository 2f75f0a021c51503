from typing import Optional, Any, Dict

class HabitFlowError(Exception):
    """Base exception class for the HabitFlow backend."""
    def __init__(self, message: str, code: str = "internal_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

class InvalidRequestError(HabitFlowError):
    """Raised when caller input is missing or inconsistent. No store access has happened."""
    def __init__(self, message: str, **kwargs):
        super().__init__(message, code="invalid_request", details=kwargs)

class ServiceError(HabitFlowError):
    """Raised when a managed service fails (e.g. Firestore, Storage, Auth)."""
    def __init__(self, message: str, service_name: str, **kwargs):
        super().__init__(message, code=f"{service_name}_error", details=kwargs)

class AuthenticationError(HabitFlowError):
    """Raised when the caller's ID token is missing, invalid or expired."""
    def __init__(self, message: str, requires_reauth: bool = True):
        super().__init__(message, code="auth_error", details={"requiresReauth": requires_reauth})
        self.requires_reauth = requires_reauth

class PermissionDeniedError(HabitFlowError):
    """Raised when an authenticated caller acts on another user's data."""
    def __init__(self, message: str):
        super().__init__(message, code="forbidden")
