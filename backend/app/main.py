from fastapi import FastAPI, APIRouter, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import structlog

from app.api.middleware.logging_middleware import LoggingMiddleware
from app.routers import users
from common.errors import (
    AuthenticationError,
    HabitFlowError,
    InvalidRequestError,
    PermissionDeniedError,
)
from infrastructure.config import settings
from infrastructure.logging import configure_logging

configure_logging()
logger = structlog.get_logger()

app = FastAPI(title=f"{settings.PROJECT_NAME} API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(LoggingMiddleware)

# --- Error rendering: every failure is {ok: false, error} ---

_STATUS_BY_ERROR = {
    InvalidRequestError: 400,
    AuthenticationError: 401,
    PermissionDeniedError: 403,
}


@app.exception_handler(HabitFlowError)
async def habitflow_error_handler(request: Request, exc: HabitFlowError):
    status_code = next((code for cls, code in _STATUS_BY_ERROR.items() if isinstance(exc, cls)), 500)
    body = {"ok": False, "error": exc.message}
    if isinstance(exc, AuthenticationError) and exc.requires_reauth:
        body["requiresReauth"] = True
    logger.warning("request_rejected", code=exc.code, status_code=status_code, error=exc.message)
    return JSONResponse(body, status_code=status_code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request body") if errors else "Invalid request body"
    return JSONResponse({"ok": False, "error": f"Invalid request body: {message}"}, status_code=400)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"ok": False, "error": str(exc.detail)}, status_code=exc.status_code)


# --- Router Configuration ---
api_router = APIRouter()
api_router.include_router(users.router)

app.include_router(api_router, prefix=settings.API_V1_STR)


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/")
async def root():
    return {"message": f"{settings.PROJECT_NAME} API v1"}
