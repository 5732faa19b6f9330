import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi_utilities import repeat_every
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import (
    AuthenticatedUser,
    authorization_header,
    create_access_token,
    extract_bearer_token,
    require_session,
)
from config import (
    API_VERSION,
    CORS_ORIGINS,
    DATABASE_URL,
    DEBUG,
    EXPIRED_OTP_CLEANUP_INTERVAL_SECONDS,
    REDIS_URL,
)
from database import Database, utcnow
from errors import AuthenticationError, NotFoundError, ServiceError, ValidationError
from models import (
    ErrorResponse,
    LoginData,
    LoginResponse,
    MessageResponse,
    ProfileResponse,
    SendOTPData,
    SendOTPRequest,
    SendOTPResponse,
    UserProfile,
    UserSummary,
    VerifyOTPRequest,
)
from services.cache_service import build_otp_cache
from services.delivery_service import build_delivery
from services.logs_service import logger
from services.otp_service import OTPStore
from services.session_service import SessionStore
from services.user_service import UserResolver

IDENTIFIER_TYPES = ("email", "phone")
OTP_PURPOSE = "login"

# 500 messages per endpoint, keyed by handler name
FAILURE_MESSAGES = {
    "send_otp": "Failed to send OTP",
    "verify_otp": "Failed to verify OTP",
    "get_me": "Failed to get user info",
    "logout": "Failed to logout",
}


def normalize_identifier(identifier: str | None, identifier_type: str) -> str:
    if not identifier:
        return ""
    if identifier_type == "email":
        return identifier.lower().strip()
    return "".join(identifier.split())


def sweep_expired_state(app: FastAPI) -> None:
    try:
        otps_deleted = app.state.otp_store.purge_expired()
        sessions_deleted = app.state.sessions.sweep_expired()
    except SQLAlchemyError:
        logger.exception("Expired OTP/session cleanup failed")
        return
    logger.debug(
        f"Expired state cleanup removed {otps_deleted} OTPs and {sessions_deleted} sessions"
    )


def get_otp_store(request: Request) -> OTPStore:
    return request.app.state.otp_store


def get_sessions(request: Request) -> SessionStore:
    return request.app.state.sessions


def get_users(request: Request) -> UserResolver:
    return request.app.state.users


def error_response(status_code: int, message: str, **extra) -> JSONResponse:
    body = ErrorResponse(error=message).model_dump()
    body.update(extra)
    return JSONResponse(status_code=status_code, content=body)


def failure_message(request: Request) -> str:
    endpoint = request.scope.get("endpoint")
    return FAILURE_MESSAGES.get(getattr(endpoint, "__name__", ""), "Internal server error")


# Create router with /api/<version>/auth prefix
router = APIRouter(prefix=f"/api/{API_VERSION}/auth", tags=["Authentication"])


@router.post(
    "/send-otp",
    response_model=SendOTPResponse,
    summary="Send OTP",
    description="Send a one-time passcode to the given email address or phone number.",
    responses={
        200: {"description": "The OTP was sent"},
        400: {"model": ErrorResponse, "description": "Missing identifier or unsupported type"},
    },
)
async def send_otp(
    request: SendOTPRequest,
    otp_store: OTPStore = Depends(get_otp_store),
):
    identifier = normalize_identifier(request.identifier, request.type)
    if not identifier or not request.type:
        raise ValidationError("Identifier and type are required")

    if request.type not in IDENTIFIER_TYPES:
        raise ValidationError("Type must be email or phone")

    await otp_store.issue(identifier, OTP_PURPOSE, channel=request.type)

    logger.info(f"OTP issued for {request.type}={identifier}")
    return SendOTPResponse(
        message="OTP sent successfully",
        data=SendOTPData(identifier=identifier, expiresIn=otp_store.lifetime_minutes),
    )


@router.post(
    "/verify-otp",
    response_model=LoginResponse,
    summary="Verify OTP",
    description="Exchange a valid OTP for a bearer token, creating the user on first login.",
    responses={
        200: {"description": "The OTP is valid. Returns the user and a bearer token"},
        400: {"model": ErrorResponse, "description": "The request body is incomplete"},
        401: {"model": ErrorResponse, "description": "The OTP is invalid or expired"},
    },
)
async def verify_otp(
    request: VerifyOTPRequest,
    otp_store: OTPStore = Depends(get_otp_store),
    users: UserResolver = Depends(get_users),
    sessions: SessionStore = Depends(get_sessions),
):
    """Verify an OTP provided by the user."""
    identifier = normalize_identifier(request.identifier, request.type)
    otp = (request.otp or "").strip()
    if not identifier or not otp or not request.type:
        raise ValidationError("Identifier, OTP, and type are required")

    if request.type not in IDENTIFIER_TYPES:
        raise ValidationError("Type must be email or phone")

    # Wrong and expired codes are reported the same way
    if not await otp_store.verify(identifier, otp, OTP_PURPOSE):
        raise AuthenticationError("Invalid or expired OTP")

    user = await run_in_threadpool(users.resolve_or_create, identifier, request.type)
    token = create_access_token(user.id, user.email, user.phone)
    await run_in_threadpool(sessions.create, user.id, token)

    logger.info(f"OTP login succeeded for user_id={user.id}")
    return LoginResponse(
        message="Login successful",
        data=LoginData(
            user=UserSummary(id=user.id, name=user.name, email=user.email, phone=user.phone),
            token=token,
        ),
    )


@router.get(
    "/me",
    response_model=ProfileResponse,
    summary="Current user",
    description="Return the profile of the user owning the bearer token.",
    responses={
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        404: {"model": ErrorResponse, "description": "The user no longer exists"},
    },
)
async def get_me(
    current: AuthenticatedUser = Depends(require_session),
    users: UserResolver = Depends(get_users),
):
    user = await run_in_threadpool(users.get, current.id)
    if user is None:
        raise NotFoundError("User not found")

    return ProfileResponse(
        data=UserProfile(
            id=user.id,
            name=user.name,
            email=user.email,
            phone=user.phone,
            created_at=user.created_at,
        )
    )


@router.post(
    "/logout",
    response_model=MessageResponse,
    summary="Logout",
    description="Revoke the session of the presented bearer token. Other sessions stay live.",
    responses={
        400: {"model": ErrorResponse, "description": "No token in the Authorization header"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
    },
)
async def logout(
    current: AuthenticatedUser = Depends(require_session),
    sessions: SessionStore = Depends(get_sessions),
    authorization: str | None = Depends(authorization_header),
):
    token = extract_bearer_token(authorization)
    if token is None:
        raise ValidationError("No token provided")

    await run_in_threadpool(sessions.revoke, current.id, token)
    return MessageResponse(message="Logged out successfully")


def register_exception_handlers(app: FastAPI, debug: bool) -> None:
    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(f"{request.method} {request.url.path} failed with {exc.status_code}: {exc.message}")
        return error_response(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        logger.warning(f"Rejected malformed request body for {request.url.path}")
        return error_response(status.HTTP_400_BAD_REQUEST, "Invalid request body")

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        if exc.status_code == status.HTTP_404_NOT_FOUND:
            return error_response(exc.status_code, "Route not found", path=request.url.path)
        return error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(SQLAlchemyError)
    async def handle_database_error(request: Request, exc: SQLAlchemyError):
        logger.exception(f"Database failure during {request.method} {request.url.path}")
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, failure_message(request))

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.exception(f"Unhandled error during {request.method} {request.url.path}")
        message = str(exc) if debug else failure_message(request)
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, message)


def create_app(
    database: Database | None = None,
    otp_cache=None,
    delivery=None,
    clock=utcnow,
    debug: bool = DEBUG,
    run_cleanup: bool = True,
) -> FastAPI:
    if database is None:
        database = Database(DATABASE_URL)
    if otp_cache is None:
        otp_cache = build_otp_cache(REDIS_URL, clock)
    if delivery is None:
        delivery = build_delivery()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting up... Initializing database.")
        app.state.database.init_db()
        logger.info("Database initialized.")

        if run_cleanup:
            # cron job to clean up expired OTPs and sessions
            @repeat_every(seconds=EXPIRED_OTP_CLEANUP_INTERVAL_SECONDS)
            def clear_expired_state():
                sweep_expired_state(app)

            await clear_expired_state()  # Initial cleanup on startup
        yield
        await app.state.otp_cache.close()
        app.state.database.dispose()
        logger.info("Shut down cleanly.")

    app = FastAPI(
        title="Maapaap Auth API",
        description="OTP login and session management for the Maapaap measurements app",
        version="0.1.0",
        lifespan=lifespan,
        debug=False,
    )

    app.state.database = database
    app.state.otp_cache = otp_cache
    app.state.otp_store = OTPStore(database, otp_cache, delivery, clock=clock)
    app.state.sessions = SessionStore(database, clock=clock)
    app.state.users = UserResolver(database, clock=clock)
    app.state.started_at = time.monotonic()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = int((time.perf_counter() - start) * 1000)
        logger.info(f"{request.method} {request.url.path} {response.status_code} - {duration_ms}ms")
        return response

    @app.get("/health", tags=["Health"], summary="Health check")
    async def health(request: Request):
        try:
            request.app.state.database.ping()
        except SQLAlchemyError:
            logger.exception("Health check failed: database unreachable")
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "unhealthy", "error": "Database connection failed"},
            )
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": time.monotonic() - request.app.state.started_at,
        }

    register_exception_handlers(app, debug)
    app.include_router(router)
    return app


app = create_app()
