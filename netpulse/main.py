import hmac
import logging
import secrets
from urllib.parse import urlencode, urlsplit

from fastapi import FastAPI, Depends, Request, HTTPException, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from . import crud, schemas, database
from .config import get_settings
from .oauth import GoogleOAuthClient, OAuthError
from .sessions import SESSION_KEY, SessionManager

# Configure logging so container logs include informative startup messages
logging.basicConfig(level=logging.INFO)

# Ensure the database schema is up to date before serving requests.
database.migrate()

settings = get_settings()

app = FastAPI(title="NetPulse API")

app.add_middleware(
    SessionMiddleware,
    secret_key=settings.session_secret,
    max_age=settings.session_max_age,
    same_site=settings.session_same_site,
    https_only=settings.session_cookie_secure,
)

# Only the configured client may call the API with the session cookie.
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.cors_origin],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type"],
)

logger = logging.getLogger("uvicorn.error")

UNAUTHORIZED = "Unauthorized"


@app.on_event("startup")
def purge_expired_sessions():
    db = database.SessionLocal()
    try:
        purged = get_session_manager().purge_expired(db)
        if purged:
            logger.info("Removed %d expired login sessions", purged)
    finally:
        db.close()
    logger.info("NetPulse API accepting requests from %s", settings.cors_origin)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        {"error": exc.detail},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        # Drop the leading "body"/"query" element of the location.
        field = ".".join(str(part) for part in err.get("loc", ())[1:]) or "body"
        problems.append(f"{field}: {err.get('msg')}")
    return JSONResponse(
        {"error": "; ".join(problems) or "Invalid request"},
        status_code=status.HTTP_400_BAD_REQUEST,
    )


@app.exception_handler(crud.StoreError)
async def store_exception_handler(request: Request, exc: crud.StoreError):
    return JSONResponse(
        {"error": exc.message}, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Database error while handling %s", request.url.path, exc_info=exc)
    return JSONResponse(
        {"error": "Database error"}, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
    )


def get_db():
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_manager() -> SessionManager:
    return SessionManager(max_age=settings.session_max_age)


def get_oauth_client() -> GoogleOAuthClient:
    return GoogleOAuthClient(settings)


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
    manager: SessionManager = Depends(get_session_manager),
) -> schemas.UserProfile | None:
    sid = request.session.get(SESSION_KEY)
    if not sid:
        return None
    user = manager.get(db, sid)
    if user is None:
        # The server-side session expired or was revoked.
        request.session.pop(SESSION_KEY, None)
    return user


def require_user(
    user: schemas.UserProfile | None = Depends(get_current_user),
) -> schemas.UserProfile:
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=UNAUTHORIZED)
    return user


def resolve_owner(
    claimed: str | None, user: schemas.UserProfile | None
) -> str | None:
    """Return the identity a submitted result is stored under.

    Without a session the result is anonymous.  A client may pick which of
    its own verified addresses to file the result under, but an address
    that does not belong to the session is rejected rather than trusted.
    """

    if claimed is None:
        return user.primary_email if user else None
    if user is None or claimed not in user.emails:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=UNAUTHORIZED)
    return claimed


def _with_query(url: str, params: dict) -> str:
    params = {k: v for k, v in params.items() if v is not None}
    if not params:
        return url
    sep = "&" if urlsplit(url).query else "?"
    return f"{url}{sep}{urlencode(params)}"


def _login_failed(reason: str) -> RedirectResponse:
    logger.warning("Login failed: %s", reason)
    return RedirectResponse(settings.login_failure_url, status_code=status.HTTP_302_FOUND)


@app.get("/", response_class=PlainTextResponse)
def root():
    """Liveness check."""
    return "NetPulse API is running ✅"


@app.post(
    "/api/results",
    response_model=schemas.ResultCreated,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": schemas.ErrorResponse}, 401: {"model": schemas.ErrorResponse}},
)
def create_result(
    result: schemas.TestResultCreate,
    db: Session = Depends(get_db),
    user: schemas.UserProfile | None = Depends(get_current_user),
):
    owner = resolve_owner(result.email, user)
    row = crud.add_result(db, result, owner)
    return {"success": True, "id": row.id}


@app.get(
    "/api/results",
    response_model=list[schemas.TestResult],
    responses={401: {"model": schemas.ErrorResponse}},
)
def read_results(
    db: Session = Depends(get_db),
    user: schemas.UserProfile = Depends(require_user),
):
    """Return the caller's 100 most recent results, newest first.

    The identity comes from the login session only; ``email`` query
    parameters and ``x-user-email`` headers are not consulted.
    """

    return crud.recent_results(db, user.emails)


@app.get("/auth/google")
def login(request: Request, oauth: GoogleOAuthClient = Depends(get_oauth_client)):
    state = secrets.token_urlsafe(24)
    request.session["oauth_state"] = state
    return RedirectResponse(oauth.authorize_url(state), status_code=status.HTTP_302_FOUND)


@app.get("/auth/google/callback")
def login_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    db: Session = Depends(get_db),
    manager: SessionManager = Depends(get_session_manager),
    oauth: GoogleOAuthClient = Depends(get_oauth_client),
):
    expected = request.session.pop("oauth_state", None)
    if error:
        return _login_failed(f"provider returned {error!r}")
    if not code:
        return _login_failed("callback without code")
    if not state or not expected or not hmac.compare_digest(state, expected):
        return _login_failed("state mismatch")

    try:
        profile = oauth.login(code)
    except OAuthError as exc:
        return _login_failed(str(exc))

    # Never reuse an id issued before authentication.
    manager.destroy(db, request.session.get(SESSION_KEY))
    request.session.clear()
    request.session[SESSION_KEY] = manager.create(db, profile)
    logger.info("User %s logged in", profile.id)

    target = settings.client_url
    if settings.redirect_with_profile:
        target = _with_query(
            target,
            {
                "name": profile.display_name,
                "email": profile.primary_email,
                "photo": profile.photos[0] if profile.photos else None,
            },
        )
    return RedirectResponse(target, status_code=status.HTTP_302_FOUND)


@app.get("/auth/logout")
def logout(
    request: Request,
    db: Session = Depends(get_db),
    manager: SessionManager = Depends(get_session_manager),
):
    if manager.destroy(db, request.session.get(SESSION_KEY)):
        logger.info("Session closed")
    request.session.clear()
    return RedirectResponse(settings.client_url, status_code=status.HTTP_302_FOUND)


@app.get("/auth/user", response_model=schemas.UserResponse)
def current_user(user: schemas.UserProfile | None = Depends(get_current_user)):
    if user is None:
        return JSONResponse({"user": None}, status_code=status.HTTP_401_UNAUTHORIZED)
    return {"user": user}
