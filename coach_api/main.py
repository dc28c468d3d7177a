from fastapi import FastAPI, Depends, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyCookie
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException
from typing import Optional, List
from datetime import datetime, timedelta
import logging

from coach_api.db.engine import Base, engine, SessionLocal
from coach_api.models.user_models import User
from coach_api.config import (
    ADMIN_EMAIL,
    ADMIN_PASSWORD,
    AUTH_COOKIE_NAME,
    CORS_ALLOW_ORIGINS,
    ENV,
    IS_PRODUCTION,
    JWT_ALGORITHM,
    JWT_SECRET_IS_FALLBACK,
    JWT_SECRET_KEY,
    LOG_LEVEL,
    PUBLIC_BASE_URL,
    SESSION_TOKEN_EXPIRE_DAYS,
)
from coach_api.services.auth_utils import SessionIdentity, SessionTokenService
from coach_api.services.accounts import (
    AccountDeactivated,
    InvalidCredentials,
    authenticate,
    ensure_bootstrap_admin,
    get_user_by_id,
    list_users,
    set_user_active,
)
from coach_api.services.invites import (
    EmailAlreadyRegistered,
    InviteRejected,
    generate_invite_code,
    invite_url,
    signup_with_invite,
)
from coach_api.services.feedback_service import (
    FeedbackValidationError,
    get_foundation,
    save_foundation,
    submit_feedback,
)
from coach_api.services.llm_client import (
    CompletionClient,
    CompletionError,
    CompletionTimeout,
    OpenAICompletionClient,
)
from coach_api.services.prompt_composer import ToolType

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("coach_api.main")

app = FastAPI(title="Coach API", version="1.0.0")

# Process-wide, read-only after import; handlers reach them through dependencies
app.state.token_service = SessionTokenService(
    secret_key=JWT_SECRET_KEY,
    algorithm=JWT_ALGORITHM,
    expires_in=timedelta(days=SESSION_TOKEN_EXPIRE_DAYS),
)
app.state.completion_client = OpenAICompletionClient()

session_cookie = APIKeyCookie(name=AUTH_COOKIE_NAME, auto_error=False)

#  CORS setup (cookies need credentials)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- DB Session Dependency ---
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_token_service(request: Request) -> SessionTokenService:
    return request.app.state.token_service


def get_completion_client(request: Request) -> CompletionClient:
    return request.app.state.completion_client


# --- Create tables on startup ---
@app.on_event("startup")
def on_startup():
    logger.info("Coach API starting [%s]", ENV)

    if JWT_SECRET_IS_FALLBACK:
        if IS_PRODUCTION:
            logger.error(
                "JWT_SECRET_KEY is not set: sessions are signed with the public "
                "development secret. Configure JWT_SECRET_KEY before serving users."
            )
        else:
            logger.warning("JWT_SECRET_KEY not set, using the insecure development secret")

    Base.metadata.create_all(bind=engine)

    if ADMIN_EMAIL and ADMIN_PASSWORD:
        db = SessionLocal()
        try:
            ensure_bootstrap_admin(db, ADMIN_EMAIL, ADMIN_PASSWORD)
        finally:
            db.close()


# --- Error boundary: every error body is {"error": "..."} ---

@app.exception_handler(StarletteHTTPException)
def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.info("Rejected request on %s: %s", request.url.path, exc.errors())
    return JSONResponse(status_code=400, content={"error": "Invalid request"})


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s: %s", request.url.path, exc, exc_info=True)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# --- Schemas (Pydantic models) ---

class CamelModel(BaseModel):
    class Config:
        populate_by_name = True
        from_attributes = True


class SignupRequest(CamelModel):
    email: Optional[str] = None
    password: Optional[str] = None
    invite_code: Optional[str] = Field(None, alias="inviteCode")


class LoginRequest(CamelModel):
    email: Optional[str] = None
    password: Optional[str] = None


class UserOut(CamelModel):
    id: int
    email: str
    is_admin: bool = Field(alias="isAdmin")


class UserEnvelope(BaseModel):
    user: UserOut


class AdminUserOut(CamelModel):
    id: int
    email: str
    is_active: bool = Field(alias="isActive")
    is_admin: bool = Field(alias="isAdmin")
    created_at: Optional[datetime] = Field(None, alias="createdAt")


class AdminUserList(BaseModel):
    users: List[AdminUserOut]


class InviteOut(CamelModel):
    invite_code: str = Field(alias="inviteCode")
    invite_url: str = Field(alias="inviteUrl")


class MessageOut(BaseModel):
    message: str


class FeedbackIn(CamelModel):
    content: Optional[str] = None
    tool_type: Optional[str] = Field(None, alias="toolType")
    voice_guide: Optional[str] = Field(None, alias="voiceGuide")
    week_guide: Optional[str] = Field(None, alias="weekGuide")


class FeedbackOut(BaseModel):
    feedback: str


class FoundationIn(CamelModel):
    voice_guide: Optional[str] = Field(None, alias="voiceGuide")
    target_audience: Optional[str] = Field(None, alias="targetAudience")
    audience_pain_points: Optional[str] = Field(None, alias="audiencePainPoints")
    unique_positioning: Optional[str] = Field(None, alias="uniquePositioning")
    audience_observations: Optional[str] = Field(None, alias="audienceObservations")
    offer_description: Optional[str] = Field(None, alias="offerDescription")


class FoundationOut(FoundationIn):
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")


class FoundationEnvelope(BaseModel):
    foundation: Optional[FoundationOut] = None


class ToolsOut(BaseModel):
    tools: List[str]


# ----- Auth helpers (dependencies) -----


def get_current_identity(
    token: Optional[str] = Depends(session_cookie),
    token_service: SessionTokenService = Depends(get_token_service),
) -> SessionIdentity:
    """
    Stage 1: the session cookie must carry a valid token.
    Stateless, the database is not consulted.
    """
    if not token:
        raise HTTPException(status_code=401, detail="Authentication required")

    identity = token_service.verify(token)
    if identity is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    return identity


def get_active_user(
    identity: SessionIdentity = Depends(get_current_identity),
    db: Session = Depends(get_db),
) -> User:
    """
    Loads the caller's row and refuses deactivated accounts, so a
    deactivated member or admin holding an unexpired token is locked out.
    """
    user = get_user_by_id(db, identity.user_id)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account deactivated")

    return user


def require_admin(
    identity: SessionIdentity = Depends(get_current_identity),
    current_user: User = Depends(get_active_user),
) -> SessionIdentity:
    """
    Stage 2: the account must still be active and the admin flag in the
    token must be set. The flag is the snapshot taken at login.
    """
    if not identity.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return identity


def _start_session(response: Response, token_service: SessionTokenService, user: User) -> None:
    token = token_service.issue(
        SessionIdentity(user_id=user.id, email=user.email, is_admin=user.is_admin)
    )
    response.set_cookie(
        key=AUTH_COOKIE_NAME,
        value=token,
        httponly=True,
        secure=IS_PRODUCTION,
        samesite="lax",
        max_age=int(token_service.expires_in.total_seconds()),
    )


# --- Endpoints ---

@app.get("/health")
def health():
    return JSONResponse({"status": "ok"})


@app.get("/api/tools", response_model=ToolsOut)
def list_tools():
    return ToolsOut(tools=[tool.value for tool in ToolType])


# ----- Auth endpoints -----

@app.post("/api/auth/signup", response_model=UserEnvelope)
def signup(
    payload: SignupRequest,
    response: Response,
    db: Session = Depends(get_db),
    token_service: SessionTokenService = Depends(get_token_service),
):
    """
    Redeems an invite code and creates a member account, then logs it in.
    """
    if not payload.email or not payload.password or not payload.invite_code:
        raise HTTPException(status_code=400, detail="Email, password, and invite code required")

    try:
        user = signup_with_invite(db, payload.email, payload.password, payload.invite_code)
    except (InviteRejected, EmailAlreadyRegistered) as exc:
        raise HTTPException(status_code=400, detail=exc.message)
    except SQLAlchemyError:
        logger.exception("Signup failed for %s", payload.email)
        raise HTTPException(status_code=500, detail="Failed to create account")

    _start_session(response, token_service, user)
    return UserEnvelope(user=UserOut.model_validate(user))


@app.post("/api/auth/login", response_model=UserEnvelope)
def login(
    payload: LoginRequest,
    response: Response,
    db: Session = Depends(get_db),
    token_service: SessionTokenService = Depends(get_token_service),
):
    if not payload.email or not payload.password:
        raise HTTPException(status_code=400, detail="Email and password required")

    try:
        user = authenticate(db, payload.email, payload.password)
    except InvalidCredentials as exc:
        logger.info("Failed login for %s", payload.email)
        raise HTTPException(status_code=401, detail=exc.message)
    except AccountDeactivated as exc:
        logger.info("Login refused for deactivated account %s", payload.email)
        raise HTTPException(status_code=403, detail=exc.message)

    _start_session(response, token_service, user)
    return UserEnvelope(user=UserOut.model_validate(user))


@app.post("/api/auth/logout", response_model=MessageOut)
def logout(response: Response):
    """
    Only clears the cookie. The token itself stays valid until it expires.
    """
    response.delete_cookie(
        key=AUTH_COOKIE_NAME,
        httponly=True,
        secure=IS_PRODUCTION,
        samesite="lax",
    )
    return MessageOut(message="Logged out successfully")


@app.get("/api/auth/me", response_model=UserEnvelope)
def me(current_user: User = Depends(get_active_user)):
    return UserEnvelope(user=UserOut.model_validate(current_user))


# ----- Admin endpoints -----

@app.post("/api/auth/admin/invite", response_model=InviteOut)
def create_invite(
    request: Request,
    db: Session = Depends(get_db),
    admin: SessionIdentity = Depends(require_admin),
):
    try:
        invite = generate_invite_code(db, created_by=admin.user_id)
    except SQLAlchemyError:
        logger.exception("Error generating invite")
        raise HTTPException(status_code=500, detail="Failed to generate invite code")

    base_url = PUBLIC_BASE_URL or str(request.base_url)
    return InviteOut(invite_code=invite.code, invite_url=invite_url(base_url, invite.code))


@app.get("/api/auth/admin/users", response_model=AdminUserList)
def admin_list_users(
    db: Session = Depends(get_db),
    admin: SessionIdentity = Depends(require_admin),
):
    users = list_users(db)
    return AdminUserList(users=[AdminUserOut.model_validate(u) for u in users])


def _set_active(db: Session, user_id: int, is_active: bool, message: str) -> MessageOut:
    user = set_user_active(db, user_id, is_active)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return MessageOut(message=message)


@app.post("/api/auth/admin/users/{user_id}/deactivate", response_model=MessageOut)
def deactivate_user(
    user_id: int,
    db: Session = Depends(get_db),
    admin: SessionIdentity = Depends(require_admin),
):
    return _set_active(db, user_id, False, "User deactivated")


@app.post("/api/auth/admin/users/{user_id}/activate", response_model=MessageOut)
def activate_user(
    user_id: int,
    db: Session = Depends(get_db),
    admin: SessionIdentity = Depends(require_admin),
):
    return _set_active(db, user_id, True, "User activated")


# ----- Feedback & foundation endpoints -----

@app.post("/api/feedback", response_model=FeedbackOut)
def create_feedback(
    payload: FeedbackIn,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_active_user),
    completion_client: CompletionClient = Depends(get_completion_client),
):
    """
    Runs the submitted content through the selected coaching tool.

    The exchange is stored before responding; if storing fails the request
    fails with 500 and the generated feedback is dropped.
    """
    try:
        feedback = submit_feedback(
            db,
            completion_client,
            user_id=current_user.id,
            content=payload.content,
            tool_type=payload.tool_type,
            voice_guide=payload.voice_guide,
            week_guide=payload.week_guide,
        )
    except FeedbackValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.message)
    except CompletionTimeout:
        raise HTTPException(
            status_code=500,
            detail="Feedback generation timed out, please try again",
        )
    except (CompletionError, RuntimeError, SQLAlchemyError):
        logger.exception("Error generating feedback for user %s", current_user.id)
        raise HTTPException(status_code=500, detail="Failed to generate feedback")

    return FeedbackOut(feedback=feedback)


@app.post("/api/foundation", response_model=MessageOut)
def upsert_foundation(
    payload: FoundationIn,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_active_user),
):
    try:
        save_foundation(db, current_user.id, payload.model_dump(exclude_unset=True))
    except SQLAlchemyError:
        logger.exception("Error saving foundation for user %s", current_user.id)
        raise HTTPException(status_code=500, detail="Failed to save foundation")

    return MessageOut(message="Foundation saved successfully")


@app.get("/api/foundation", response_model=FoundationEnvelope)
def read_foundation(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_active_user),
):
    foundation = get_foundation(db, current_user.id)
    if foundation is None:
        return FoundationEnvelope(foundation=None)
    return FoundationEnvelope(foundation=FoundationOut.model_validate(foundation))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "coach_api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=not IS_PRODUCTION,
    )
