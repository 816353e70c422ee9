"""
api/routes/auth.py -- Authentication and identity management REST endpoints.

Routes (mounted under /api):
  GET    /auth/csrf              -- issue / echo the CSRF token (public)
  GET    /auth/session           -- who am I, without failing for anonymous callers
  POST   /auth/register          -- create a GROWER account; starts a session
  POST   /auth/login             -- password login; starts a session
  POST   /auth/logout            -- clear credential cookies; always 200
  POST   /auth/refresh           -- rotate the credential pair from the refresh cookie
  GET    /auth/me                -- current identity + plantings count (requires auth)
  PUT    /auth/profile           -- change name / email (requires auth)
  PUT    /auth/password          -- change password (requires auth)
  GET    /auth/users             -- list identities (ADMIN)
  PATCH  /auth/users/{id}        -- change an identity's role (ADMIN)
  DELETE /auth/users/{id}        -- soft-delete an identity (ADMIN)

Security:
  Every mutating route on this router runs csrf_protect first (router-level
  dependency), then the auth gate, then the handler.
  POST /login and POST /register are rate-limited per IP. @limiter.limit sits
  below @router.post so the endpoint FastAPI registers is the limited wrapper.
  Cache-Control: no-store on every response that carries a credential.
  Handlers are plain `def` -- bcrypt and SQLite block, so FastAPI runs them in
  its threadpool.
"""

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import limiter, login_limit, register_limit
from api.models import (
    ChangePasswordRequest,
    CsrfResponse,
    IdentityResponse,
    LoginRequest,
    MeIdentity,
    MeResponse,
    MessageResponse,
    ProfileResponse,
    RefreshResponse,
    RegisterRequest,
    RoleUpdate,
    SessionResponse,
    SessionStatusResponse,
    UpdateProfileRequest,
)
from auth.cookies import CookieKind
from auth.csrf import CSRF_HEADER, csrf_protect
from auth.dependencies import AuthContext, optional_auth, require_auth, require_role
from auth.errors import InvalidIdentityChange, NotFound
from auth.models import Role
from auth.session import SessionManager
from auth.store import IdentityStore

router = APIRouter(dependencies=[Depends(csrf_protect)])

require_admin = require_role(Role.ADMIN)


def _sessions(request: Request) -> SessionManager:
    return request.app.state.session_manager


def _no_store(response: Response) -> None:
    response.headers["Cache-Control"] = "no-store"


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/csrf", response_model=CsrfResponse)
async def csrf_token(request: Request, response: Response) -> CsrfResponse:
    """Return the CSRF token for this browsing session.

    CsrfCookieMiddleware has already issued a token (cookie + header) if the
    request arrived without one; this echoes the effective value in the body
    and header so script clients can capture it even when cookies are blocked.
    """
    token: str = request.state.csrf_token
    response.headers[CSRF_HEADER] = token
    _no_store(response)
    return CsrfResponse(csrf_token=token)


@router.get("/auth/session", response_model=SessionStatusResponse)
async def session_status(ctx: AuthContext | None = Depends(optional_auth)) -> SessionStatusResponse:
    """Report whether the caller holds a valid access credential. Never 401s."""
    if ctx is None:
        return SessionStatusResponse(authenticated=False)
    return SessionStatusResponse(authenticated=True, user_id=ctx.subject_id, role=ctx.role)


@router.post("/auth/register", response_model=SessionResponse, status_code=201)
@limiter.limit(register_limit)
def register(request: Request, response: Response, body: RegisterRequest) -> SessionResponse:
    """Create a GROWER account and start a session (cookies + body token)."""
    sessions = _sessions(request)
    result = sessions.register(response, body.email, body.password, body.name)
    _no_store(response)
    return SessionResponse(
        message="User registered successfully",
        user=IdentityResponse.from_identity(result.identity),
        access_token=result.access_token,
        expires_in=sessions.codec.access_ttl_seconds,
    )


@router.post("/auth/login", response_model=SessionResponse)
@limiter.limit(login_limit)
def login(request: Request, response: Response, body: LoginRequest) -> SessionResponse:
    """Authenticate with email and password.

    Unknown email and wrong password produce byte-identical 401 bodies.
    """
    sessions = _sessions(request)
    result = sessions.login(response, body.email, body.password)
    _no_store(response)
    return SessionResponse(
        message="Login successful",
        user=IdentityResponse.from_identity(result.identity),
        access_token=result.access_token,
        expires_in=sessions.codec.access_ttl_seconds,
    )


@router.post("/auth/logout", response_model=MessageResponse)
async def logout(request: Request, response: Response) -> MessageResponse:
    """Clear the access and refresh cookies. Idempotent."""
    _sessions(request).logout(response)
    return MessageResponse(message="Logout successful")


@router.post("/auth/refresh", response_model=RefreshResponse)
def refresh(request: Request, response: Response) -> RefreshResponse:
    """Exchange the refresh cookie for a new access + refresh pair."""
    sessions = _sessions(request)
    access_token = sessions.refresh(response, request.cookies.get(CookieKind.REFRESH.value))
    _no_store(response)
    return RefreshResponse(
        message="Token refreshed successfully",
        access_token=access_token,
        expires_in=sessions.codec.access_ttl_seconds,
    )


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, ctx: AuthContext = Depends(require_auth)) -> MeResponse:
    """Return the current identity, re-read from the store."""
    current = _sessions(request).current_identity(ctx.claims)
    base = IdentityResponse.from_identity(current.identity)
    return MeResponse(user=MeIdentity(**base.model_dump(), plantings_count=current.plantings_count))


@router.put("/auth/profile", response_model=ProfileResponse)
def update_profile(
    request: Request,
    response: Response,
    body: UpdateProfileRequest,
    ctx: AuthContext = Depends(require_auth),
) -> ProfileResponse:
    """Update name and/or email. An email change re-issues credentials."""
    result = _sessions(request).update_profile(response, ctx.claims, name=body.name, email=body.email)
    if result.access_token is not None:
        _no_store(response)
    return ProfileResponse(
        message="Profile updated successfully",
        user=IdentityResponse.from_identity(result.identity),
        access_token=result.access_token,
    )


@router.put("/auth/password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    ctx: AuthContext = Depends(require_auth),
) -> MessageResponse:
    """Change the password after verifying the current one."""
    _sessions(request).change_password(ctx.claims, body.current_password, body.new_password)
    return MessageResponse(message="Password updated successfully")


# ---------------------------------------------------------------------------
# Identity management (ADMIN only)
# ---------------------------------------------------------------------------


@router.get("/auth/users", response_model=list[IdentityResponse])
def list_users(request: Request, ctx: AuthContext = Depends(require_admin)) -> list[IdentityResponse]:
    """List all live identities. Admin only."""
    store: IdentityStore = _sessions(request).store
    return [IdentityResponse.from_identity(i) for i in store.list_all()]


@router.patch("/auth/users/{user_id}", response_model=IdentityResponse)
def update_user_role(
    request: Request,
    user_id: int,
    body: RoleUpdate,
    ctx: AuthContext = Depends(require_admin),
) -> IdentityResponse:
    """Change an identity's role. Admin only.

    The new role reaches the target's access credential on their next
    refresh (or login). Demoting the last ADMIN is refused.
    """
    store: IdentityStore = _sessions(request).store
    target = store.find_by_id(user_id)
    if target is None:
        raise NotFound()
    if target.role is Role.ADMIN and body.role is not Role.ADMIN and store.count_admins() <= 1:
        raise InvalidIdentityChange("Cannot demote the last admin.", code="LAST_ADMIN")
    updated = store.update(user_id, role=body.role)
    if updated is None:
        raise NotFound()
    return IdentityResponse.from_identity(updated)


@router.delete("/auth/users/{user_id}", status_code=204)
def delete_user(request: Request, user_id: int, ctx: AuthContext = Depends(require_admin)) -> None:
    """Soft-delete an identity. Admin only.

    Outstanding credentials for the target stop working at the next refresh
    or identity lookup; the signed access credential itself stays valid until
    it expires.
    """
    if user_id == ctx.subject_id:
        raise InvalidIdentityChange("You cannot delete your own account.", code="SELF_DELETION")
    store: IdentityStore = _sessions(request).store
    if not store.soft_delete(user_id):
        raise NotFound()
