"""
Authentication endpoints: login, logout and the current session
"""
from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, Field

from ..auth.context import RequestContext
from ..auth.session import LoginMethod, SecureSession, SessionUser
from ..core.exceptions import AuthenticationError, ValidationError
from ..core.logging import get_logger
from ..core.validators import InputValidator
from .dependencies import Authorize, Services, get_services

logger = get_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["authentication"])

INVALID_CREDENTIALS = "Invalid email or password"


class LoginRequest(BaseModel):
    email: str = Field(min_length=1, max_length=254)
    password: str = Field(min_length=1, max_length=128)


def session_profile(session: SecureSession) -> dict:
    return {
        "id": session.user_id,
        "email": session.email,
        "name": session.name,
        "role": session.role,
        "role_id": session.role_id,
        "permissions": [p.value for p in session.permissions],
    }


@router.post("/login")
async def login(
    payload: LoginRequest,
    request: Request,
    response: Response,
    services: Services = Depends(get_services),
):
    """Check credentials and open a session bound to this client"""
    email = payload.email.strip().lower()
    if not InputValidator.is_valid_email(email):
        raise ValidationError("Invalid email format")

    user = await services.auth.authenticate(email, payload.password)
    if user is None:
        logger.info("Failed login attempt")
        raise AuthenticationError(INVALID_CREDENTIALS)

    role = services.roles.get_role(user.role_id)
    session, token = services.sessions.create_session(
        SessionUser(
            user_id=user.id,
            email=user.email,
            name=user.name,
            role=role.name if role else user.role_id,
            role_id=user.role_id,
            permissions=services.roles.get_role_permissions(user.role_id),
        ),
        RequestContext.from_request(request),
        login_method=LoginMethod.PASSWORD,
    )

    settings = services.settings
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        expires=session.expires_at,
        path="/",
        httponly=True,
        secure=True,
        samesite="strict",
    )
    services.csrf.add_token_to_response(response.headers, session.csrf_token)
    logger.info(f"User {user.id} logged in", extra={"user_id": user.id})

    return {
        "success": True,
        "user": session_profile(session),
        "csrf_token": session.csrf_token,
    }


@router.post("/logout")
async def logout(
    response: Response,
    session: SecureSession = Depends(Authorize()),
    services: Services = Depends(get_services),
):
    services.sessions.invalidate_session(session.session_id, "User logout")
    response.delete_cookie(
        services.settings.session_cookie_name,
        path="/",
        httponly=True,
        secure=True,
        samesite="strict",
    )
    return {"success": True, "message": "Logged out successfully"}


@router.get("/me")
async def current_user(session: SecureSession = Depends(Authorize(csrf=False))):
    """Return the caller's identity and session details"""
    return {
        "user": session_profile(session),
        "session_info": {
            "session_id": session.session_id,
            "created_at": session.created_at.isoformat(),
            "last_activity": session.last_activity.isoformat(),
            "expires_at": session.expires_at.isoformat(),
            "login_method": session.login_method.value,
            "ip_address": session.ip_address,
        },
        "csrf_token": session.csrf_token,
    }
