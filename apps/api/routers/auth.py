"""
Authentication router: token status, identity and profile echo.

Sign-in itself happens against the auth provider; this API only verifies
the bearer tokens it issues.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel

from routers.auth_scope import AuthContext, auth_scheme, get_auth_context
from services.session_token import decode_session_token

router = APIRouter()


class ProfileRequest(BaseModel):
    id: Optional[str] = None
    email: Optional[str] = None
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None


class CurrentUserResponse(BaseModel):
    user_id: str
    email: Optional[str] = None


@router.get("/status")
async def auth_status(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
):
    """Report whether the supplied bearer token is a valid session."""
    if not credentials:
        return {"authenticated": False, "user": None}
    try:
        payload = decode_session_token(credentials.credentials)
    except ValueError as exc:
        return {"authenticated": False, "user": None, "reason": str(exc)}
    return {
        "authenticated": True,
        "user": {"id": str(payload["sub"]), "email": payload.get("email")},
        "expires_at": payload.get("exp"),
    }


@router.get("/me", response_model=CurrentUserResponse)
async def get_current_user(auth: AuthContext = Depends(get_auth_context)):
    """Identity decoded from the access token."""
    return CurrentUserResponse(user_id=auth.user_id, email=auth.email)


@router.post("/profile")
async def save_profile(request: ProfileRequest):
    if not request.id or not request.email:
        raise HTTPException(
            status_code=400,
            detail={"error": "INVALID_PROFILE", "message": "id and email are required"},
        )
    return {
        "success": True,
        "profile": {
            "id": request.id,
            "email": request.email,
            "full_name": request.full_name or request.email.split("@", 1)[0],
            "avatar_url": request.avatar_url,
        },
    }


@router.post("/logout")
async def logout():
    """Tokens are revoked by the auth provider; the client drops its copy."""
    return {"success": True, "message": "Logged out"}
