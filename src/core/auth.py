"""
Supabase JWT authentication.

The feed is always computed for the caller: the viewer id comes from the
verified token, never from the request body.

Usage:
    from core.auth import require_auth, AuthenticatedViewer

    @router.post("/api/feed/open")
    async def open_feed(viewer: AuthenticatedViewer = Depends(require_auth)):
        viewer_id = viewer.id
"""

from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config.settings import get_settings


security = HTTPBearer(
    scheme_name="Supabase JWT",
    description="JWT token from Supabase Auth.",
    auto_error=False,
)


@dataclass
class AuthenticatedViewer:
    """
    Viewer identity taken from a verified Supabase JWT.

    Attributes:
        id: User UUID ('sub' claim)
        email: Email address, if present in the token
        role: Postgres role (usually 'authenticated')
        session_id: Supabase auth session UUID
    """
    id: str
    email: Optional[str] = None
    role: str = "authenticated"
    session_id: Optional[str] = None


def verify_jwt(token: str) -> dict:
    """
    Verify and decode a Supabase JWT token.

    Raises:
        HTTPException: 401 if the token is invalid, expired, or malformed
    """
    settings = get_settings()

    try:
        return jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=["HS256"],
            audience="authenticated",
            options={
                "verify_exp": True,
                "verify_aud": True,
                "require": ["sub", "exp", "aud"],
            }
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )


def extract_viewer(payload: dict) -> AuthenticatedViewer:
    """Build an AuthenticatedViewer from a verified JWT payload."""
    return AuthenticatedViewer(
        id=payload["sub"],
        email=payload.get("email"),
        role=payload.get("role", "authenticated"),
        session_id=payload.get("session_id"),
    )


async def require_auth(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> AuthenticatedViewer:
    """
    FastAPI dependency that requires authentication.

    Raises 401 if no valid token is provided.
    """
    if not credentials or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = verify_jwt(credentials.credentials)
    return extract_viewer(payload)
