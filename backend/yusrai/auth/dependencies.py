"""
Bearer-token authentication for the automation API.

Tokens are Supabase access tokens, verified against the project's JWKS.
The verified `sub` claim is the user id every store query filters on.
"""

import os
import logging
from typing import Optional
from functools import lru_cache
from fastapi import HTTPException, status, Header
from pydantic import BaseModel
import jwt
from jwt import PyJWKClient

logger = logging.getLogger(__name__)

SIGNING_ALGORITHMS = ["RS256", "ES256"]


class User(BaseModel):
    """Authenticated caller."""
    sub: str  # Supabase user id
    email: Optional[str] = None
    role: Optional[str] = None


def _supabase_url() -> str:
    supabase_url = os.getenv("SUPABASE_URL", "").rstrip("/")
    if not supabase_url:
        raise ValueError("SUPABASE_URL environment variable is required")
    return supabase_url


@lru_cache(maxsize=1)
def get_jwks_client() -> PyJWKClient:
    """JWKS client for https://<project-ref>.supabase.co/auth/v1/.well-known/jwks.json"""
    jwks_url = f"{_supabase_url()}/auth/v1/.well-known/jwks.json"
    logger.info("Using JWKS endpoint %s", jwks_url)
    return PyJWKClient(jwks_url)


def get_jwt_issuer() -> str:
    return os.getenv("SUPABASE_JWT_ISSUER") or f"{_supabase_url()}/auth/v1"


def get_jwt_audience() -> str:
    return os.getenv("SUPABASE_JWT_AUDIENCE", "authenticated")


def verify_jwt(token: str) -> User:
    """
    Verify a Supabase access token.

    Raises:
        HTTPException: 401 for expired, malformed or unverifiable tokens
    """
    try:
        signing_key = get_jwks_client().get_signing_key_from_jwt(token)
        payload = jwt.decode(
            token,
            signing_key.key,
            algorithms=SIGNING_ALGORITHMS,
            audience=get_jwt_audience(),
            issuer=get_jwt_issuer(),
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired"
        )
    except jwt.InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}"
        )
    except Exception as e:
        # JWKS fetch errors and missing configuration
        logger.error("Token verification failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Token verification failed: {str(e)}"
        )

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token missing 'sub' claim"
        )

    return User(
        sub=user_id,
        email=payload.get("email"),
        role=payload.get("role", "authenticated"),
    )


async def get_current_user(authorization: str = Header(..., description="Bearer token")) -> User:
    """
    FastAPI dependency: the verified caller from the Authorization header.

    Usage:
        @router.get("/{automation_id}/readiness")
        async def readiness(automation_id: str, user: User = Depends(get_current_user)):
            ...
    """
    if not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header must start with 'Bearer '"
        )

    token = authorization[7:].strip()
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token is required"
        )

    return verify_jwt(token)
