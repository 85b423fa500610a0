"""
Invoice AI — Authentication
Supabase session tokens arrive as bearer JWTs. With SUPABASE_JWT_SECRET configured
they are verified locally (HS256, audience "authenticated"); otherwise the token is
checked against the auth provider's /auth/v1/user endpoint.
"""
import logging

import httpx
import jwt as pyjwt
from fastapi import Request, HTTPException

from invoiceai.config import (
    SUPABASE_URL, SUPABASE_ANON_KEY, SUPABASE_JWT_SECRET, SUPABASE_JWT_AUDIENCE, HTTP_TIMEOUT_SECONDS
)

logger = logging.getLogger(__name__)

JWT_ALGORITHMS = ["HS256"]


# ============================================================
# TOKEN VERIFICATION
# ============================================================
def bearer_token(request: Request) -> str:
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer ") or not auth[7:].strip():
        raise HTTPException(401, "Missing/invalid Authorization header")
    return auth[7:].strip()


def decode_supabase_jwt(token: str, secret: str = SUPABASE_JWT_SECRET,
                        audience: str = SUPABASE_JWT_AUDIENCE) -> dict:
    try:
        return pyjwt.decode(token, secret, algorithms=JWT_ALGORITHMS, audience=audience)
    except pyjwt.ExpiredSignatureError:
        raise HTTPException(401, "Token expired")
    except pyjwt.InvalidTokenError:
        raise HTTPException(401, "Invalid Supabase session token")


def user_from_claims(claims: dict, token: str) -> dict:
    if not claims.get("sub"):
        raise HTTPException(401, "Token has no subject")
    return {"id": claims["sub"], "email": claims.get("email", ""),
            "role": claims.get("role", "authenticated"), "token": token}


async def fetch_supabase_user(token: str, url: str = SUPABASE_URL, anon_key: str = SUPABASE_ANON_KEY) -> dict:
    """Validate a token remotely; returns the auth provider's user object."""
    if not url or not anon_key:
        raise HTTPException(500, "Missing SUPABASE_URL or SUPABASE_ANON_KEY")
    try:
        async with httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS) as client:
            r = await client.get(f"{url}/auth/v1/user",
                                 headers={"apikey": anon_key, "Authorization": f"Bearer {token}"})
    except httpx.HTTPError as e:
        logger.error("Auth provider unreachable: %s", e)
        raise HTTPException(502, "Auth provider unreachable")
    if r.status_code != 200:
        logger.info("Rejected session token (auth provider returned %d)", r.status_code)
        raise HTTPException(401, "Invalid Supabase session token")
    return r.json()


# ============================================================
# REQUEST DEPENDENCY
# ============================================================
async def get_current_user(request: Request) -> dict:
    """Dependency: require an authenticated Supabase user."""
    token = bearer_token(request)
    if SUPABASE_JWT_SECRET:
        return user_from_claims(decode_supabase_jwt(token), token)
    user = await fetch_supabase_user(token)
    return user_from_claims({"sub": user.get("id"), "email": user.get("email"),
                             "role": user.get("role") or "authenticated"}, token)
