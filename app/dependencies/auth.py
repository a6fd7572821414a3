from fastapi import Header, HTTPException, status, Depends
from sqlalchemy.orm import Session
import jwt  # PyJWT
import logging
import os
import requests
import time
from typing import Optional
from app.db.session import get_db
from app.models.user import User, UserRole

logger = logging.getLogger(__name__)

# Cache for JWKS (Public Keys)
JWKS_CACHE = None
JWKS_CACHE_TIMESTAMP = None
JWKS_CACHE_TTL = 3600  # Cache for 1 hour
JWKS_STALE_LIMIT = 86400  # Stale cache still accepted when Supabase is down

ASYMMETRIC_ALGORITHMS = ("ES256", "RS256")


def get_jwks(supabase_url: str, force_refresh: bool = False):
    """
    Fetch JWKS from Supabase with caching and retry logic.
    Only caches successful fetches - failures are not cached to allow retries.
    """
    global JWKS_CACHE, JWKS_CACHE_TIMESTAMP

    if JWKS_CACHE and not force_refresh and JWKS_CACHE_TIMESTAMP:
        if time.time() - JWKS_CACHE_TIMESTAMP < JWKS_CACHE_TTL:
            return JWKS_CACHE

    max_retries = 3
    last_error = None
    jwks_url = f"{supabase_url}/auth/v1/.well-known/jwks.json"

    for attempt in range(max_retries):
        try:
            logger.info("[AUTH] Fetching JWKS from %s (attempt %d/%d)", jwks_url, attempt + 1, max_retries)
            r = requests.get(jwks_url, timeout=10)
            r.raise_for_status()
            JWKS_CACHE = r.json()
            JWKS_CACHE_TIMESTAMP = time.time()
            return JWKS_CACHE
        except requests.exceptions.RequestException as e:
            last_error = str(e)
            logger.warning("[AUTH] JWKS fetch failed (attempt %d/%d): %s", attempt + 1, max_retries, last_error)
            if attempt < max_retries - 1:
                time.sleep(1)

    logger.error("[AUTH] Failed to fetch JWKS after %d attempts: %s", max_retries, last_error)
    return None


def _signing_key_for(token: str, algo: str):
    supabase_url = os.getenv("SUPABASE_URL")
    if not supabase_url:
        logger.error("[AUTH] SUPABASE_URL is missing for %s verification", algo)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server misconfiguration: SUPABASE_URL not set"
        )

    jwks = get_jwks(supabase_url)
    if not jwks and JWKS_CACHE:
        cache_age = time.time() - (JWKS_CACHE_TIMESTAMP or 0)
        if cache_age < JWKS_STALE_LIMIT:
            logger.warning("[AUTH] Using stale JWKS cache (age: %.0fs) as fallback", cache_age)
            jwks = JWKS_CACHE

    if not jwks:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication service temporarily unavailable. Please try again in a moment."
        )

    kid = jwt.get_unverified_header(token).get("kid")
    for key in jwks.get("keys", []):
        if key.get("kid") == kid:
            return jwt.PyJWK(key).key

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid token signature"
    )


def verify_supabase_token(authorization: Optional[str] = Header(None)) -> dict:
    """
    Verifies the Supabase JWT token.
    Supports both HS256 (Shared Secret) and ES256/RS256 (Asymmetric Key).
    Returns the payload dict if valid.
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization header"
        )

    if not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid header format. Expected 'Bearer <token>'"
        )

    token = authorization.replace("Bearer ", "").strip()
    if not token or token.lower() in ["null", "undefined", "none"] or len(token.split(".")) != 3:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token format. Token must have header.payload.signature structure."
        )

    try:
        algo = jwt.get_unverified_header(token).get("alg")
    except jwt.DecodeError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token header: {str(e)}"
        )

    if algo in ASYMMETRIC_ALGORITHMS:
        key = _signing_key_for(token, algo)
    elif algo == "HS256":
        key = os.getenv("SUPABASE_JWT_SECRET")
        if not key:
            logger.error("[AUTH] SUPABASE_JWT_SECRET is missing in environment variables")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Server misconfiguration: SUPABASE_JWT_SECRET not set"
            )
    else:
        logger.warning("[AUTH] Unsupported algorithm: %s", algo)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Unsupported token algorithm: {algo}"
        )

    try:
        # Decode AND verify in one step; the payload is never decoded again later
        return jwt.decode(
            token,
            key,
            algorithms=[algo],
            audience="authenticated",
            options={"verify_aud": True}
        )
    except jwt.InvalidTokenError as e:
        logger.warning("[AUTH] %s verification failed: %s", algo, e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token signature"
        )


def get_current_user(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db)
) -> User:
    """
    FastAPI dependency that verifies the Supabase token and returns the platform user.

    Looks up by supabase_id (JWT "sub") first so the same token always maps to
    the same user, then falls back to the email claim.
    """
    payload = verify_supabase_token(authorization)
    supabase_user_id = payload.get("sub")
    email = payload.get("email")

    user = None
    if supabase_user_id:
        user = db.query(User).filter(User.supabase_id == supabase_user_id).first()
    if not user and email:
        user = db.query(User).filter(User.email.ilike(email)).first()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No platform account for this token"
        )
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return user
