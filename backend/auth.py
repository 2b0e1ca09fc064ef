from datetime import datetime, timedelta, timezone

from fastapi import Request, HTTPException, status
from jose import jwt, JWTError

from config import JWT_SECRET, JWT_ALGORITHM, JWT_EXPIRY_HOURS
from errors import AuthError


def create_token(data: dict, expires_hours: int = JWT_EXPIRY_HOURS) -> str:
    """Create a JWT token with an expiry claim. Used by tests and local tooling;
    production tokens are issued by the identity provider."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(hours=expires_hours)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGORITHM)


def verify_token(token: str) -> dict | None:
    """Decode and verify a JWT token. Returns the payload or None on failure."""
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError:
        return None


def resolve_user_id(auth_header: str | None) -> int:
    """Extract the caller's user id from a Bearer header or raise AuthError."""
    if not auth_header or not auth_header.startswith("Bearer "):
        raise AuthError("Missing or invalid Authorization header")

    payload = verify_token(auth_header.split(" ", 1)[1])
    if payload is None:
        raise AuthError("Invalid or expired token")

    raw = payload.get("user_id", payload.get("sub"))
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise AuthError("Token payload missing required claims")


async def get_current_user(request: Request) -> int:
    """
    FastAPI dependency — extracts the Bearer token from the Authorization
    header, verifies it, and returns the user_id.
    Raises HTTP 401 if the token is missing or invalid.
    """
    try:
        return resolve_user_id(request.headers.get("Authorization"))
    except AuthError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        )
