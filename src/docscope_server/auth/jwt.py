"""
JWT Authentication Module

Access tokens carry the caller's granted scope tokens in a ``scope`` claim
(a list of strings, or a space separated string as in OAuth2).
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import jwt, ExpiredSignatureError, JWTError

from ..config import settings

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"


@dataclass
class TokenPayload:
    """JWT Token Payload"""

    user_id: str
    scope: list[str] = field(default_factory=list)  # Granted scope tokens
    email: Optional[str] = None
    iat: Optional[int] = None  # Issued at
    exp: Optional[int] = None  # Expiration
    token_type: Optional[str] = None  # "access" or "refresh", absent on external tokens


def _parse_scope(claim: Any) -> list[str]:
    if not claim:
        return []
    if isinstance(claim, str):
        return claim.split()
    return [str(token) for token in claim]


def _payload_from_claims(decoded: dict[str, Any]) -> TokenPayload:
    return TokenPayload(
        user_id=decoded.get("userId") or decoded.get("sub") or "",
        scope=_parse_scope(decoded.get("scope")),
        email=decoded.get("email"),
        iat=decoded.get("iat"),
        exp=decoded.get("exp"),
        token_type=decoded.get("type"),
    )


def verify_token(token: str) -> Optional[TokenPayload]:
    """
    Verify and decode JWT token.

    - Validate signature with secret
    - Check expiration
    - Return None on any error (no exceptions propagated)

    Args:
        token: JWT token string

    Returns:
        TokenPayload if valid, None if invalid/expired
    """
    try:
        decoded = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
        )
        return _payload_from_claims(decoded)
    except ExpiredSignatureError:
        return None
    except JWTError:
        return None
    except Exception:
        return None


def generate_access_token(
    user_id: str,
    scope: list[str],
    email: Optional[str] = None,
    expires_in_hours: Optional[int] = None,
) -> str:
    """
    Generate JWT access token.

    Args:
        user_id: User identifier
        scope: Granted scope tokens
        email: Optional email address
        expires_in_hours: Token expiration in hours (default from config)

    Returns:
        JWT token string
    """
    if expires_in_hours is None:
        expires_in_hours = settings.jwt_expiration_hours

    now = datetime.now(timezone.utc)
    expire = now + timedelta(hours=expires_in_hours)

    payload = {
        "userId": user_id,
        "scope": list(scope),
        "type": ACCESS_TOKEN,
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
    }

    if email:
        payload["email"] = email

    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def generate_refresh_token(user_id: str, expires_in_days: int = 7) -> str:
    """Generate JWT refresh token (no scope claim)"""
    now = datetime.now(timezone.utc)
    expire = now + timedelta(days=expires_in_days)

    payload = {
        "userId": user_id,
        "type": REFRESH_TOKEN,
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
    }

    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def generate_tokens(
    user_id: str,
    email: str,
    scope: list[str],
) -> dict[str, str]:
    """
    Generate both access and refresh tokens for a user.

    Returns:
        Dict with 'accessToken' and 'refreshToken'
    """
    return {
        "accessToken": generate_access_token(user_id, scope, email),
        "refreshToken": generate_refresh_token(user_id),
    }


def decode_token(token: str) -> Optional[TokenPayload]:
    """Decode token without verification (for debugging)"""
    try:
        decoded = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"verify_signature": False, "verify_exp": False},
        )
        return _payload_from_claims(decoded)
    except Exception:
        return None
