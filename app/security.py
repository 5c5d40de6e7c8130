"""Password hashing and signed session tokens.

Tokens are HS256 JWTs carrying the identity id (``sub``), a token id (``jti``)
matching a persisted ``AuthSession`` row, and an expiry claim.
"""

from datetime import datetime
from typing import Any, Dict

import jwt
from passlib.context import CryptContext

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ALGORITHM = "HS256"


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_session_token(identity_id: str, token_id: str, expires_at: datetime, secret: str) -> str:
    payload = {"sub": identity_id, "jti": token_id, "exp": expires_at}
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def decode_session_token(token: str, secret: str) -> Dict[str, Any]:
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=[ALGORITHM],
            options={"require": ["sub", "jti", "exp"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise ValueError("Expired token") from exc
    except jwt.InvalidTokenError as exc:
        raise ValueError("Invalid token") from exc
    return claims
