import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from robojs.core.config import get_settings


class InvalidTokenError(Exception):
    pass


def create_access_token(subject: str, expires_minutes: int = 60) -> str:
    # Tokens are normally issued by the auth service; this mirrors its claims for tooling and tests.
    settings = get_settings()
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    to_encode: Dict[str, Any] = {"exp": expire, "sub": subject}
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: Optional[str]) -> str:
    """Return the user id (`sub`) of a valid session token."""
    if not token:
        raise InvalidTokenError("missing token")
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        raise InvalidTokenError(str(exc)) from exc
    user_id = payload.get("sub")
    if not user_id:
        raise InvalidTokenError("token has no subject")
    return str(user_id)


def sign_body(*, secret: str, ts: int, body: bytes) -> str:
    msg = str(ts).encode("utf-8") + b"." + (body or b"")
    return hmac.new(secret.encode("utf-8"), msg, hashlib.sha256).hexdigest()


def verify_signature(*, secret: str, ts: int, body: bytes, signature_hex: str) -> bool:
    expected = sign_body(secret=secret, ts=ts, body=body)
    return hmac.compare_digest(expected, signature_hex)
