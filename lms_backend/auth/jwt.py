import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from lms_backend.config import settings

logger = logging.getLogger(__name__)


def create_access_token(data: dict, expires_minutes: Optional[int] = None) -> str:
    """Sign a bearer token; ``data`` must carry ``sub`` (user id as string)."""
    now = datetime.now(timezone.utc)
    ttl = expires_minutes if expires_minutes is not None else settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES
    payload = dict(data)
    payload.update({"iat": int(now.timestamp()), "exp": int((now + timedelta(minutes=ttl)).timestamp())})
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str) -> Optional[dict]:
    try:
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except jwt.PyJWTError as e:
        logger.info("Rejected bearer token: %s", type(e).__name__)
        return None
