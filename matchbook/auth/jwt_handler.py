from datetime import datetime, timedelta, timezone

import jwt

from matchbook.core import config


def create_access_token(email: str, expires_minutes: int | None = None, **claims) -> str:
    issued_at = datetime.now(timezone.utc)
    expire = issued_at + timedelta(minutes=expires_minutes or config.JWT_EXPIRES_MINUTES)
    payload = {**claims, "sub": email.strip().lower(), "exp": expire, "iat": issued_at}
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    return jwt.decode(
        token,
        config.JWT_SECRET_KEY,
        algorithms=[config.JWT_ALGORITHM],
        options={"require": ["sub", "exp"]},
    )
