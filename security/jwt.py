from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt

from core.config import Settings, settings as default_settings


class TokenError(Exception):
    pass


def _encode(payload: Dict[str, Any], secret: str, minutes: int, alg: str) -> str:
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=minutes)
    to_encode = {"iat": int(now.timestamp()), "exp": int(exp.timestamp()), **payload}
    return jwt.encode(to_encode, secret, algorithm=alg)


def _decode(token: str, secret: str, expected_type: str, alg: str) -> Dict[str, Any]:
    try:
        payload = jwt.decode(token, secret, algorithms=[alg])
    except jwt.PyJWTError as e:
        raise TokenError(str(e)) from e
    if payload.get("type") != expected_type or not payload.get("sub"):
        raise TokenError(f"Not an {expected_type} token")
    return payload


def create_access_token(sub: str, extra: Dict[str, Any] | None = None, settings: Settings = default_settings) -> str:
    payload = {"sub": sub, "type": "access"}
    if extra:
        payload.update(extra)
    return _encode(payload, settings.JWT_SECRET, settings.ACCESS_TOKEN_EXPIRE_MINUTES, settings.JWT_ALG)


def create_refresh_token(sub: str, extra: Dict[str, Any] | None = None, settings: Settings = default_settings) -> str:
    payload = {"sub": sub, "type": "refresh"}
    if extra:
        payload.update(extra)
    return _encode(payload, settings.REFRESH_SECRET, settings.REFRESH_TOKEN_EXPIRE_MINUTES, settings.JWT_ALG)


def decode_access(token: str, settings: Settings = default_settings) -> Dict[str, Any]:
    return _decode(token, settings.JWT_SECRET, "access", settings.JWT_ALG)


def decode_refresh(token: str, settings: Settings = default_settings) -> Dict[str, Any]:
    return _decode(token, settings.REFRESH_SECRET, "refresh", settings.JWT_ALG)
