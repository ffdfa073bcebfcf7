"""
Password hashing, bearer tokens and the per-operation auth guard.
"""
import base64
import hashlib
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import bcrypt
from fastapi import Depends, HTTPException, Request, status
from itsdangerous import BadData, URLSafeTimedSerializer

from config import Settings, get_settings
from schemas import ADMIN

logger = logging.getLogger(__name__)

_SALT = "resolvenow-session"


@dataclass
class TokenUser:
    id: str
    user_type: str
    name: str


def _prepare_password(password: str) -> bytes:
    # SHA-256 pre-hash keeps long passwords inside bcrypt's 72-byte limit.
    return base64.b64encode(hashlib.sha256(password.encode()).digest())


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_prepare_password(password), bcrypt.gensalt()).decode()


def verify_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(_prepare_password(password), password_hash.encode())


def _serializer(settings: Settings) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(settings.secret_key, salt=_SALT)


def create_token(user: Dict[str, Any], settings: Settings) -> str:
    return _serializer(settings).dumps({
        "id": str(user["_id"]),
        "user_type": user.get("user_type"),
        "name": user.get("name"),
    })


def decode_token(token: str, settings: Settings) -> TokenUser:
    """Raises itsdangerous.BadData (BadSignature, SignatureExpired) on a bad token."""
    data = _serializer(settings).loads(token, max_age=settings.token_ttl_seconds)
    return TokenUser(id=data["id"], user_type=data.get("user_type"), name=data.get("name"))


def _bearer(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization")
    if not header:
        return None
    return header.replace("Bearer ", "").strip() or None


def get_current_user(request: Request, settings: Settings = Depends(get_settings)) -> TokenUser:
    token = _bearer(request)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Access denied. No token provided.")
    try:
        return decode_token(token, settings)
    except BadData:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid token.")


def require_admin(user: TokenUser = Depends(get_current_user)) -> TokenUser:
    if user.user_type != ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied. Admins only.")
    return user


def guard(operation: str):
    """
    Dependency factory for the named operation.

    Guarded operations behave like get_current_user. Operations listed in
    Settings.unguarded_operations accept anonymous callers and resolve to None,
    or to the caller when a valid token is sent anyway.
    """

    def _dep(request: Request, settings: Settings = Depends(get_settings)) -> Optional[TokenUser]:
        if settings.is_guarded(operation):
            return get_current_user(request, settings)
        token = _bearer(request)
        if not token:
            return None
        try:
            return decode_token(token, settings)
        except BadData:
            logger.info("Ignoring invalid token on unguarded operation %s", operation)
            return None

    return _dep
