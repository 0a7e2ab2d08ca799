import hashlib
import logging
import secrets
from datetime import timedelta
from typing import Dict, Optional, Tuple

import bcrypt
from fastapi import HTTPException, Request, status

from .models import User, utcnow

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # not a bcrypt hash
        return False


def generate_session_token() -> str:
    return secrets.token_urlsafe(48)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class SessionStore:
    """Server-side sessions keyed by the sha256 of the cookie token.

    Raw tokens are never stored, only their hashes.
    """

    def __init__(self, ttl_minutes=720):
        self.ttl = timedelta(minutes=ttl_minutes)
        self._sessions: Dict[str, Tuple[str, object]] = {}

    def create(self, user_id: str) -> str:
        self.purge_expired()
        token = generate_session_token()
        self._sessions[hash_token(token)] = (user_id, utcnow() + self.ttl)
        return token

    def lookup(self, token: Optional[str]) -> Optional[str]:
        """Return the user id for a live session, dropping it if expired."""
        if not token:
            return None
        key = hash_token(token)
        entry = self._sessions.get(key)
        if entry is None:
            return None
        user_id, expires_at = entry
        if expires_at < utcnow():
            del self._sessions[key]
            return None
        return user_id

    def delete(self, token: Optional[str]) -> bool:
        if not token:
            return False
        return self._sessions.pop(hash_token(token), None) is not None

    def purge_expired(self):
        now = utcnow()
        for key in [k for k, (_, expires_at) in self._sessions.items() if expires_at < now]:
            del self._sessions[key]

    def __len__(self):
        return len(self._sessions)


async def current_user(request: Request) -> User:
    """FastAPI dependency: the user owning the session cookie, or 401."""
    settings = request.app.state.settings
    token = request.cookies.get(settings.session_cookie_name)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    user_id = request.app.state.sessions.lookup(token)
    user = await request.app.state.repository.get_user(user_id) if user_id else None
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Session expired or invalid")
    return user
