from __future__ import annotations

import uuid
from datetime import datetime, timezone
from threading import RLock
from typing import Dict, Optional

from .contracts import User
from .errors import ValidationError


def _normalize_email(email: str) -> str:
    return str(email or "").strip()


class InMemoryUserRegistry:
    def __init__(self, admin_email: str = ""):
        self._lock = RLock()
        self._users: Dict[str, User] = {}
        admin_email = _normalize_email(admin_email)
        if admin_email:
            self._insert(admin_email, is_admin=True)

    def _insert(self, email: str, is_admin: bool) -> User:
        user = User(
            id=uuid.uuid4().hex,
            email=email,
            created_at=datetime.now(timezone.utc),
            is_admin=is_admin,
        )
        self._users[user.id] = user
        return user

    def get_by_email(self, email: str) -> Optional[User]:
        email = _normalize_email(email)
        with self._lock:
            for user in self._users.values():
                if user.email == email:
                    return user.model_copy()
        return None

    def login(self, email: str) -> User:
        email = _normalize_email(email)
        if not email:
            raise ValidationError("Email is required")
        with self._lock:
            existing = self.get_by_email(email)
            if existing is not None:
                return existing
            return self._insert(email, is_admin=False).model_copy()
