from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional

from storefront.utils.pricing import random_base36


def generate_guest_session_id(now_ms: Optional[int] = None) -> str:
    """guest-<epoch millis>-<9 lowercase base-36 chars>."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"guest-{now_ms}-{random_base36(9).lower()}"


@dataclass(frozen=True)
class RequestIdentity:
    """
    Who a request acts for.

    Fields:
      - user_id: users.id when a valid bearer token was sent
      - role: users.role for that user
      - guest_session_id: visitor key from the session header (or generated);
        carts and orders use it only when there is no user
    """

    user_id: Optional[str] = None
    role: Optional[str] = None
    guest_session_id: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    def owner(self) -> tuple[Optional[str], Optional[str]]:
        """(user_id, guest_session_id) with exactly one of them set."""
        if self.user_id is not None:
            return self.user_id, None
        return None, self.guest_session_id

    def owner_clause(self, alias: str = "") -> tuple[str, tuple]:
        """SQL condition and params scoping rows to this identity."""
        prefix = f"{alias}." if alias else ""
        if self.user_id is not None:
            return f"{prefix}user_id = ?", (self.user_id,)
        return f"{prefix}guest_session_id = ?", (self.guest_session_id,)
