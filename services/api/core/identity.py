# services/api/core/identity.py
"""
Identity collaborator. Authentication happens upstream; the API receives
the already-authenticated caller in request headers and the core only reads
it for created_by / last_edited_by stamping and owner-vs-moderator views.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

ROLE_OWNER = "owner"
ROLE_MODERATOR = "moderator"
ROLES = (ROLE_OWNER, ROLE_MODERATOR)


@dataclass(frozen=True)
class Actor:
    user_id: str
    email: str = ""
    role: str = ROLE_OWNER

    @property
    def is_moderator(self) -> bool:
        return self.role == ROLE_MODERATOR

    @property
    def stamp(self) -> str:
        """Value written to created_by / last_edited_by."""
        return self.email or self.user_id


def actor_from_headers(
    user_id: Optional[str],
    email: Optional[str] = None,
    role: Optional[str] = None,
) -> Optional[Actor]:
    """
    Build the caller from X-User-* header values. No user id means an
    anonymous caller (None). Unknown roles degrade to owner.
    """
    uid = (user_id or "").strip()
    if not uid:
        return None
    r = (role or "").strip().lower()
    return Actor(
        user_id=uid,
        email=(email or "").strip(),
        role=r if r in ROLES else ROLE_OWNER,
    )
