"""Role capability lookup.

One direct query against ``admin_role``. Role checks must not go through
any layer that itself performs role checks.
"""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from living_map.models.user import ROLE_ADMIN, ROLE_MODERATOR, AdminRole


def has_role(session: Session, user_id: str, roles: Iterable[str]) -> bool:
    """Return True if ``user_id`` holds any of ``roles``."""
    wanted = list(roles)
    if not wanted:
        return False
    stmt = (
        select(AdminRole.user_id)
        .where(AdminRole.user_id == user_id, AdminRole.role.in_(wanted))
        .limit(1)
    )
    return session.scalar(stmt) is not None


def is_admin(session: Session, user_id: str) -> bool:
    return has_role(session, user_id, [ROLE_ADMIN])


def is_moderator(session: Session, user_id: str) -> bool:
    """Admins count as moderators."""
    return has_role(session, user_id, [ROLE_ADMIN, ROLE_MODERATOR])
