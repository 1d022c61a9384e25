from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..core.rbac import ADMIN_TRAVEL
from ..models.user import User, UserRole


def get_user_by_email(session: Session, email: str) -> User | None:
    return session.scalars(select(User).where(func.lower(User.email) == email.strip().lower())).first()


def users_with_role(session: Session, role: str) -> list[User]:
    stmt = (
        select(User)
        .join(UserRole, UserRole.user_id == User.id)
        .where(UserRole.role == role, UserRole.revoked_at.is_(None))
        .order_by(User.id)
        .distinct()
    )
    return list(session.scalars(stmt).all())


def get_travel_admins(session: Session) -> list[User]:
    return users_with_role(session, ADMIN_TRAVEL)
