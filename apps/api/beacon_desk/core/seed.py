from sqlalchemy.orm import Session
from sqlalchemy import select

from ..models.sla_config import SlaConfig
from ..services.sla_config import DEFAULT_SLA_MINUTES


def seed_sla_defaults(session: Session) -> None:
    """
    Store default SLA targets for priorities that have no row yet.
    Existing rows are left as configured.
    """
    existing = set(session.scalars(select(SlaConfig.priority)).all())
    for priority, minutes in DEFAULT_SLA_MINUTES.items():
        if priority in existing:
            continue
        session.add(SlaConfig(priority=priority, target_minutes=minutes))
    session.commit()
