import math

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_session
from ..core.current_user import get_current_principal
from ..core.rbac import ADMIN_IT, SUPER_ADMIN, Principal, require_roles
from ..models.enums import NotificationStatus
from ..schemas.notification import NotificationFailureListOut, NotificationFailureOut
from ..schemas.sla import SlaConfigOut, SlaRunOut
from ..services import notification_dispatcher, sla_config
from ..services.mail_service import MailTransport, get_mail_transport
from ..services.sla_monitor import run_sla_jobs

router = APIRouter(prefix="/admin", tags=["admin"])


def require_it_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    require_roles(principal, ADMIN_IT, SUPER_ADMIN)
    return principal


def _config_out(targets) -> SlaConfigOut:
    return SlaConfigOut(config={p.value: minutes for p, minutes in targets.items()})


@router.get("/sla-config", response_model=SlaConfigOut)
def get_sla_config(
    session: Session = Depends(get_session),
    principal: Principal = Depends(require_it_admin),
):
    return _config_out(sla_config.get_sla_targets(session))


@router.put("/sla-config", response_model=SlaConfigOut)
def update_sla_config(
    payload: dict = Body(...),
    session: Session = Depends(get_session),
    principal: Principal = Depends(require_it_admin),
):
    return _config_out(sla_config.update_sla_targets(session, payload))


@router.post("/sla/run", response_model=SlaRunOut)
def run_sla(
    session: Session = Depends(get_session),
    principal: Principal = Depends(require_it_admin),
    transport: MailTransport = Depends(get_mail_transport),
):
    result = run_sla_jobs(session, transport, actor_id=principal.user_id)
    return SlaRunOut(**result.as_dict())


@router.get("/notifications/failures", response_model=NotificationFailureListOut)
def list_notification_failures(
    domain: str = Query(default="IT"),
    status: NotificationStatus | None = None,
    event: str | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    session: Session = Depends(get_session),
    principal: Principal = Depends(require_it_admin),
):
    rows, total = notification_dispatcher.list_failures(
        session, domain=domain, status=status, event=event, page=page, limit=limit
    )
    return NotificationFailureListOut(
        failures=[NotificationFailureOut.model_validate(r) for r in rows],
        page=page,
        limit=limit,
        total=total,
        total_pages=math.ceil(total / limit) if total else 0,
    )


@router.post("/notifications/failures/{failure_id}/retry", response_model=NotificationFailureOut)
def retry_notification(
    failure_id: int,
    session: Session = Depends(get_session),
    principal: Principal = Depends(require_it_admin),
    transport: MailTransport = Depends(get_mail_transport),
):
    return notification_dispatcher.retry_failure(session, transport, failure_id)
