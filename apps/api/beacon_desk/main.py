import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .routers import admin, approvals, health, tickets
from .models.user import Base
from .db import engine, SessionLocal
from .core.errors import DeskError, NotificationDeliveryError
from .core.seed import seed_sla_defaults
from .core.settings import settings
from .services.sla_monitor import start_sla_worker_thread

import beacon_desk.models.ticket  # noqa: F401
import beacon_desk.models.event  # noqa: F401
import beacon_desk.models.sla_config  # noqa: F401
import beacon_desk.models.notification_failure  # noqa: F401

logger = logging.getLogger(__name__)

app = FastAPI(title="Beacon Service Desk API")


@app.exception_handler(DeskError)
def handle_desk_error(request: Request, exc: DeskError):
    content = {"detail": exc.detail}
    if isinstance(exc, NotificationDeliveryError) and exc.failure_id is not None:
        content["failure_id"] = exc.failure_id
    return JSONResponse(status_code=exc.status_code, content=content)


@app.on_event("startup")
def on_startup():
    if settings.AUTO_DB_BOOTSTRAP:
        # Create tables in dev if missing.
        Base.metadata.create_all(bind=engine)
        with SessionLocal() as session:
            seed_sla_defaults(session)

    start_sla_worker_thread()


app.include_router(health.router)
app.include_router(tickets.router)
app.include_router(approvals.router)
app.include_router(admin.router)

allow_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
