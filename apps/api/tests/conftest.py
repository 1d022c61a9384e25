from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from beacon_desk.core import clock
from beacon_desk.core.config import settings
from beacon_desk.core.rbac import Principal
from beacon_desk.core.security import create_access_token
from beacon_desk.db import build_engine, get_session
from beacon_desk.main import app
from beacon_desk.models.enums import TicketPriority, TicketType
from beacon_desk.models.user import Base, User, UserRole
from beacon_desk.schemas.ticket import TicketCreateIn
from beacon_desk.services import ticket_service
from beacon_desk.services.mail_service import SendResult, get_mail_transport

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class RecordingTransport:
    """Mail transport double: records sent messages, or fails on demand."""

    def __init__(self):
        self.sent = []
        self.fail_with = None

    def send(self, message):
        if self.fail_with:
            return SendResult(ok=False, error=self.fail_with)
        self.sent.append(message)
        return SendResult(ok=True)

    def to(self, address):
        return [m for m in self.sent if address in m.to]

    def clear(self):
        self.sent.clear()


class FrozenClock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def engine():
    eng = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def foreign_keys(engine):
    """Enforce FOREIGN KEY constraints; request before any data fixture."""
    with engine.connect() as conn:
        conn.exec_driver_sql("PRAGMA foreign_keys=ON")
    yield
    with engine.connect() as conn:
        conn.exec_driver_sql("PRAGMA foreign_keys=OFF")


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    s = session_factory()
    yield s
    s.close()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def frozen_clock(monkeypatch):
    fc = FrozenClock(START)
    monkeypatch.setattr(clock, "utcnow", fc)
    return fc


@pytest.fixture(autouse=True)
def desk_settings(monkeypatch):
    monkeypatch.setattr(settings, "it_servicedesk_email", "it-desk@acme-corp.com")
    monkeypatch.setattr(settings, "travel_desk_email", "travel-desk@acme-corp.com")
    monkeypatch.setattr(settings, "app_base_url", "https://desk.acme-corp.com")
    monkeypatch.setattr(settings, "sla_warning_threshold", 0.8)
    monkeypatch.setattr(settings, "sla_reminder_days", [3, 5])
    monkeypatch.setattr(settings, "auto_close_days", 7)


@pytest.fixture
def make_user(session):
    def _make(email, *roles, name=None, supervisor_email=None):
        user = User(email=email, name=name, supervisor_email=supervisor_email)
        session.add(user)
        session.flush()
        for role in roles:
            session.add(UserRole(user_id=user.id, role=role))
        session.commit()
        return user

    return _make


@pytest.fixture
def principal_of(session):
    def _principal(user):
        roles = session.scalars(
            select(UserRole.role).where(UserRole.user_id == user.id, UserRole.revoked_at.is_(None))
        ).all()
        return Principal(user_id=user.id, email=user.email, roles=list(roles))

    return _principal


@pytest.fixture
def people(make_user):
    return SimpleNamespace(
        requester=make_user("dana@acme-corp.com", "EMPLOYEE", name="Dana", supervisor_email="sam@acme-corp.com"),
        supervisor=make_user("sam@acme-corp.com", "EMPLOYEE", name="Sam"),
        engineer=make_user("eli@acme-corp.com", "ENGINEER_IT", name="Eli"),
        engineer2=make_user("kim@acme-corp.com", "ENGINEER_IT", name="Kim"),
        it_admin=make_user("ada@acme-corp.com", "ADMIN_IT", name="Ada"),
        travel_admin=make_user("tara@acme-corp.com", "ADMIN_TRAVEL", name="Tara"),
        travel_admin2=make_user("theo@acme-corp.com", "ADMIN_TRAVEL", name="Theo"),
        outsider=make_user("otto@acme-corp.com", "EMPLOYEE", name="Otto"),
    )


@pytest.fixture
def new_ticket(session, transport, principal_of):
    def _create(requester, ticket_type=TicketType.IT, priority=TicketPriority.MEDIUM, title="Laptop will not boot"):
        data = TicketCreateIn(
            type=ticket_type,
            title=title,
            description="Screen stays black after the update.",
            priority=priority,
        )
        return ticket_service.create_ticket(session, transport, principal_of(requester), data)

    return _create


@pytest.fixture
def client(session_factory, transport):
    def _get_session():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_session] = _get_session
    app.dependency_overrides[get_mail_transport] = lambda: transport
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(principal_of):
    def _headers(user):
        p = principal_of(user)
        token = create_access_token(str(p.user_id), p.email, p.roles)
        return {"Authorization": f"Bearer {token}"}

    return _headers
