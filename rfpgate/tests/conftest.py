"""
Shared test fixtures.

In-memory SQLite with foreign keys on, a FastAPI TestClient wired to the same
session, and a recording notification dispatcher in place of the RQ queue.
"""
import os
os.environ.setdefault("DEBUG", "true")  # Must be set before importing rfpgate modules
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key-0123456789abcdef0123456789abcdef")
os.environ.setdefault("NOTIFICATION_BACKEND", "log")
os.environ.setdefault("ACCESS_CACHE_TTL_SECONDS", "0")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from rfpgate.core.rbac import Actor
from rfpgate.core.security import create_access_token
from rfpgate.db.session import Base, get_db
from rfpgate.db.models import (
    Company, User, RFP, Document, UserRole, CompanyRole, RFPVisibility, RFPStatus,
)
from rfpgate.services.decision_cache import DecisionCache, get_decision_cache
from rfpgate.services.notifications import NotificationDispatcher, get_notification_dispatcher


# ============= ENGINE =============

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(bind=engine, autoflush=False)


@event.listens_for(engine, "connect")
def _enable_fk(dbapi_conn, _):
    """SQLite ignores FKs by default."""
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


class RecordingDispatcher(NotificationDispatcher):
    """Keeps every notification in memory."""

    def __init__(self):
        self.sent = []

    def notify(self, user_id, title, message, type, reference_id=None):
        self.sent.append({
            "user_id": user_id,
            "title": title,
            "message": message,
            "type": type,
            "reference_id": reference_id,
        })

    def of_type(self, type):
        return [n for n in self.sent if n["type"] == type]


# ============= FIXTURES =============

@pytest.fixture(autouse=True)
def db_session():
    """Create all tables, yield a session, then tear down."""
    Base.metadata.create_all(bind=engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def notifier() -> RecordingDispatcher:
    return RecordingDispatcher()


def _user(db: Session, email: str, role: str, company: Company = None,
          company_role: str = None, full_name: str = None) -> User:
    user = User(
        email=email,
        full_name=full_name or email.split("@")[0].title(),
        role=role,
        company_id=company.id if company else None,
        company_role=company_role,
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture()
def company(db_session: Session) -> Company:
    co = Company(name="Northwind Builders", website="https://northwind.example.com")
    db_session.add(co)
    db_session.commit()
    db_session.refresh(co)
    return co


@pytest.fixture()
def admin_user(db_session: Session) -> User:
    return _user(db_session, "admin@rfpgate.test", UserRole.ADMIN.value, full_name="Platform Admin")


@pytest.fixture()
def client_user(db_session: Session) -> User:
    """Client reviewer who owns the test RFPs."""
    return _user(db_session, "owner@city.test", UserRole.CLIENT_REVIEWER.value, full_name="Dana Reyes")


@pytest.fixture()
def reviewer_user(db_session: Session) -> User:
    """Client reviewer who does not own the test RFPs."""
    return _user(db_session, "reviewer@county.test", UserRole.CLIENT_REVIEWER.value, full_name="Jo Park")


@pytest.fixture()
def bidder_user(db_session: Session) -> User:
    """Bidder with no company."""
    return _user(db_session, "solo@bidder.test", UserRole.BIDDER.value, full_name="Riley Solo")


@pytest.fixture()
def company_admin(db_session: Session, company: Company) -> User:
    return _user(db_session, "owner@northwind.test", UserRole.BIDDER.value, company,
                 CompanyRole.ADMIN.value, full_name="Sam Patel")


@pytest.fixture()
def company_member(db_session: Session, company: Company) -> User:
    return _user(db_session, "estimator@northwind.test", UserRole.BIDDER.value, company,
                 CompanyRole.MEMBER.value, full_name="Alex Kim")


def _rfp(db: Session, owner: User, title: str, visibility: str, status: str) -> RFP:
    rfp = RFP(title=title, description=title, client_id=owner.id, visibility=visibility, status=status)
    db.add(rfp)
    db.commit()
    db.refresh(rfp)
    return rfp


@pytest.fixture()
def public_rfp(db_session: Session, client_user: User) -> RFP:
    return _rfp(db_session, client_user, "Library Renovation",
                RFPVisibility.PUBLIC.value, RFPStatus.ACTIVE.value)


@pytest.fixture()
def confidential_rfp(db_session: Session, client_user: User) -> RFP:
    return _rfp(db_session, client_user, "Water Plant Expansion",
                RFPVisibility.CONFIDENTIAL.value, RFPStatus.ACTIVE.value)


@pytest.fixture()
def draft_rfp(db_session: Session, client_user: User) -> RFP:
    return _rfp(db_session, client_user, "Depot Study",
                RFPVisibility.PUBLIC.value, RFPStatus.DRAFT.value)


def make_document(db: Session, rfp: RFP, title: str, requires_nda: bool) -> Document:
    document = Document(
        rfp_id=rfp.id,
        title=title,
        file_path=f"rfps/{rfp.id}/{title.lower().replace(' ', '-')}.pdf",
        file_type="application/pdf",
        requires_nda=requires_nda,
    )
    db.add(document)
    db.commit()
    db.refresh(document)
    return document


@pytest.fixture()
def open_document(db_session: Session, public_rfp: RFP) -> Document:
    return make_document(db_session, public_rfp, "Scope of Work", requires_nda=False)


@pytest.fixture()
def nda_document(db_session: Session, public_rfp: RFP) -> Document:
    return make_document(db_session, public_rfp, "Site Drawings", requires_nda=True)


def actor_for(user: User) -> Actor:
    return Actor.from_user(user)


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)})}"}


@pytest.fixture()
def client(db_session: Session, notifier: RecordingDispatcher):
    """TestClient bound to the test session and recording dispatcher."""
    from rfpgate.main import app

    def _get_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_notification_dispatcher] = lambda: notifier
    app.dependency_overrides[get_decision_cache] = lambda: DecisionCache(ttl_seconds=0)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
