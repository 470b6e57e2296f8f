"""
conftest.py — Shared Test Fixtures for Planner CRM

Provides an in-memory SQLite database, a FastAPI TestClient with auth and
collaborator overrides, scripted fakes for the mailbox provider and the
scorer, and factory fixtures for core models.

Business Rules:
- All tests run against an isolated in-memory DB
- Auth is overridden so tests don't need mailbox OAuth tokens
- The mailbox provider and scorer are replaced by in-process fakes

Called by: all test files via pytest autodiscovery
Depends on: plannercrm.models (Base), plannercrm.database (get_db), plannercrm.dependencies
"""

import os
os.environ["TESTING"] = "1"  # Must be set before importing plannercrm modules
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from plannercrm.errors import ScorerError
from plannercrm.models import Base, Project, ProjectSupplier, Supplier, User
from plannercrm.services.mailbox_client import HistoryPage, MailboxClient, MailboxMessage
from plannercrm.services.scorer import CandidateScorer
from plannercrm.services.signal_lexicon import seed_statuses

# ── In-memory SQLite engine ──────────────────────────────────────────

TEST_DB_URL = "sqlite://"

engine = create_engine(
    TEST_DB_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@event.listens_for(engine, "connect")
def _enable_fk(dbapi_conn, _):
    """Enforce foreign keys on every SQLite connection."""
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


OWNER_EMAIL = "planner@eventco.com"


# ── Fakes ────────────────────────────────────────────────────────────


class FakeMailbox(MailboxClient):
    """Serves scripted pages in order. An Exception entry is raised instead."""

    def __init__(self, pages=None):
        self.pages = list(pages or [])
        self.calls = []

    async def list_history_page(self, owner_id, cursor, older_than, *,
                                sent_only=True, page_size=30):
        self.calls.append({"cursor": cursor, "older_than": older_than, "sent_only": sent_only})
        if not self.pages:
            return HistoryPage(messages=[], next_cursor=None, has_more=False)
        item = self.pages.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def get_message(self, message_id):
        raise NotImplementedError


class FakeScorer(CandidateScorer):
    """Canned result per email. Missing emails and ScorerError entries fail."""

    def __init__(self, results=None):
        self.results = dict(results or {})
        self.calls = []
        self.contexts = []

    async def classify(self, item, context):
        self.calls.append(item.email)
        self.contexts.append(context)
        result = self.results.get(item.email)
        if result is None:
            raise ScorerError(f"no canned result for {item.email}")
        if isinstance(result, ScorerError):
            raise result
        return result


# ── Fixtures ─────────────────────────────────────────────────────────


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
def statuses(db_session: Session) -> int:
    """The built-in pipeline status catalog."""
    return seed_statuses(db_session)


@pytest.fixture()
def test_user(db_session: Session) -> User:
    """A planner with a connected mailbox."""
    user = User(
        email=OWNER_EMAIL,
        name="Test Planner",
        event_context="Weddings and corporate galas",
        mailbox_connected=True,
        access_token="test-token",
        created_at=datetime.now(timezone.utc),
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture()
def other_user(db_session: Session) -> User:
    """A second planner, for ownership checks."""
    user = User(
        email="other@elsewhere.com",
        name="Other Planner",
        mailbox_connected=True,
        access_token="other-token",
        created_at=datetime.now(timezone.utc),
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture()
def test_project(db_session: Session, test_user: User) -> Project:
    """A wedding three weeks out."""
    project = Project(
        owner_id=test_user.id,
        name="Smith Wedding",
        event_type="wedding",
        venue="Rosewood Manor",
        event_date=datetime.now(timezone.utc) + timedelta(days=21),
        created_at=datetime.now(timezone.utc),
    )
    db_session.add(project)
    db_session.commit()
    db_session.refresh(project)
    return project


@pytest.fixture()
def test_supplier(db_session: Session, test_user: User) -> Supplier:
    """A florist with a business domain."""
    supplier = Supplier(
        owner_id=test_user.id,
        name="Bloom & Co",
        email="jane@bloomandco.com",
        domain="bloomandco.com",
        categories=["florist"],
        primary_category="florist",
        source="manual",
        created_at=datetime.now(timezone.utc),
    )
    db_session.add(supplier)
    db_session.commit()
    db_session.refresh(supplier)
    return supplier


@pytest.fixture()
def project_supplier(db_session: Session, test_project: Project, test_supplier: Supplier) -> ProjectSupplier:
    ps = ProjectSupplier(
        project_id=test_project.id,
        supplier_id=test_supplier.id,
        status_slug="rfq-sent",
        status_history=[],
    )
    db_session.add(ps)
    db_session.commit()
    db_session.refresh(ps)
    return ps


@pytest.fixture()
def make_message():
    """Factory for provider messages. Outbound from the owner by default."""
    counter = {"n": 0}
    base = datetime.now(timezone.utc) - timedelta(days=3)

    def _make(msg_id=None, *, direction="outbound", to=None, from_email=None,
              thread_id="thread-1", subject="Flowers for the Smith Wedding",
              body="", sent_at=None):
        counter["n"] += 1
        if from_email is None:
            from_email = OWNER_EMAIL if direction == "outbound" else "jane@bloomandco.com"
        if to is None:
            to = ["Jane Doe <jane@bloomandco.com>"] if direction == "outbound" else [OWNER_EMAIL]
        return MailboxMessage(
            id=msg_id or f"msg-{counter['n']}",
            thread_id=thread_id,
            from_email=from_email,
            to=list(to),
            subject=subject,
            body=body,
            sent_at=sent_at or base + timedelta(minutes=counter["n"]),
            direction=direction,
        )

    return _make


@pytest.fixture()
def fake_mailbox() -> FakeMailbox:
    return FakeMailbox()


@pytest.fixture()
def fake_scorer() -> FakeScorer:
    return FakeScorer()


@pytest.fixture()
def make_scorer():
    """FakeScorer factory: make_scorer({email: ScorerResult | ScorerError})."""
    return FakeScorer


@pytest.fixture()
def client(db_session: Session, test_user: User, fake_mailbox: FakeMailbox,
           fake_scorer: FakeScorer) -> TestClient:
    """FastAPI TestClient with auth and collaborators overridden.

    Startup seeding runs against the test session.
    """
    from plannercrm.database import get_db
    from plannercrm.dependencies import get_mailbox_client, get_scorer, require_user
    from plannercrm.main import app

    def _override_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_db
    app.dependency_overrides[require_user] = lambda: test_user
    app.dependency_overrides[get_mailbox_client] = lambda: fake_mailbox
    app.dependency_overrides[get_scorer] = lambda: fake_scorer

    original_close = db_session.close
    db_session.close = lambda: None
    try:
        with patch("plannercrm.main.SessionLocal", return_value=db_session):
            with TestClient(app) as c:
                yield c
    finally:
        db_session.close = original_close
        app.dependency_overrides.clear()
