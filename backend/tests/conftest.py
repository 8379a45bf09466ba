"""
Shared fixtures for the policy engine tests.

Every test gets a fresh in-memory SQLite database. StaticPool keeps the
single connection alive across the TestClient's worker threads.
"""
import os

# Must be set before shiftguard.database creates its engine
os.environ["DATABASE_URL"] = "sqlite://"

import pytest
from datetime import timedelta
from uuid import uuid4

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from shiftguard.database import Base, get_db
from shiftguard.models.db_models import (
    UserDB, StandingRecordDB, JobDB, JobStatus, UserRole, IdentityStatus,
)
from shiftguard.timeutils import utcnow


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def make_user(db_session):
    """Factory for users with a clean standing record."""

    def _make_user(role=UserRole.WORKER.value, with_standing=True, **fields):
        user_id = str(uuid4())
        user = UserDB(
            id=user_id,
            email=f"{user_id[:8]}@example.com",
            username=f"user-{user_id[:8]}",
            password_hash="not-a-real-hash",
            role=role,
            is_demo=fields.pop("is_demo", False),
            phone_verified=fields.pop("phone_verified", True),
            identity_status=fields.pop("identity_status", IdentityStatus.VERIFIED.value),
            unpaid_debts=fields.pop("unpaid_debts", 0),
            completed_jobs=fields.pop("completed_jobs", 0),
        )
        db_session.add(user)
        if with_standing:
            db_session.add(StandingRecordDB(user_id=user_id, **fields))
        db_session.commit()
        return user

    return _make_user


@pytest.fixture
def make_job(db_session):
    """Factory for jobs starting five hours from now unless told otherwise."""

    def _make_job(owner, status=JobStatus.OPEN, starts_in=timedelta(hours=5), start_time=None):
        job = JobDB(
            id=str(uuid4()),
            owner_id=owner.id,
            title="Warehouse loading",
            status=status,
            start_time=start_time or utcnow() + starts_in,
        )
        db_session.add(job)
        db_session.commit()
        return job

    return _make_job


@pytest.fixture
def client(db_session):
    from fastapi.testclient import TestClient
    from shiftguard.main import app

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_header():
    from shiftguard.auth import create_access_token

    def _auth_header(user):
        token = create_access_token(user.id, user.email, user.role)
        return {"Authorization": f"Bearer {token}"}

    return _auth_header
