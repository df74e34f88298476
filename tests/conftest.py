"""Shared test fixtures for the studio booking tests."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DB_LOG_SLOW_QUERIES", "false")

import threading  # noqa: E402
from concurrent.futures import ThreadPoolExecutor  # noqa: E402
from datetime import date, datetime, time, timedelta  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from studio.auth import create_access_token  # noqa: E402
from studio.database import Base, get_db  # noqa: E402
from studio.domain.catalog import ServiceKey  # noqa: E402
from studio.domain.credits import ledger  # noqa: E402
from studio.errors import StudioError  # noqa: E402
from studio.main import app  # noqa: E402
from studio.models import Appointment, AppointmentStatus, User, UserRole  # noqa: E402
from studio.services.notification_service import (  # noqa: E402
    InMemoryNotificationQueue,
    get_notification_queue,
)
from studio.shared.clock import FrozenClock, get_clock  # noqa: E402

# Monday 09:00 venue time
NOW = datetime(2026, 3, 2, 9, 0)

# Wednesday 10:00, 49 hours ahead: outside the near-slot window and past the 48h token cap
FAR_DATE = date(2026, 3, 4)
FAR_TIME = time(10, 0)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def file_engine(tmp_path):
    """File-backed SQLite so every thread gets its own connection and real locking."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'studio.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


def run_concurrently(engine, calls) -> list[str]:
    """
    Run each ``call(session)`` on its own thread and session, all released at once.

    Returns "ok" or the business error class name for every call, in order.
    """
    barrier = threading.Barrier(len(calls))
    make_session = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    def _run(call):
        session = make_session()
        try:
            barrier.wait()
            call(session)
            return "ok"
        except StudioError as e:
            return type(e).__name__
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=len(calls)) as pool:
        return list(pool.map(_run, calls))


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(NOW)


@pytest.fixture
def queue() -> InMemoryNotificationQueue:
    return InMemoryNotificationQueue()


@pytest.fixture
def make_user(db):
    """Factory for committed users; members signed up 5 days ago by default."""
    counter = {"n": 0}

    def _make(
        name: str = "Member",
        role: str = UserRole.CLIENT,
        credits: int = 0,
        scope: str = "EP",
        created_at: datetime = NOW - timedelta(days=5),
        **fields,
    ) -> User:
        counter["n"] += 1
        user = User(
            name=name,
            last_name=f"Test{counter['n']}",
            email=f"{name.lower()}{counter['n']}@example.com",
            role=role,
            created_at=created_at,
            **fields,
        )
        db.add(user)
        db.flush()
        if credits:
            ledger.add_lot(user, credits, scope, "purchase", NOW)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def reserve(db):
    """Insert a reserved appointment directly, skipping booking rules."""

    def _reserve(user: User, slot_date: date = FAR_DATE, slot_time: time = FAR_TIME, service=ServiceKey.EP):
        appointment = Appointment(
            user_id=user.id,
            date=slot_date,
            time=slot_time,
            service=service,
            status=AppointmentStatus.RESERVED,
            created_at=NOW - timedelta(days=1),
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    return _reserve


@pytest.fixture
def client(db, clock, queue):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_notification_queue] = lambda: queue
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}
