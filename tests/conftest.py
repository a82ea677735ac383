import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SCHEDULED_WORKER_ENABLED", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import funnelbot.models  # noqa: F401
from funnelbot.database import Base
from funnelbot.services import funnel_service, subscription_service

from tests.helpers import BOT, FUNNEL_NODES, TENANT


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    """Real session on an in-memory SQLite database."""
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def active_funnel(db_session):
    funnel_service.publish(db_session, TENANT, BOT, FUNNEL_NODES)
    funnel_service.set_active(db_session, TENANT, BOT, True)
    db_session.commit()
    return funnel_service.resolve(db_session, TENANT, BOT)


@pytest.fixture
def active_subscription(db_session):
    subscription = subscription_service.create_subscription(db_session, TENANT, "business", "pay-plan", 30)
    db_session.commit()
    return subscription
