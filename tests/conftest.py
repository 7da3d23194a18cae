import os

# Settings are read at import time, so they must be in place before app is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["STAFF_API_TOKEN"] = "test-staff-token"
os.environ["RENDER_API_SECRET"] = "test-render-secret"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["DB_LOG_SLOW_QUERIES"] = "false"
os.environ.pop("REDIS_URL", None)
os.environ.pop("REDIS_HOST", None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.circuit_breaker import circuit_breaker  # noqa: E402
from app.database import Base, get_db  # noqa: E402
from app.main import app  # noqa: E402
from app.models import Agent, Listing, Staff  # noqa: E402
from app.rate_limiter import reset_rate_limits  # noqa: E402

STAFF_TOKEN = "test-staff-token"
RENDER_SECRET = "test-render-secret"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def reset_state():
    reset_rate_limits()
    circuit_breaker.reset_all()
    yield
    reset_rate_limits()
    circuit_breaker.reset_all()


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def staff_headers():
    return {"Authorization": f"Bearer {STAFF_TOKEN}"}


@pytest.fixture
def render_headers():
    return {"x-asm-secret": RENDER_SECRET}


@pytest.fixture
def agent(db):
    agent = Agent(name="Dana Realtor", email="dana@example.com", phone="4075550100", brand_color="#0f4c81")
    db.add(agent)
    db.commit()
    db.refresh(agent)
    return agent


@pytest.fixture
def listing(db, agent):
    listing = Listing(
        agent_id=agent.id,
        address="123 Lake Eola Dr",
        city="Orlando",
        state="FL",
        zip="32801",
        lat=28.5434,
        lng=-81.3731,
        beds=3,
        baths=2,
        sqft=1850,
        price=450000,
        ops_status="ready_for_qc",
    )
    db.add(listing)
    db.commit()
    db.refresh(listing)
    return listing


@pytest.fixture
def photographer(db):
    staff = Staff(
        name="Pat Shooter",
        email="pat@example.com",
        role="photographer",
        skills=["photography", "drone"],
        certifications=["part_107"],
        home_lat=28.55,
        home_lng=-81.38,
    )
    db.add(staff)
    db.commit()
    db.refresh(staff)
    return staff
