import os

# Must be set before the application modules read their settings
os.environ["TESTING"] = "1"
os.environ["TEST_DATABASE_URL"] = "sqlite:///./test.db"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-only"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from telehealth.main import app
from telehealth.core.database import Base, get_db, get_redis, seed_admin
from telehealth.schemas.auth import DoctorRegister, UserRegister
from telehealth.services.auth_service import AuthService

# Create test database
SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False}
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    try:
        db = TestingSessionLocal()
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


class RedisMock:
    """Dict-backed stand-in for the handful of Redis commands the API uses."""

    def __init__(self):
        self.data = {}

    def setex(self, key, time, value):
        self.data[key] = str(value)
        return True

    def get(self, key):
        return self.data.get(key)

    def delete(self, key):
        return 1 if self.data.pop(key, None) is not None else 0

    def incr(self, key):
        self.data[key] = str(int(self.data.get(key, "0")) + 1)
        return int(self.data[key])


@pytest.fixture(autouse=True)
def redis_mock():
    mock = RedisMock()
    app.dependency_overrides[get_redis] = lambda: mock
    yield mock
    app.dependency_overrides.pop(get_redis, None)


@pytest.fixture(scope="function")
def test_db():
    # Create tables
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session(test_db):
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def client(test_db):
    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client


# Test data
test_user_data = {
    "email": "test@example.com",
    "password": "TestPassword123",
    "firstName": "Test",
    "lastName": "User"
}

test_login_data = {
    "email": "test@example.com",
    "password": "TestPassword123"
}

test_doctor_data = {
    "email": "doc@example.com",
    "password": "valid-Password1",
    "firstName": "Grace",
    "lastName": "House",
    "specialties": ["Cardiology"],
    "licenseNumber": "LIC-1001",
    "experienceYears": 12
}

test_doctor_login = {
    "email": "doc@example.com",
    "password": "valid-Password1"
}

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "AdminPassword123"


def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def patient(db_session):
    """A registered patient, created through the service layer."""
    response = AuthService(db_session).register_patient(UserRegister(**test_user_data))
    return response


@pytest.fixture
def doctor(db_session):
    response = AuthService(db_session).register_doctor(DoctorRegister(**test_doctor_data))
    return response


@pytest.fixture
def admin_user(db_session):
    return seed_admin(db_session, ADMIN_EMAIL, ADMIN_PASSWORD)


@pytest.fixture
def admin_token(client, admin_user):
    response = client.post(
        "/api/auth/login",
        json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD}
    )
    return response.json()["accessToken"]
