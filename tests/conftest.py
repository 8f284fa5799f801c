import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.core.database import Base, get_db
from app.core.exceptions import StorageFailure
from app.models.user import User
from app.utils.blob_storage import get_blob_storage

# Sử dụng SQLite in-memory database cho testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class InMemoryBlobStorage:
    """Stand-in for the Supabase bucket that keeps objects in a dict."""

    def __init__(self):
        self.objects = {}
        self.deleted = []
        self.fail_put = False
        self.fail_delete = False

    def put(self, path, data, content_type=None):
        if self.fail_put:
            raise StorageFailure(f"Could not store file {path}")
        self.objects[path] = (data, content_type)
        return path

    def delete(self, paths):
        paths = list(paths)
        if self.fail_delete:
            raise StorageFailure(f"Could not delete {len(paths)} object(s)")
        for path in paths:
            self.objects.pop(path, None)
            self.deleted.append(path)

    def list(self, prefix):
        return [{"name": path} for path in self.objects if path.startswith(prefix)]

    def public_url(self, path):
        return f"https://storage.test/uploads/{path}"

    def thumbnail_url(self, path, size):
        return f"https://storage.test/render/uploads/{path}?width={size}&height={size}"


@pytest.fixture(scope="function")
def db_session():
    """Fresh database for every test"""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def blob_storage():
    return InMemoryBlobStorage()


@pytest.fixture(scope="function")
def client(db_session, blob_storage):
    """Test client wired to the test session and in-memory storage"""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_blob_storage] = lambda: blob_storage

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def create_test_user(db_session):
    """Factory fixture to create users"""
    from app.core.security import get_password_hash

    def _create_user(email="testuser@example.com", name="Test User", password="TestPassword123!"):
        user = User(
            name=name,
            email=email,
            passwordhash=get_password_hash(password),
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _create_user


@pytest.fixture
def auth_headers():
    from app.core.security import create_access_token

    def _headers(user):
        token = create_access_token(data={"sub": user.email})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def authenticated_client(client, create_test_user, auth_headers):
    """Client carrying a valid access token"""
    user = create_test_user()
    client.headers.update(auth_headers(user))
    return client, user
