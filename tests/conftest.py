"""
CRM API - Test Configuration and Fixtures
Provides an in-memory database, an API client and a small team of managers
"""

import os
import sys
import tempfile
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

# Settings are read once, so the environment is prepared before crm_api is imported
_TMP_DIR = Path(tempfile.mkdtemp(prefix='crm_api_tests_'))
os.environ.setdefault('DATABASE_URL', 'sqlite://')
os.environ.setdefault('SECRET_KEY', 'test-secret-key')
os.environ['LOG_DIR'] = str(_TMP_DIR / 'logs')
os.environ['UPLOAD_DIR'] = str(_TMP_DIR / 'uploads')

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from crm_api.auth import create_access_token, get_password_hash
from crm_api.database import Base, Manager, get_db
from crm_api.file_storage import LocalFileStorage, get_file_storage
from crm_api.main import app

TEST_PASSWORD = 'secret123'

engine = create_engine(
    'sqlite://',
    connect_args={'check_same_thread': False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


# ============================================================================
# SESSION FIXTURES
# ============================================================================

@pytest.fixture(scope='session')
def project_root() -> Path:
    """Return project root directory"""
    return PROJECT_ROOT


@pytest.fixture(scope='session')
def password_hash() -> str:
    """bcrypt is slow, hash the shared test password once"""
    return get_password_hash(TEST_PASSWORD)


# ============================================================================
# DATABASE FIXTURES
# ============================================================================

@pytest.fixture
def db_session():
    """Fresh schema for every test"""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_manager(db_session, password_hash):
    """Factory: make_manager('head', supervisors=[admin]) -> Manager"""
    counter = {'n': 0}

    def _make(role='manager', email=None, supervisors=(), first_name=None):
        counter['n'] += 1
        manager = Manager(
            first_name=first_name or f'{role.title()}{counter["n"]}',
            last_name='Test',
            email=email or f'{role}{counter["n"]}@example.com',
            role=role,
            password_hash=password_hash,
        )
        manager.supervisors = list(supervisors)
        db_session.add(manager)
        db_session.commit()
        db_session.refresh(manager)
        return manager

    return _make


@pytest.fixture
def team(make_manager):
    """
    admin (id=1), head H (id=2), manager M (id=3) supervised by H,
    manager O (id=4) with no supervisors
    """
    admin = make_manager('admin', email='admin@example.com')
    head = make_manager('head', email='head@example.com')
    manager = make_manager('manager', email='m@example.com', supervisors=[head])
    other = make_manager('manager', email='o@example.com')
    return {'admin': admin, 'head': head, 'manager': manager, 'other': other}


def auth_headers(manager) -> dict:
    return {'Authorization': f'Bearer {create_access_token(manager)}'}


@pytest.fixture
def auth_for():
    """auth_for(manager) -> Authorization header"""
    return auth_headers


@pytest.fixture
def headers(team):
    """Bearer headers per team member"""
    return {name: auth_headers(member) for name, member in team.items()}


# ============================================================================
# API CLIENT
# ============================================================================

@pytest.fixture
def upload_dir(tmp_path) -> Path:
    return tmp_path / 'uploads'


@pytest.fixture
def client(db_session, upload_dir):
    """TestClient bound to the in-memory database and a temporary upload dir"""

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    storage = LocalFileStorage(base_dir=str(upload_dir), max_size=1024)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_file_storage] = lambda: storage
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
