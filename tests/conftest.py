"""
Pytest configuration and fixtures for takeoff import tests.
"""

import os

# Must be set before the API and task modules create their engines
os.environ['DATABASE_URL'] = os.getenv('TEST_DATABASE_URL', 'sqlite://')
os.environ['CELERY_TASK_ALWAYS_EAGER'] = 'true'

from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from backend.models import Base, Project


@pytest.fixture
def engine(tmp_path):
    """
    Create a file-backed SQLite engine per test.

    A file (not :memory:) keeps sessions on separate connections, so a
    rollback in one session cannot discard another session's work.
    """
    eng = create_engine(
        f"sqlite:///{tmp_path / 'takeoff_test.db'}",
        connect_args={'check_same_thread': False, 'timeout': 0.1}
    )
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def session(session_factory):
    """Create a new database session for a test."""
    sess = session_factory()
    yield sess
    sess.close()


@pytest.fixture
def project(session):
    """An empty project to import into."""
    proj = Project(name='Unit 12 Revamp', description='Test project')
    session.add(proj)
    session.commit()
    return proj


@pytest.fixture
def task_db(session_factory, monkeypatch):
    """Point the commit task at the test database and a fake Redis."""
    import tasks.import_tasks as import_tasks

    monkeypatch.setattr(import_tasks, 'get_db_session', session_factory)
    monkeypatch.setattr(import_tasks, 'redis_client', MagicMock())
    return session_factory


@pytest.fixture
def client(task_db, monkeypatch):
    """FastAPI test client bound to the test database."""
    from fastapi.testclient import TestClient

    from api.dependencies import get_db
    from api.main import app
    from api.routers import import_router

    def override_get_db():
        db = task_db()
        try:
            yield db
        finally:
            db.close()

    fake_redis = MagicMock()
    fake_redis.get.return_value = None
    monkeypatch.setattr(import_router, 'redis_client', fake_redis)

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def takeoff_headers():
    """Header row as exported by the takeoff tool."""
    return ['DRAWINGS', 'TYPE', 'QTY', 'Cmdty Code', 'SIZE', 'SPEC', 'SYSTEM', 'Line Number']


def make_row(drawing='P-001', type_='Valve', qty='1', cmdty='VBALU-001', size='2',
             spec='ES-03', system='', line='L-100'):
    """Build a raw row keyed by the takeoff_headers fixture."""
    return {
        'DRAWINGS': drawing,
        'TYPE': type_,
        'QTY': qty,
        'Cmdty Code': cmdty,
        'SIZE': size,
        'SPEC': spec,
        'SYSTEM': system,
        'Line Number': line,
    }


@pytest.fixture
def row_factory():
    return make_row


@pytest.fixture
def hc05_rows():
    """156 distinct valve rows, all in system HC-05."""
    return [
        make_row(drawing=f"P-{i // 10:03d}", cmdty=f"VBALU-{i:03d}", system='HC-05')
        for i in range(156)
    ]


@pytest.fixture
def takeoff_csv():
    """Small CSV export with one unsupported type."""
    return (
        'DRAWINGS,TYPE,QTY,Cmdty Code,SIZE,AREA,Line Number\n'
        'P-001,Valve,2,VBALU-001,2,North,L-100\n'
        'P-001,Pipe,3,PIPE-STD,1/2",North,L-100\n'
        'P-002,Spool,4,SP-01,,South,L-200\n'
        'P-002,Gasket,1,GSK-01,2,South,L-200\n'
    )
