# tests/conftest.py
"""
Shared fixtures for the pytest suite.

The app fixture keeps one application context pushed for the whole module,
so test-client requests reuse it and see the same SQLAlchemy session as the
test body. Each test that touches the database takes ``db_session``, which
empties every table afterwards and drops the cached service instances so
no state leaks between tests.
"""
import os

import pytest
from cryptography.fernet import Fernet

os.environ.setdefault('FLASK_ENV', 'testing')

from app import create_app  # noqa: E402
from extensions import db  # noqa: E402
import inbox_database  # noqa: E402,F401  registers the models for create_all


def _reset_services(app):
    for name in app.services.list_services():
        app.services.reset_service(name)
    app.services.clear_scope('default')


@pytest.fixture(scope='module')
def app():
    """A new Flask application per test module, backed by in-memory SQLite"""
    app = create_app(config_name='testing')

    with app.app_context():
        db.create_all()

        yield app

        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='module')
def client(app):
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """
    The application's session, emptied after the test.

    Services commit for real, so isolation comes from deleting every row
    rather than from rolling back a wrapping transaction.
    """
    _reset_services(app)

    yield db.session

    db.session.rollback()
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()
    _reset_services(app)


@pytest.fixture
def fernet_key():
    return Fernet.generate_key().decode()


@pytest.fixture
def vault(app, db_session):
    """CredentialVault wired to the test database"""
    return app.services.get('credential_vault')


@pytest.fixture
def services(app, db_session):
    """The app's service registry with a clean database behind it"""
    return app.services
