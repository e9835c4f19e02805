# tests/conftest.py
"""
Shared fixtures for the pytest test suite.

Database tests get a fresh in-memory SQLite database per test function.
Engine tests that do not need a database use the in-memory repositories in
tests/fixtures/engine_fakes.py through the `engine_store` fixture.
"""
import os

import pytest

# Must be set before the app module reads its configuration
os.environ.setdefault('FLASK_ENV', 'testing')

from app import create_app  # noqa: E402
from extensions import db  # noqa: E402
from tests.fixtures.engine_fakes import NOW, InMemoryEngineStore  # noqa: E402


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def app():
    """
    A Flask application on the testing configuration with every table created.
    Function scoped: each test gets its own in-memory database.
    """
    app = create_app(config_name='testing')

    with app.app_context():
        db.create_all()

        yield app

        db.session.remove()
        db.drop_all()


@pytest.fixture
def db_session(app):
    """The Flask-SQLAlchemy session bound to the test database"""
    return db.session


@pytest.fixture
def engine_store():
    """Empty in-memory store for the fake repositories"""
    return InMemoryEngineStore()
