"""Shared fixtures for sqlsink tests."""

import pytest
from sqlalchemy import create_engine

from helpers import RecordingDiagnostics


@pytest.fixture
def diagnostics():
    return RecordingDiagnostics()


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'logs.db'}"


@pytest.fixture
def engine(db_url):
    e = create_engine(db_url)
    yield e
    e.dispose()
