"""Shared fixtures: isolated database, settings and services per test."""

import pytest

from context_optimizer.compression.config import CompressionConfig
from context_optimizer.core.database import DatabaseManager
from context_optimizer.core.secure_config import Settings
from context_optimizer.core.utils.datetime_utils import set_mock_time
from context_optimizer.services.compression_service import CompressionService
from context_optimizer.services.context_store import SQLiteContextStore


@pytest.fixture(autouse=True)
def reset_mock_time():
    """Never leak a mocked clock into the next test."""
    set_mock_time(None)
    yield
    set_mock_time(None)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "context-optimizer-test.db")


@pytest.fixture
def settings(db_path):
    return Settings(overrides={"database": {"path": db_path}})


@pytest.fixture
def db(db_path):
    manager = DatabaseManager(db_path)
    yield manager
    manager.close()


@pytest.fixture
def store(db, settings):
    return SQLiteContextStore(db=db, settings=settings)


@pytest.fixture
def config(settings):
    return CompressionConfig.from_settings(settings)


@pytest.fixture
def service(store, settings):
    return CompressionService(store=store, settings=settings)


def paragraph(seed: int, sentences: int = 4) -> str:
    """Prose paragraph whose words are unique to the seed."""
    return " ".join(
        f"Entry{seed}x{n} explains topic{seed}y{n} with fact{seed}z{n} and result{seed}w{n}."
        for n in range(sentences)
    )


@pytest.fixture
def make_paragraph():
    return paragraph
