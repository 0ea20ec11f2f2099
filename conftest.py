"""Pytest configuration and shared fixtures for the image toolkit."""

# pylint: disable=wrong-import-position

import sys
from pathlib import Path
from unittest import mock

PROJECT_ROOT = Path(__file__).resolve().parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import pytest


@pytest.fixture(autouse=True)
def mock_aws_env_file(tmp_path, monkeypatch):
    """Auto-use fixture that provides a mock .env file for tests requiring credentials.

    This creates a temporary .env file with mock AWS and guest credentials and
    sets AWS_ENV_FILE to point to it.
    """
    env_file = tmp_path / ".env"
    env_file.write_text(
        "AWS_ACCESS_KEY_ID=test_key\n"
        "AWS_SECRET_ACCESS_KEY=test_secret\n"
        "GUEST_ADMIN_USERNAME=builder\n"
        "GUEST_ADMIN_PASSWORD=Secret-Pass1\n"
    )
    monkeypatch.setenv("AWS_ENV_FILE", str(env_file))
    yield str(env_file)


@pytest.fixture(name="temp_db")
def fixture_temp_db(tmp_path):
    """Provide a temporary SQLite path for stateful tests."""
    db_path = tmp_path / "image_build_state.db"
    yield str(db_path)
    db_path.unlink(missing_ok=True)


@pytest.fixture(name="mock_print")
def fixture_mock_print(monkeypatch):
    """Patch builtins.print and return the mock for assertions."""
    patched = mock.Mock()
    monkeypatch.setattr("builtins.print", patched)
    return patched
