"""
Pytest configuration and fixtures for CSV email flagger tests.
"""

import os
import shutil
import sys
import tempfile

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

# Enable testing mode - must be set before importing app
os.environ["TESTING"] = "1"

# Create a temporary directory for test storage
_test_temp_dir = tempfile.mkdtemp(prefix="email_flagger_test_")
os.environ["STORAGE_DIR"] = _test_temp_dir

# Import config first to apply the settings
import config  # noqa: E402

# Force reload config values after setting env vars
config.Config.STORAGE_DIR = _test_temp_dir

import job_state  # noqa: E402
import storage  # noqa: E402
from app import app as flask_app  # noqa: E402


def pytest_configure(config):
    """Ensure storage is set up before tests."""
    storage.ensure_storage_dirs()


def pytest_unconfigure(config):
    """Clean up temporary directory."""
    global _test_temp_dir
    if _test_temp_dir and os.path.exists(_test_temp_dir):
        shutil.rmtree(_test_temp_dir, ignore_errors=True)


@pytest.fixture(autouse=True)
def reset_registry_and_storage():
    """Start every test with an empty registry and empty storage directories."""
    job_state.reset_job_registry()
    config.Config.set_time_provider(None)

    uploads_dir = os.path.join(config.Config.STORAGE_DIR, "uploads")
    outputs_dir = os.path.join(config.Config.STORAGE_DIR, "outputs")

    for directory in [uploads_dir, outputs_dir]:
        if os.path.exists(directory):
            for item in os.listdir(directory):
                path = os.path.join(directory, item)
                if os.path.isdir(path):
                    shutil.rmtree(path, ignore_errors=True)
                else:
                    os.remove(path)

    yield


@pytest.fixture
def app():
    """Create application for testing."""
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()
