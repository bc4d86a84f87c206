"""Pytest configuration and fixtures."""

import os
import tempfile

import pytest
import pytest_asyncio

# Set test environment variables before imports
os.environ["DATABASE_PATH"] = ":memory:"
os.environ["ENCRYPTION_KEY_FILE"] = "/tmp/test_encryption.key"
os.environ["PUBLIC_URL"] = "http://localhost:3000"
os.environ["GOOGLE_CLIENT_ID"] = "client.apps.googleusercontent.com"
os.environ["GOOGLE_CLIENT_SECRET"] = "client-secret"
os.environ["SESSION_SECRET_KEY"] = "test-session-secret"


@pytest.fixture(scope="function")
def test_encryption_key():
    """Create a temporary encryption key for tests."""
    from calsync.encryption import generate_encryption_key

    key = generate_encryption_key()

    with tempfile.NamedTemporaryFile(mode="wb", delete=False, suffix=".key") as f:
        f.write(key)
        key_path = f.name

    os.environ["ENCRYPTION_KEY_FILE"] = key_path

    yield key

    if os.path.exists(key_path):
        os.remove(key_path)


@pytest.fixture(autouse=True)
def encryption(test_encryption_key):
    """Token columns are encrypted, so every test gets a live key."""
    from calsync.encryption import init_encryption_manager

    init_encryption_manager(test_encryption_key)
    yield


@pytest_asyncio.fixture
async def test_db():
    """Create a fresh in-memory database."""
    import calsync.database as db_module
    from calsync.database import close_database, get_database

    db_module._db_connection = None

    db = await get_database()

    yield db

    await close_database()
    db_module._db_connection = None
