import asyncio

import pytest
from fastapi.testclient import TestClient

from config import Settings
from main import create_app
from storage import MemoryStorage


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def memory_storage():
    return MemoryStorage()


@pytest.fixture
def settings():
    return Settings(environment="development")


@pytest.fixture
def client(memory_storage, settings):
    app = create_app(storage=memory_storage, settings=settings)
    with TestClient(app) as c:
        yield c
