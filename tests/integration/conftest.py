# tests/integration/conftest.py
# Pytest fixtures to start Redis via TestContainers.
# - Provides the connection URL via a fixture and the REDIS_URL environment variable.
# - Cleans up the container after the test session.

import os
from typing import Iterator

import pytest  # type: ignore[import-not-found]
from testcontainers.redis import RedisContainer  # type: ignore


def _connection_url(container: RedisContainer) -> str:
    host = container.get_container_host_ip()
    port = container.get_exposed_port(6379)
    return f"redis://{host}:{port}/0"


@pytest.fixture(scope="session")
def redis_url() -> Iterator[str]:
    # start test container (Redis)
    with RedisContainer("redis:7-alpine") as rc:
        yield _connection_url(rc)
        # container stops via context manager


@pytest.fixture(scope="session", autouse=True)
def inject_env(redis_url: str):
    """Point the app under test at the container instead of any local Redis."""
    old_redis = os.environ.get("REDIS_URL")
    os.environ["REDIS_URL"] = redis_url
    yield
    if old_redis is None:
        os.environ.pop("REDIS_URL", None)
    else:
        os.environ["REDIS_URL"] = old_redis
