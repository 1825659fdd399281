"""
Pytest fixtures for the cluster tests.
"""

import time

import pytest

from cluster.registry import MembershipRegistry
from zk_fake import FakeZooKeeper

REGISTRY_ROOT = "/service_registry"


@pytest.fixture(scope="function")
def zk_server():
    """A fresh in-memory ZooKeeper per test."""
    return FakeZooKeeper()


@pytest.fixture(scope="function")
def make_client(zk_server):
    """Factory for started sessions on the shared server."""
    clients = []

    def _make():
        c = zk_server.client()
        c.start()
        clients.append(c)
        return c

    yield _make

    for c in clients:
        c.stop()


@pytest.fixture(scope="function")
def make_registry(make_client):
    """Factory for registries, each on its own session."""
    registries = []

    def _make(zk=None, **kwargs):
        kwargs.setdefault("retry_interval", 0.05)
        registry = MembershipRegistry(zk or make_client(), registry_root=REGISTRY_ROOT, **kwargs)
        registries.append(registry)
        return registry

    yield _make

    for registry in registries:
        registry.close()


@pytest.fixture(scope="function")
def registry(make_registry):
    """A registry whose root already exists."""
    r = make_registry()
    r.ensure_registry_exists()
    return r


def wait_until(predicate, timeout=3.0, interval=0.02):
    """Poll predicate until it holds; the refresher runs on its own thread."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def eventually():
    return wait_until
