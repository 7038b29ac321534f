"""
Unit tests -- session registry.
"""
import time

import pytest

from src.session.backend_client import MockReportingBackend
from src.session.orchestrator import SessionOrchestrator
from src.session.registry import SessionRegistry, get_registry


def _orch(name="alice"):
    return SessionOrchestrator(name, backend=MockReportingBackend())


def test_create_and_get():
    registry = SessionRegistry()
    orch = _orch()
    handle = registry.create(orch)
    assert handle == orch.handle
    assert registry.get(handle) is orch
    assert handle in registry
    assert len(registry) == 1


def test_unknown_handle_raises():
    with pytest.raises(KeyError):
        SessionRegistry().get("missing")


def test_remove():
    registry = SessionRegistry()
    handle = registry.create(_orch())
    assert registry.remove(handle) is True
    assert registry.remove(handle) is False
    assert len(registry) == 0


def test_clear():
    registry = SessionRegistry()
    registry.create(_orch("a"))
    registry.create(_orch("b"))
    assert registry.clear() == 2
    assert len(registry) == 0


def test_singleton():
    assert get_registry() is get_registry()


def test_idle_session_expires():
    registry = SessionRegistry(ttl=0.1)
    handle = registry.create(_orch())
    time.sleep(0.15)
    assert handle not in registry
    with pytest.raises(KeyError):
        registry.get(handle)
    assert registry.stats()["expired"] == 1


def test_get_refreshes_idle_timer():
    registry = SessionRegistry(ttl=0.2)
    handle = registry.create(_orch())
    time.sleep(0.12)
    registry.get(handle)
    time.sleep(0.12)
    assert registry.get(handle).handle == handle


def test_full_registry_evicts_least_recently_used():
    registry = SessionRegistry(max_size=2)
    a = registry.create(_orch("a"))
    b = registry.create(_orch("b"))
    registry.get(a)
    c = registry.create(_orch("c"))

    assert a in registry
    assert c in registry
    assert b not in registry
    assert len(registry) == 2
    assert registry.stats()["evicted"] == 1


def test_cleanup_expired():
    registry = SessionRegistry(ttl=0.1)
    registry.create(_orch("a"))
    registry.create(_orch("b"))
    time.sleep(0.15)
    assert registry.cleanup_expired() == 2
    assert registry.stats()["size"] == 0
