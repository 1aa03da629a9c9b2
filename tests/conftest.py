"""Pytest configuration and shared fixtures."""

import pytest
from fakes import FakeEngine

from compose_exec.config import settings
from compose_exec.models import ProjectContext, ServiceDescriptor


@pytest.fixture(autouse=True)
def fast_lifecycle(monkeypatch):
    """Short timeouts and no process signal handlers unless a test opts in."""
    monkeypatch.setattr(settings, "stop_grace_seconds", 0.2)
    monkeypatch.setattr(settings, "kill_timeout_seconds", 0.5)
    monkeypatch.setattr(settings, "remove_timeout_seconds", 1.0)
    monkeypatch.setattr(settings, "inspect_timeout_seconds", 0.5)
    monkeypatch.setattr(settings, "stdin_drain_timeout_seconds", 0.5)
    monkeypatch.setattr(settings, "health_poll_interval_seconds", 0.01)
    monkeypatch.setattr(settings, "handle_signals", False)


@pytest.fixture
def fake_engine():
    """Fake engine whose containers exit 0 without output."""
    return FakeEngine()


@pytest.fixture
def project(tmp_path):
    """Project context rooted in a temporary directory."""
    return ProjectContext(name="myproj", working_dir=str(tmp_path))


@pytest.fixture
def service():
    """Minimal runnable service."""
    return ServiceDescriptor(name="app", image="alpine:3.20")
