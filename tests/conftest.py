"""Pytest configuration and fixtures for Flowstate tests."""

import pytest

from flowstate import FilePersistence, MemoryPersistence, SQLitePersistence, WorkflowState


@pytest.fixture
def memory_backend():
    """Create an in-memory persistence backend."""
    return MemoryPersistence()


@pytest.fixture
def file_backend(tmp_path):
    """Create a file persistence backend in a temporary directory."""
    return FilePersistence(tmp_path / "interrupts")


@pytest.fixture
def sqlite_backend(tmp_path):
    """Create a SQLite persistence backend in a temporary database."""
    return SQLitePersistence(str(tmp_path / "flowstate.db"))


@pytest.fixture(params=["memory", "file", "sqlite"])
def backend(request, tmp_path):
    """Every persistence backend, one test run each."""
    if request.param == "memory":
        return MemoryPersistence()
    if request.param == "file":
        return FilePersistence(tmp_path / "interrupts")
    return SQLitePersistence(str(tmp_path / "flowstate.db"))


@pytest.fixture
def state():
    """Create an empty workflow state."""
    return WorkflowState()
