"""Shared fixtures for the supervisor tests."""

from __future__ import annotations

import pytest

from tests.helpers import RecordingCommandFactory


@pytest.fixture
def command_factory() -> RecordingCommandFactory:
    return RecordingCommandFactory()


@pytest.fixture
def cleanup_units():
    """Terminates every registered unit after the test, even if it failed."""
    units = []
    yield units.append
    for unit in units:
        unit.terminate()
