# file: tests/conftest.py
from __future__ import annotations

import pytest

from fakes import FakeSimulator, RecordingSource


@pytest.fixture
def source() -> RecordingSource:
    return RecordingSource()


@pytest.fixture
def fake_sim() -> FakeSimulator:
    return FakeSimulator()
