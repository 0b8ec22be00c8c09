from __future__ import annotations

import pytest
from click.testing import CliRunner

from tests.helpers.fakes import FakeClock, RecordingSleep


@pytest.fixture
def runner() -> CliRunner:
    """Provide a Click runner configured for CLI smoke tests."""

    return CliRunner()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recording_sleep(fake_clock: FakeClock) -> RecordingSleep:
    """Sleep double that advances ``fake_clock`` instead of waiting."""

    return RecordingSleep(fake_clock)
