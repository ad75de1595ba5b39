"""Expose the project root on sys.path for pytest runs."""

from __future__ import annotations

import sys

from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from polyrun.registry import RunnerRegistry  # noqa: E402
from tests.sample_runners import RecordingRunner  # noqa: E402


@pytest.fixture()
def fake_runner() -> RecordingRunner:
    """Return a supported recording runner named ``Fake``."""

    return RecordingRunner()


@pytest.fixture()
def registry(fake_runner: RecordingRunner) -> RunnerRegistry:
    """Return an isolated registry holding only ``fake_runner``."""

    return RunnerRegistry([fake_runner])
