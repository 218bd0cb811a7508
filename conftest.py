"""
Shared pytest fixtures.
"""

import shlex
import sys
from datetime import datetime
from typing import Any, List, Tuple

import pytest


class RecordingLog:
    """
    Log sink that keeps every call for assertions.

    Records are (level, label, description, body) tuples.
    """

    def __init__(self):
        self.records: List[Tuple[str, str, str, Any]] = []

    def info(self, label, description, body=None):
        self.records.append(("info", label, description, body))

    def warning(self, label, description, body=None):
        self.records.append(("warning", label, description, body))

    def error(self, label, description, body=None):
        self.records.append(("error", label, description, body))

    def debug(self, label, description, body=None):
        self.records.append(("debug", label, description, body))

    def system(self, label, description, body=None):
        self.records.append(("system", label, description, body))

    def messages(self, level: str) -> List[str]:
        return [description for lvl, _, description, _ in self.records if lvl == level]


class FixedClock:
    """Clock returning a settable instant."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture()
def recording_log() -> RecordingLog:
    return RecordingLog()


@pytest.fixture()
def python_command():
    """Build a command line running a Python snippet with this interpreter."""

    def build(code: str, *extra: str) -> str:
        parts = [sys.executable, "-c", code, *extra]
        return " ".join(shlex.quote(p) for p in parts)

    return build


@pytest.fixture()
def fixed_clock() -> FixedClock:
    return FixedClock(datetime(2024, 1, 15, 10, 30))
