"""Shared fixtures."""

from datetime import datetime, timedelta

import pytest

from lora_dashboard.store import AlertLogStore, JsonFileStore


class FakeClock:
    """Deterministic clock; advance it explicitly."""

    def __init__(self, start: datetime = datetime(2025, 3, 1, 9, 30, 0)) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def kv_store(tmp_path) -> JsonFileStore:
    return JsonFileStore(tmp_path / "state" / "store.json")


@pytest.fixture
def log_store(kv_store, clock) -> AlertLogStore:
    return AlertLogStore(kv_store, clock=clock)
