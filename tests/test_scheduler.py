"""Tests for the poll scheduler."""

import asyncio
from unittest.mock import MagicMock

import pytest

from lora_dashboard.scheduler import PollScheduler
from lora_dashboard.sources import SourceError


class FakeSource:
    """Returns queued payloads; raises queued exceptions."""

    def __init__(self, *responses, location: str = "fake") -> None:
        self.location = location
        self._responses = list(responses)
        self.calls = 0

    async def fetch(self) -> str:
        self.calls += 1
        item = self._responses.pop(0) if self._responses else ""
        if isinstance(item, BaseException):
            raise item
        return item


def _scheduler(session, latest, bulk, **kwargs) -> PollScheduler:
    kwargs.setdefault("latest_interval_s", 0.01)
    kwargs.setdefault("bulk_interval_s", 0.01)
    return PollScheduler(session, latest, bulk, **kwargs)


@pytest.mark.asyncio
async def test_poll_latest_forwards_payload() -> None:
    session = MagicMock()
    session.ingest_latest.return_value = True
    scheduler = _scheduler(session, FakeSource('{"id":"P1"}'), FakeSource())
    assert await scheduler.poll_latest() is True
    session.ingest_latest.assert_called_once_with('{"id":"P1"}')


@pytest.mark.asyncio
async def test_fetch_failure_skips_tick() -> None:
    session = MagicMock()
    scheduler = _scheduler(
        session,
        FakeSource(SourceError("down")),
        FakeSource(SourceError("down")),
    )
    assert await scheduler.poll_latest() is False
    assert await scheduler.poll_bulk() is False
    session.ingest_latest.assert_not_called()
    session.ingest_bulk.assert_not_called()


@pytest.mark.asyncio
async def test_poll_bulk_reports_log_change() -> None:
    session = MagicMock()
    session.ingest_bulk.return_value = ["P1 Alert CLEARED"]
    scheduler = _scheduler(session, FakeSource(), FakeSource("lines"))
    assert await scheduler.poll_bulk() is True
    session.ingest_bulk.assert_called_once_with("lines")


@pytest.mark.asyncio
async def test_run_until_shutdown() -> None:
    session = MagicMock()
    session.ingest_bulk.return_value = []
    latest = FakeSource(SourceError("blip"), "a", "b")
    bulk = FakeSource("x")
    scheduler = _scheduler(session, latest, bulk)

    runner = asyncio.create_task(scheduler.run())
    await asyncio.sleep(0.1)
    scheduler.request_shutdown()
    await asyncio.wait_for(runner, timeout=1.0)

    assert latest.calls >= 3
    assert bulk.calls >= 1
    assert session.ingest_latest.call_args_list[0].args == ("a",)


@pytest.mark.asyncio
async def test_cancel_stops_run() -> None:
    session = MagicMock()
    session.ingest_bulk.return_value = []
    scheduler = _scheduler(
        session, FakeSource(), FakeSource(), latest_interval_s=10, bulk_interval_s=10
    )
    runner = asyncio.create_task(scheduler.run())
    await asyncio.sleep(0.05)
    scheduler.cancel()
    await asyncio.wait_for(runner, timeout=1.0)
    assert runner.exception() is None


@pytest.mark.asyncio
async def test_store_write_failure_is_fatal() -> None:
    session = MagicMock()
    session.ingest_bulk.side_effect = PermissionError("read-only store")
    scheduler = _scheduler(session, FakeSource(), FakeSource("line"))

    with pytest.raises(PermissionError):
        await asyncio.wait_for(scheduler.run(), timeout=1.0)
