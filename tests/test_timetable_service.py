import asyncio
from datetime import datetime

import pytest

from timetable_sync.errors import FetchNetworkError
from timetable_sync.services.core.cache_manager import SyncReconciler
from timetable_sync.services.core.event_bus import EventBus
from timetable_sync.services.core.fallback import get_sample_week
from timetable_sync.services.core.timetable_service import (
    TIMETABLE_STORAGE_KEY, TimetableService, get_current_or_next_lesson, load_timetable,
)
from timetable_sync.services.parsers.common_structs import empty_week


class FakeClient:
    def __init__(self, timetable=None, substitutions=None, error=None, delay=0.0):
        self.timetable = timetable
        self.substitutions = substitutions
        self.error = error
        self.delay = delay
        self.calls = 0

    async def fetch_timetable(self):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.timetable

    async def fetch_substitutions(self):
        return self.substitutions

    async def close(self):
        pass


def make_service(store, clock, client):
    reconciler = SyncReconciler(store, EventBus(), memory_ttl=30, background_window=300,
                                foreground_window=10, fetch_timeout=1, clock=clock)
    return TimetableService(client, reconciler)


@pytest.mark.asyncio
async def test_timetable_is_ingested_and_saved(snapshot_store, clock, structured_payload):
    client = FakeClient(structured_payload, substitutions=[{"dayIndex": 0, "periodIndex": 0, "room": "B12",
                                                             "substitution": True}])
    service = make_service(snapshot_store, clock, client)

    result = await service.get_timetable()

    lesson = result.week["monday"].lessons[0]
    assert not result.is_fallback
    assert lesson.room == "B12"
    assert lesson.is_substitution
    assert snapshot_store.get(TIMETABLE_STORAGE_KEY)["isFallback"] is False
    await service.close()


@pytest.mark.asyncio
async def test_unrecognized_payload_is_never_saved(snapshot_store, clock):
    service = make_service(snapshot_store, clock, FakeClient({"unexpected": True}))

    result = await service.get_timetable()

    assert result.is_fallback
    assert result.reason == "parse_error"
    assert TIMETABLE_STORAGE_KEY not in snapshot_store
    await service.close()


@pytest.mark.asyncio
async def test_snapshot_is_served_when_offline(snapshot_store, clock, structured_payload):
    online = make_service(snapshot_store, clock, FakeClient(structured_payload))
    await online.get_timetable()
    await online.close()

    clock.advance(3600)
    offline_client = FakeClient(error=FetchNetworkError("offline"))
    offline = make_service(snapshot_store, clock, offline_client)

    result = await offline.get_timetable()
    await asyncio.sleep(0.01)

    assert not result.is_fallback
    assert result.week["monday"].lessons[0].subject == "M"
    # фоновое обновление было, но снимок не испорчен
    assert offline_client.calls == 1
    assert snapshot_store.get(TIMETABLE_STORAGE_KEY)["data"]["monday"]["lessons"][0]["subject"] == "M"
    await offline.close()


@pytest.mark.asyncio
async def test_load_timetable_times_out():
    result = await load_timetable(FakeClient({"monday": []}, delay=1), timeout=0.05)

    assert result.is_fallback
    assert result.reason == "timeout"


@pytest.mark.parametrize("now, subject, day_key, is_current", [
    (datetime(2025, 5, 26, 8, 20), "Mathematics", "monday", True),
    (datetime(2025, 5, 26, 8, 55), "Physics", "monday", True),
    (datetime(2025, 5, 26, 9, 45), "English", "monday", False),
    (datetime(2025, 5, 26, 7, 0), "Mathematics", "monday", False),
    # последний урок среды - 6-й, после него идет четверг
    (datetime(2025, 5, 28, 13, 30), "English", "thursday", False),
    (datetime(2025, 5, 30, 16, 0), "Mathematics", "monday", False),
    (datetime(2025, 5, 31, 10, 0), "Mathematics", "monday", False),
])
def test_current_or_next_lesson(now, subject, day_key, is_current):
    lookup = get_current_or_next_lesson(get_sample_week(), now)

    assert lookup.lesson.subject == subject
    assert lookup.day_key == day_key
    assert lookup.is_current is is_current


def test_no_lessons_at_all():
    assert get_current_or_next_lesson(empty_week(), datetime(2025, 5, 26, 9, 0)).lesson is None
