import asyncio

import pytest

from timetable_sync.errors import (
    FetchHttpError, FetchNetworkError, FetchParseError, FetchTimeout, FormatUnrecognized,
)
from timetable_sync.services.core.fallback import (
    SAMPLE_WEEK,
    classify_failure,
    fallback_result,
    get_sample_week,
    get_status_message,
    is_fallback_data,
    is_permanent_failure,
)
from timetable_sync.services.core.ingestion import ingest_timetable
from timetable_sync.services.core.timetable_service import load_timetable
from timetable_sync.services.parsers.common_structs import week_to_dict


class HangingClient:
    async def fetch_timetable(self):
        await asyncio.sleep(3600)

    async def fetch_substitutions(self):
        return None


class StaticClient:
    def __init__(self, payload, substitutions=None):
        self.payload = payload
        self.substitutions = substitutions

    async def fetch_timetable(self):
        return self.payload

    async def fetch_substitutions(self):
        return self.substitutions


@pytest.mark.parametrize("error, reason", [
    (FetchTimeout(5), "timeout"),
    (asyncio.TimeoutError(), "timeout"),
    (FetchParseError("bad json"), "parse_error"),
    (FormatUnrecognized("{}"), "parse_error"),
    (FetchHttpError(404, "http://x"), "client_status_404"),
    (FetchNetworkError("reset"), "network_error"),
    (RuntimeError("?"), "unknown"),
])
def test_classify_failure(error, reason):
    assert classify_failure(error) == reason


def test_classify_failure_by_status():
    assert classify_failure(status=429) == "client_status_429"


@pytest.mark.parametrize("payload", [{}, None, "not a timetable"])
def test_unusable_payload_gives_sample_week(payload):
    result = ingest_timetable(payload)

    assert result.is_fallback is True
    assert result.reason in ("parse_error", "unknown")
    assert week_to_dict(result.week) == week_to_dict(SAMPLE_WEEK)


def test_fallback_week_is_a_copy():
    result = fallback_result("timeout")
    result.week["monday"].lessons.clear()

    assert SAMPLE_WEEK["monday"].lessons
    assert get_sample_week()["monday"].lessons


def test_sample_times_come_from_bell_schedule():
    lesson = SAMPLE_WEEK["wednesday"].lessons[3]
    assert (lesson.period_number, lesson.start_time, lesson.end_time) == (5, "11:50", "12:35")


@pytest.mark.asyncio
async def test_fetch_that_never_resolves_gives_timeout_fallback():
    result = await load_timetable(HangingClient(), timeout=0.05)

    assert result.is_fallback is True
    assert result.reason == "timeout"
    assert week_to_dict(result.week) == week_to_dict(SAMPLE_WEEK)


@pytest.mark.asyncio
async def test_load_timetable_applies_substitutions(structured_payload):
    client = StaticClient(structured_payload, [{"dayIndex": 0, "periodIndex": 0, "cancelled": True}])

    result = await load_timetable(client, timeout=1)

    assert result.is_fallback is False
    assert result.adapter == "structured"
    assert result.week["monday"].lessons[0].is_cancelled is True


def test_is_fallback_data():
    assert is_fallback_data(fallback_result("timeout"))
    assert is_fallback_data({"isFallback": True})
    # узнается по дате демо-недели даже без флага
    assert is_fallback_data(week_to_dict(SAMPLE_WEEK))
    assert is_fallback_data({"data": week_to_dict(SAMPLE_WEEK)})
    assert not is_fallback_data({"monday": {"date": "2025-09-01", "lessons": []}})
    assert not is_fallback_data(None)


@pytest.mark.parametrize("reason, fragment, permanent", [
    ("client_status_429", "rate limited", False),
    ("client_status_404", "not found", True),
    ("client_status_403", "denied", True),
    ("client_status_503", "server error (503)", False),
    ("timeout", "timed out", False),
    ("parse_error", "could not be parsed", True),
    ("network_error", "could not be reached", False),
    ("unknown", "Showing sample data", False),
])
def test_status_message_and_permanence(reason, fragment, permanent):
    result = fallback_result(reason)

    assert fragment in get_status_message(result)
    assert is_permanent_failure(result) is permanent


def test_real_data_has_no_status_message(structured_payload):
    result = ingest_timetable(structured_payload)

    assert get_status_message(result) == ""
    assert is_permanent_failure(result) is False
