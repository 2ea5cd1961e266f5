# timetable_sync/services/core/timetable_service.py

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from config import Config
from timetable_sync.errors import FormatUnrecognized
from timetable_sync.services.clients.timetable_client import TimetableClient
from timetable_sync.services.core.cache_manager import Resource, SyncReconciler
from timetable_sync.services.core.fallback import classify_failure, fallback_result
from timetable_sync.services.core.ingestion import ingest_timetable, result_from_dict
from timetable_sync.services.parsers.common_structs import ALL_DAYS, WEEKDAYS, Lesson, TimetableResult, Week
from timetable_sync.services.parsers.format_adapters import describe_payload
from timetable_sync.services.utils.bell_schedule import UNKNOWN_TIME, parse_time_to_minutes


log = logging.getLogger(__name__)

TIMETABLE_RESOURCE = "timetable"
TIMETABLE_STORAGE_KEY = "timetableEntries"


async def load_timetable(client: TimetableClient, timeout: Optional[float] = None) -> TimetableResult:
    """
    Разовая загрузка без кэша: запрос -> прием -> замены.
    Если источник не ответил за timeout секунд - запасные данные с причиной 'timeout'.
    """
    timeout = Config.FETCH_TIMEOUT if timeout is None else timeout
    try:
        raw = await asyncio.wait_for(client.fetch_timetable(), timeout=timeout)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        reason = classify_failure(e)
        log.warning(f"Расписание не загружено ({reason}): {e}")
        return fallback_result(reason)

    substitutions = await client.fetch_substitutions()
    return ingest_timetable(raw, substitutions)


class TimetableService:
    """Расписание через синхронизатор: снимок 'timetableEntries', событие 'timetableUpdated'."""

    def __init__(self, client: Optional[TimetableClient] = None, reconciler: Optional[SyncReconciler] = None):
        self.client = client or TimetableClient()
        self.reconciler = reconciler or SyncReconciler()
        self.reconciler.register(Resource(
            name=TIMETABLE_RESOURCE,
            storage_key=TIMETABLE_STORAGE_KEY,
            fetch=self._fetch,
            encode=lambda result: result.to_dict(),
            decode=result_from_dict,
            fallback=fallback_result,
        ))

    async def _fetch(self) -> TimetableResult:
        raw = await self.client.fetch_timetable()
        substitutions = await self.client.fetch_substitutions()
        result = ingest_timetable(raw, substitutions)
        if result.is_fallback:
            # Нераспознанный ответ не должен попасть в снимок
            raise FormatUnrecognized(describe_payload(raw))
        return result

    async def get_timetable(self, force_refresh: bool = False) -> TimetableResult:
        return await self.reconciler.get(TIMETABLE_RESOURCE, force_refresh=force_refresh)

    async def close(self) -> None:
        await self.reconciler.close()
        await self.client.close()


@dataclass(frozen=True)
class LessonLookup:
    lesson: Optional[Lesson]
    day_key: str
    is_current: bool = False


def _has_known_time(lesson: Lesson) -> bool:
    return not (lesson.start_time == UNKNOWN_TIME and lesson.end_time == UNKNOWN_TIME)


def _first_lesson_from(week: Week, start_index: int) -> Optional[LessonLookup]:
    """Первый урок первого учебного дня с уроками, начиная с WEEKDAYS[start_index] по кругу."""
    for offset in range(len(WEEKDAYS)):
        day_key = WEEKDAYS[(start_index + offset) % len(WEEKDAYS)]
        day = week.get(day_key)
        if day and day.lessons:
            return LessonLookup(lesson=day.lessons[0], day_key=day_key)
    return None


def get_current_or_next_lesson(week: Week, now: Optional[datetime] = None) -> LessonLookup:
    """
    Текущий урок, иначе следующий урок сегодня, иначе первый урок ближайшего
    следующего учебного дня. В выходные - первый урок недели.
    """
    now = now or datetime.now()
    today = ALL_DAYS[now.weekday()]

    if not week:
        return LessonLookup(lesson=None, day_key="monday")

    if today not in WEEKDAYS:
        return _first_lesson_from(week, 0) or LessonLookup(lesson=None, day_key="monday")

    minutes = now.hour * 60 + now.minute
    day = week.get(today)
    if day and day.lessons:
        upcoming = None
        for lesson in day.lessons:
            if not _has_known_time(lesson):
                continue
            start = parse_time_to_minutes(lesson.start_time)
            end = parse_time_to_minutes(lesson.end_time)
            if start <= minutes < end:
                return LessonLookup(lesson=lesson, day_key=today, is_current=True)
            if start > minutes and (upcoming is None or start < parse_time_to_minutes(upcoming.start_time)):
                upcoming = lesson
        if upcoming is not None:
            return LessonLookup(lesson=upcoming, day_key=today)

    next_index = WEEKDAYS.index(today) + 1
    return _first_lesson_from(week, next_index) or LessonLookup(lesson=None, day_key=today)
