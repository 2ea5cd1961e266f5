# timetable_sync/services/core/fallback.py

import asyncio
import json
import logging
from typing import Any, List, Optional, Tuple, Union

from timetable_sync.errors import (
    FetchHttpError, FetchNetworkError, FetchParseError, FetchTimeout, FormatUnrecognized, RemoteWriteError,
)
from timetable_sync.services.parsers.common_structs import Day, Lesson, TimetableResult, Week, copy_week
from timetable_sync.services.utils.bell_schedule import format_period_time, resolve_period_times


log = logging.getLogger(__name__)

REASON_TIMEOUT = "timeout"
REASON_PARSE_ERROR = "parse_error"
REASON_NETWORK_ERROR = "network_error"
REASON_UNKNOWN = "unknown"
STATUS_PREFIX = "client_status_"

# Дата понедельника в демо-данных, по ней запасные данные узнаются даже без флага
SAMPLE_SIGNATURE_DATE = "2025-05-26"

PERMANENT_STATUS_CODES = ("401", "403", "404")


def _lesson(period: int, subject: str, teacher: str, room: str, notes: str = '') -> Lesson:
    start, end = resolve_period_times(period)
    return Lesson(period_number=period, start_time=start, end_time=end, subject=subject,
                  teacher=teacher, room=room, notes=notes, period_label=format_period_time(period))


def _day(day_name: str, date: str, lessons: List[Tuple]) -> Day:
    return Day(day_name=day_name, date=date, lessons=[_lesson(*item) for item in lessons])


SAMPLE_WEEK: Week = {
    "monday": _day("Monday", SAMPLE_SIGNATURE_DATE, [
        (1, "Mathematics", "Mrs. Johnson", "201"),
        (2, "Physics", "Mr. Roberts", "309"),
        (3, "English", "Ms. Smith", "105"),
        (4, "History", "Mr. Peterson", "218"),
        (5, "Computer Science", "Mrs. Davis", "302", "Bring your laptop"),
    ]),
    "tuesday": _day("Tuesday", "2025-05-27", [
        (1, "Biology", "Dr. Wilson", "311"),
        (2, "Biology", "Dr. Wilson", "311"),
        (3, "German", "Mr. Weber", "112"),
        (4, "Art", "Ms. Garcia", "Art Studio"),
    ]),
    "wednesday": _day("Wednesday", "2025-05-28", [
        (1, "Chemistry", "Dr. Brown", "Lab 1"),
        (2, "Chemistry", "Dr. Brown", "Lab 1"),
        (3, "Mathematics", "Mrs. Johnson", "201"),
        (5, "Physical Education", "Mr. Thompson", "Gym"),
        (6, "Physical Education", "Mr. Thompson", "Gym"),
    ]),
    "thursday": _day("Thursday", "2025-05-29", [
        (1, "English", "Ms. Smith", "105"),
        (2, "Geography", "Mrs. Miller", "220"),
        (3, "Physics", "Mr. Roberts", "309"),
        (4, "Music", "Mr. Anderson", "Music Room"),
    ]),
    "friday": _day("Friday", "2025-05-30", [
        (1, "History", "Mr. Peterson", "218"),
        (2, "German", "Mr. Weber", "112"),
        (3, "Computer Science", "Mrs. Davis", "302"),
        (4, "Mathematics", "Mrs. Johnson", "201"),
    ]),
}


def get_sample_week() -> Week:
    """Копия демо-недели. Общий экземпляр никогда не отдается наружу."""
    return copy_week(SAMPLE_WEEK)


def fallback_result(reason: Optional[str] = None) -> TimetableResult:
    """Запасной результат с демо-данными и причиной."""
    reason = reason or REASON_UNKNOWN
    log.warning(f"Используются запасные данные расписания (причина: {reason})")
    return TimetableResult(week=get_sample_week(), is_fallback=True, reason=reason)


def classify_failure(error: Optional[BaseException] = None, status: Optional[int] = None) -> str:
    """
    Определяет код причины по исключению или HTTP-статусу.
    timeout -> 'timeout', тело не JSON / формат не распознан -> 'parse_error',
    HTTP-код -> 'client_status_{code}'.
    Для RemoteWriteError причина берется из исходной ошибки запроса.
    """
    if isinstance(error, RemoteWriteError) and error.__cause__ is not None:
        return classify_failure(error.__cause__)
    if status is not None:
        return f"{STATUS_PREFIX}{status}"
    if isinstance(error, FetchHttpError):
        return f"{STATUS_PREFIX}{error.status}"
    if isinstance(error, (FetchTimeout, asyncio.TimeoutError, TimeoutError)):
        return REASON_TIMEOUT
    if isinstance(error, (FetchParseError, FormatUnrecognized, json.JSONDecodeError)):
        return REASON_PARSE_ERROR
    if isinstance(error, (FetchNetworkError, ConnectionError)):
        return REASON_NETWORK_ERROR
    return REASON_UNKNOWN


def is_fallback_data(data: Union[TimetableResult, Week, dict, None]) -> bool:
    """Признак запасных данных: флаг isFallback или дата-подпись демо-недели."""
    if not data:
        return False
    if isinstance(data, TimetableResult):
        return data.is_fallback or is_fallback_data(data.week)
    if isinstance(data, dict):
        if data.get('isFallback'):
            return True
        monday = data.get('monday')
        if isinstance(monday, Day):
            return monday.date == SAMPLE_SIGNATURE_DATE
        if isinstance(monday, dict):
            return monday.get('date') == SAMPLE_SIGNATURE_DATE
        if isinstance(data.get('data'), dict):
            return is_fallback_data(data['data'])
    return False


def _reason_of(data: Any) -> str:
    if isinstance(data, TimetableResult):
        return data.reason or ''
    if isinstance(data, dict):
        return str(data.get('reason') or '')
    return ''


def get_status_message(data: Union[TimetableResult, dict]) -> str:
    """Понятное пользователю сообщение для баннера. Для настоящих данных - пустая строка."""
    if not is_fallback_data(data):
        return ''

    message = 'The timetable API is currently unavailable. Showing sample data instead.'
    reason = _reason_of(data)

    if reason.startswith(STATUS_PREFIX):
        code = reason[len(STATUS_PREFIX):]
        messages = {
            '429': 'The timetable API is rate limited (429). Please try again later.',
            '404': 'The timetable API endpoint was not found (404). Please check the configuration.',
            '403': 'Access to the timetable API was denied (403). Authentication may be required.',
            '401': 'The timetable API requires authentication (401). Please check the credentials.',
        }
        if code in messages:
            message = messages[code]
        elif code.startswith('5'):
            message = f'The timetable API encountered a server error ({code}). Please try again later.'
    elif reason == REASON_TIMEOUT:
        message = 'The timetable API request timed out. Please try again later.'
    elif reason == REASON_PARSE_ERROR:
        message = 'The timetable data could not be parsed. The API may have changed format.'
    elif reason == REASON_NETWORK_ERROR:
        message = 'The timetable API could not be reached. Check your connection.'

    return message


def is_permanent_failure(data: Union[TimetableResult, dict]) -> bool:
    """
    401/403/404 и parse_error - проблемы конфигурации, сами не пройдут.
    Таймауты, 5xx и 429 считаются временными.
    """
    if not is_fallback_data(data):
        return False
    reason = _reason_of(data)
    if reason == REASON_PARSE_ERROR:
        return True
    if reason.startswith(STATUS_PREFIX):
        return reason[len(STATUS_PREFIX):] in PERMANENT_STATUS_CODES
    return False
