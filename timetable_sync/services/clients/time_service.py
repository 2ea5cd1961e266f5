# timetable_sync/services/clients/time_service.py

import requests
import logging
from datetime import datetime, timedelta, time
from config import Config
from dataclasses import dataclass

from timetable_sync.services.parsers.common_structs import ALL_DAYS, DAY_TITLES


log = logging.getLogger(__name__)


TIME_SYNC_URL = "https://yandex.com/time/sync.json"
TIME_OFFSET = timedelta(hours=Config.REGION_TIMEDELTA)


@dataclass(frozen=True)
class CurrentTimeInfo:
    """Текущий момент в терминах расписания."""
    day_key: str  # 'monday' - ключ дня в Week
    day_name: str  # 'Monday' - для показа на экране
    date_str_iso: str  # '2025-05-26' - для сравнений и логики
    time_obj: time
    source: str = "network"  # 'network' или 'system'

    @property
    def is_weekend(self) -> bool:
        return self.day_key in ("saturday", "sunday")


def _network_now() -> datetime:
    response = requests.head(TIME_SYNC_URL, timeout=Config.FETCH_TIMEOUT)
    response.raise_for_status()
    gmt_time_str = response.headers.get('Date')
    if not gmt_time_str: raise ValueError("Header 'Date' is missing")
    gmt_datetime = datetime.strptime(gmt_time_str, '%a, %d %b %Y %H:%M:%S GMT')
    return gmt_datetime + TIME_OFFSET


def get_current_day_and_time() -> CurrentTimeInfo:
    """Определяет текущий день недели, дату и время. Без сети - по системным часам."""
    source = "network"
    try:
        local_datetime = _network_now()
        log.info("Время успешно получено по сети.")
    except (requests.exceptions.RequestException, KeyError, ValueError) as e:
        log.warning(f"Не удалось получить время по сети ({e}). Используется системное время.")
        local_datetime = datetime.now()
        source = "system"

    return time_info_from_datetime(local_datetime, source)


def time_info_from_datetime(moment: datetime, source: str = "system") -> CurrentTimeInfo:
    day_key = ALL_DAYS[moment.weekday()]
    log.info(f"Текущее время: {day_key}, {moment.strftime('%H:%M:%S')}")
    return CurrentTimeInfo(
        day_key=day_key,
        day_name=DAY_TITLES[day_key],
        date_str_iso=moment.strftime('%Y-%m-%d'),
        time_obj=moment.time().replace(microsecond=0),
        source=source,
    )
