# timetable_sync/services/utils/bell_schedule.py

from dataclasses import dataclass
from datetime import datetime, time
from typing import Any, Dict, List, Optional, Tuple, Union

from .data_validator import coerce_int


@dataclass(frozen=True)
class Period:
    """Представляет один урок звонкового расписания с номером, временем начала и окончания."""
    number: int
    start_time: str
    end_time: str


# Эталонное расписание звонков. Меняется только вместе с кодом.
PERIODS: Tuple[Period, ...] = (
    Period(number=1, start_time="08:10", end_time="08:55"),
    Period(number=2, start_time="08:55", end_time="09:40"),
    # перемена 20 минут
    Period(number=3, start_time="10:00", end_time="10:45"),
    Period(number=4, start_time="10:45", end_time="11:30"),
    # перемена 20 минут
    Period(number=5, start_time="11:50", end_time="12:35"),
    Period(number=6, start_time="12:35", end_time="13:20"),
    # обед 40 минут
    Period(number=7, start_time="14:00", end_time="14:45"),
    Period(number=8, start_time="14:45", end_time="15:30"),
    Period(number=9, start_time="15:30", end_time="16:15"),
    Period(number=10, start_time="16:15", end_time="17:00"),
    Period(number=11, start_time="17:00", end_time="17:45"),
    Period(number=12, start_time="17:45", end_time="18:30"),
)

LUNCH_BREAK = ("13:20", "14:00")

UNKNOWN_TIME = "00:00"

_BY_NUMBER: Dict[int, Period] = {p.number: p for p in PERIODS}


def get_period_by_number(period_number: Any) -> Optional[Period]:
    """
    Возвращает объект Period по его порядковому номеру.
    Номер может прийти строкой или float ('3', 3.0).
    """
    num = coerce_int(period_number, None)
    if num is None:
        return None
    return _BY_NUMBER.get(num)


def resolve_period_times(period_number: Any) -> Tuple[str, str]:
    """
    Возвращает (начало, конец) урока в формате HH:MM.
    Для неизвестного номера отдает ("00:00", "00:00"), чтобы отрисовка никогда не падала.
    """
    period = get_period_by_number(period_number)
    if period is None:
        return UNKNOWN_TIME, UNKNOWN_TIME
    return period.start_time, period.end_time


def format_period_time(period_number: Any) -> str:
    """Подпись урока вида '08:10 - 08:55'."""
    start, end = resolve_period_times(period_number)
    return f"{start} - {end}"


def parse_time_to_minutes(time_str: str) -> int:
    """Переводит 'HH:MM' в минуты от полуночи."""
    hours, minutes = str(time_str).strip().split(':')[:2]
    return int(hours) * 60 + int(minutes)


def _minutes_of(moment: Union[str, time, datetime]) -> int:
    if isinstance(moment, datetime):
        moment = moment.time()
    if isinstance(moment, time):
        return moment.hour * 60 + moment.minute
    return parse_time_to_minutes(moment)


def get_breaks() -> List[Tuple[str, str]]:
    """Список перемен: обед плюс короткие перемены после каждого второго урока."""
    breaks = [LUNCH_BREAK]
    for i in range(len(PERIODS) - 1):
        if i % 2 == 1:
            breaks.append((PERIODS[i].end_time, PERIODS[i + 1].start_time))
    return breaks


def is_during_break(moment: Union[str, time, datetime]) -> bool:
    """Проверяет, приходится ли момент на перемену."""
    minutes = _minutes_of(moment)
    for start, end in get_breaks():
        if parse_time_to_minutes(start) <= minutes < parse_time_to_minutes(end):
            return True
    return False


def current_or_upcoming_period(now: Union[str, time, datetime]) -> int:
    """
    Номер текущего или ближайшего урока.
    Первый урок, который еще не закончился; после уроков - первый урок следующего дня.
    """
    minutes = _minutes_of(now)
    for period in PERIODS:
        if minutes < parse_time_to_minutes(period.end_time):
            return period.number
    return PERIODS[0].number
