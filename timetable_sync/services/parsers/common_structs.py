# timetable_sync/services/parsers/common_structs.py

from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional


# Канонические ключи дней недели. Порядок важен: индекс = dayIndex в ленте замен.
WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday"]
WEEKEND = ["saturday", "sunday"]
ALL_DAYS = WEEKDAYS + WEEKEND

DAY_TITLES = {
    "monday": "Monday", "tuesday": "Tuesday", "wednesday": "Wednesday",
    "thursday": "Thursday", "friday": "Friday", "saturday": "Saturday", "sunday": "Sunday",
}


@dataclass
class Lesson:
    """
    Один урок в каноническом виде.
    start_time/end_time всегда берутся из звонкового расписания по period_number.
    """
    period_number: int
    start_time: str
    end_time: str
    subject: str
    teacher: str = ''
    room: str = ''
    notes: str = ''
    is_cancelled: bool = False
    is_substitution: bool = False
    period_label: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "periodNumber": self.period_number,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "subject": self.subject,
            "teacher": self.teacher,
            "room": self.room,
            "notes": self.notes,
            "isCancelled": self.is_cancelled,
            "isSubstitution": self.is_substitution,
        }
        if self.period_label is not None:
            data["periodLabel"] = self.period_label
        return data


@dataclass
class Day:
    day_name: str
    lessons: List[Lesson] = field(default_factory=list)
    date: Optional[str] = None

    def sort_lessons(self) -> None:
        # sort стабильный: дубли одного урока сохраняют порядок записи
        self.lessons.sort(key=lambda lesson: lesson.period_number)

    def to_dict(self) -> dict:
        data = {"dayName": self.day_name, "lessons": [l.to_dict() for l in self.lessons]}
        if self.date:
            data["date"] = self.date
        return data


# Неделя: канонический ключ дня -> Day
Week = Dict[str, Day]


@dataclass(frozen=True)
class SubstitutionRecord:
    """Запись ленты замен. Нигде не хранится, сразу вливается в поля Lesson."""
    day_index: int
    period_index: int
    subject: Optional[str] = None
    cancelled: bool = False
    substitution: bool = False
    new_teacher: Optional[str] = None
    new_room: Optional[str] = None
    new_subject: Optional[str] = None
    info: str = ''


@dataclass
class TimetableResult:
    """Результат приема расписания: неделя плюс признак запасных данных."""
    week: Week
    is_fallback: bool = False
    reason: Optional[str] = None
    fetched_at: Optional[float] = None
    adapter: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "data": week_to_dict(self.week),
            "isFallback": self.is_fallback,
            "fetchedAt": self.fetched_at,
        }
        if self.reason:
            data["reason"] = self.reason
        if self.adapter:
            data["adapter"] = self.adapter
        return data


def week_to_dict(week: Week) -> dict:
    return {key: day.to_dict() for key, day in week.items()}


def copy_week(week: Week) -> Week:
    """Глубокая копия недели (уроки - отдельные объекты)."""
    return {
        key: Day(day_name=day.day_name, date=day.date, lessons=[replace(l) for l in day.lessons])
        for key, day in week.items()
    }


def empty_week() -> Week:
    return {key: Day(day_name=DAY_TITLES[key]) for key in WEEKDAYS}
