# timetable_sync/services/parsers/format_adapters.py

"""
Цепочка адаптеров формата расписания.

Внешний источник не гарантирует форму ответа, поэтому каждый известный формат
описан отдельным адаптером (предикат + преобразование). Адаптеры перебираются
по порядку, побеждает первый, который распознал данные.
"""

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Union

from .common_structs import ALL_DAYS, DAY_TITLES, WEEKDAYS, Day, Week
from .lesson_normalizer import normalize_lesson, normalize_lessons

from timetable_sync.errors import FormatUnrecognized
from timetable_sync.services.utils.data_validator import clean_str, coerce_int


log = logging.getLogger(__name__)

GERMAN_DAYS = {
    "montag": "monday",
    "dienstag": "tuesday",
    "mittwoch": "wednesday",
    "donnerstag": "thursday",
    "freitag": "friday",
    "samstag": "saturday",
    "sonntag": "sunday",
}

DAY_ABBREVIATIONS = {
    "mo": "monday", "mon": "monday",
    "di": "tuesday", "tue": "tuesday",
    "mi": "wednesday", "wed": "wednesday",
    "do": "thursday", "thu": "thursday",
    "fr": "friday", "fri": "friday",
}

# "1.08:10 - 08:55" или "1.08.10 - 08.55"
PERIOD_PATTERN = re.compile(r'^\s*(\d+)\s*\.\s*(\d{1,2}[:.]\d{2})\s*-\s*(\d{1,2}[:.]\d{2})')
POSITIONAL_DAY_PATTERN = re.compile(r'^day(\d+)$')

MAX_SEARCH_DEPTH = 3


# --- Результат адаптера ---

@dataclass(frozen=True)
class Recognized:
    week: Week
    adapter: str = ''


class _NotRecognized:
    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NOT_RECOGNIZED"


NOT_RECOGNIZED = _NotRecognized()

AdapterResult = Union[Recognized, _NotRecognized]


# --- Дни недели ---

def canonical_day_key(label: Any, index: int) -> str:
    """
    Переводит название дня в канонический ключ ('Montag' -> 'monday').
    Незнакомые названия получают позиционный ключ 'day{index+1}'.
    """
    text = clean_str(label).lower()
    if text in ALL_DAYS or POSITIONAL_DAY_PATTERN.match(text):
        return text
    for german, english in GERMAN_DAYS.items():
        if german in text:
            return english
    for english in ALL_DAYS:
        if english in text:
            return english
    return f"day{index + 1}"


def _known_day_key(label: Any) -> Optional[str]:
    """Ключ дня только для узнаваемых названий (без позиционного запасного варианта)."""
    key = canonical_day_key(label, -1)
    return None if key == "day0" else key


def weekday_from_field(value: Any) -> Optional[str]:
    """Поле 'day' плоской записи: индекс 0..4 или название дня."""
    if isinstance(value, str) and not value.strip().isdigit():
        text = value.strip().lower().rstrip('.')
        key = DAY_ABBREVIATIONS.get(text) or _known_day_key(text)
        return key if key in WEEKDAYS else None
    index = coerce_int(value, None)
    if index is not None and 0 <= index < len(WEEKDAYS):
        return WEEKDAYS[index]
    return None


def _title_for(key: str, fallback: Any = None) -> str:
    return DAY_TITLES.get(key) or clean_str(fallback) or key


def _sorted_week(week: Week) -> Week:
    for day in week.values():
        day.sort_lessons()
    return week


def _has_day_keys(raw: Any) -> bool:
    return isinstance(raw, Mapping) and any(
        isinstance(key, str) and _known_day_key(key) for key in raw.keys()
    )


def _is_structured(raw: Any) -> bool:
    return (isinstance(raw, Mapping)
            and isinstance(raw.get('days'), list)
            and isinstance(raw.get('periods'), list)
            and isinstance(raw.get('classes'), list))


# --- Преобразования ---

def _day_from_value(key: str, value: Any) -> Optional[Day]:
    if isinstance(value, list):
        return Day(day_name=_title_for(key), lessons=normalize_lessons(value))
    if isinstance(value, Mapping):
        return Day(
            day_name=clean_str(value.get('dayName'), _title_for(key)),
            date=clean_str(value.get('date')) or None,
            lessons=normalize_lessons(value.get('lessons', [])),
        )
    return None


def week_from_day_mapping(raw: Mapping) -> Optional[Week]:
    """Формат 1: данные уже являются неделей ({'monday': {...}, ...})."""
    week: Week = {}
    for label, value in raw.items():
        key = _known_day_key(label) if isinstance(label, str) else None
        if key is None:
            continue
        day = _day_from_value(key, value)
        if day is None:
            log.info(f"Пропуск дня '{label}': неожиданный тип {type(value).__name__}")
            continue
        week[key] = day
    return _sorted_week(week) if week else None


@dataclass(frozen=True)
class _PeriodInfo:
    number: int
    label: str


def _parse_period(period_str: Any, index: int) -> _PeriodInfo:
    """
    Разбирает строку урока '1.08:10 - 08:55'.
    Время из строки не используется: показываемое время берется из звонков по номеру.
    """
    match = PERIOD_PATTERN.match(str(period_str))
    if match:
        return _PeriodInfo(number=int(match.group(1)), label=str(period_str).strip())
    return _PeriodInfo(number=index + 1, label=clean_str(period_str))


def week_from_structured(structured: Mapping) -> Optional[Week]:
    """
    Формат "structured": {days: [...], periods: [...], classes: [{day, period, ...}]}.
    day и period в classes - индексы в массивах days и periods.
    """
    days = structured.get('days') or []
    if not days:
        return None

    week: Week = {}
    day_keys: List[str] = []
    for index, day_label in enumerate(days):
        key = canonical_day_key(day_label, index)
        day_keys.append(key)
        week.setdefault(key, Day(day_name=clean_str(day_label, _title_for(key))))

    periods = [_parse_period(p, i) for i, p in enumerate(structured.get('periods') or [])]

    dropped = 0
    for class_item in structured.get('classes') or []:
        if not isinstance(class_item, Mapping):
            dropped += 1
            continue

        day_index = coerce_int(class_item.get('day'), None)
        period_index = coerce_int(class_item.get('period'), None)

        if day_index is None or not 0 <= day_index < len(day_keys):
            log.warning(f"Пропуск урока с неверным индексом дня: {dict(class_item)}")
            dropped += 1
            continue
        if period_index is None or not 0 <= period_index < len(periods):
            log.warning(f"Пропуск урока с неверным индексом урока: {dict(class_item)}")
            dropped += 1
            continue

        period_info = periods[period_index]
        record = dict(class_item)
        record['period'] = period_info.number
        record['periodNumber'] = period_info.number
        if period_info.label:
            record['periodLabel'] = period_info.label
        week[day_keys[day_index]].lessons.append(normalize_lesson(record, period_index))

    if dropped:
        log.info(f"Структурированный формат: отброшено записей - {dropped}")
    return _sorted_week(week)


def week_from_day_list(raw: Sequence) -> Optional[Week]:
    """Список объектов дней по порядку: [{dayName, lessons}, ...]."""
    week: Week = {}
    for index, item in enumerate(raw):
        if not isinstance(item, Mapping):
            continue
        key = _known_day_key(item.get('dayName')) or (
            WEEKDAYS[index] if index < len(WEEKDAYS) else f"day{index + 1}")
        day = _day_from_value(key, item)
        if day is not None:
            week[key] = day
    return _sorted_week(week) if week else None


def week_from_numeric_keys(raw: Mapping) -> Optional[Week]:
    """Словарь с числовыми ключами: {'0': {...}, '1': {...}}."""
    ordered = sorted((int(k), v) for k, v in raw.items() if str(k).strip().isdigit())
    return week_from_day_list([value for _, value in ordered])


def week_from_lesson_list(raw: Sequence) -> Optional[Week]:
    """Плоский список уроков, которые раскладываются по пяти будним дням по полю 'day'."""
    buckets = {key: [] for key in WEEKDAYS}
    dropped = 0
    for item in raw:
        if not isinstance(item, Mapping):
            dropped += 1
            continue
        key = weekday_from_field(item.get('day', item.get('dayName')))
        if key is None:
            log.warning(f"Пропуск урока без распознаваемого дня: {dict(item)}")
            dropped += 1
            continue
        buckets[key].append(item)

    if dropped == len(raw):
        return None

    week: Week = {}
    for key, items in buckets.items():
        lessons = [normalize_lesson(item, i) for i, item in enumerate(items)]
        week[key] = Day(day_name=_title_for(key), lessons=lessons)
    return _sorted_week(week)


def find_structured(raw: Any, depth: int = MAX_SEARCH_DEPTH) -> Optional[Mapping]:
    """
    Ищет вложенный объект с массивами days/periods/classes.
    Сначала проверяются известные пути (data.structured, structured), затем все значения
    с ограничением глубины.
    """
    if depth < 0 or not isinstance(raw, (Mapping, list)):
        return None
    if _is_structured(raw):
        return raw

    if isinstance(raw, Mapping):
        data = raw.get('data')
        for candidate in (data.get('structured') if isinstance(data, Mapping) else None,
                          raw.get('structured')):
            if _is_structured(candidate):
                return candidate
        children = list(raw.values())
    else:
        children = list(raw)

    for child in children:
        found = find_structured(child, depth - 1)
        if found is not None:
            return found
    return None


def _looks_like_lesson_list(raw: Any) -> bool:
    return isinstance(raw, list) and any(
        isinstance(item, Mapping) and ('subject' in item or 'period' in item or 'day' in item)
        for item in raw
    )


def _looks_like_day_list(raw: Any) -> bool:
    return isinstance(raw, list) and bool(raw) and all(
        isinstance(item, Mapping) and isinstance(item.get('lessons'), list) for item in raw
    )


def _has_numeric_day_keys(raw: Any) -> bool:
    return (isinstance(raw, Mapping) and bool(raw)
            and all(str(k).strip().isdigit() for k in raw.keys())
            and any(isinstance(v, Mapping) and isinstance(v.get('lessons'), list) for v in raw.values()))


# --- Адаптеры ---

@dataclass(frozen=True)
class FormatAdapter:
    """Пара предикат/преобразование. Никогда не бросает исключений наружу."""
    name: str
    predicate: Callable[[Any], bool]
    transform: Callable[[Any], Optional[Week]]

    def __call__(self, raw: Any) -> AdapterResult:
        try:
            if not self.predicate(raw):
                return NOT_RECOGNIZED
            week = self.transform(raw)
        except Exception as e:
            log.warning(f"Адаптер '{self.name}' упал на данных: {e}", exc_info=True)
            return NOT_RECOGNIZED
        if not week:
            return NOT_RECOGNIZED
        return Recognized(week=week, adapter=self.name)


DEFAULT_ADAPTERS: List[FormatAdapter] = [
    FormatAdapter("week", _has_day_keys, week_from_day_mapping),
    FormatAdapter("wrapped_week",
                  lambda raw: isinstance(raw, Mapping) and _has_day_keys(raw.get('data')),
                  lambda raw: week_from_day_mapping(raw['data'])),
    FormatAdapter("structured", _is_structured, week_from_structured),
    FormatAdapter("day_list", _looks_like_day_list, week_from_day_list),
    FormatAdapter("numeric_keys", _has_numeric_day_keys, week_from_numeric_keys),
    FormatAdapter("lesson_list", _looks_like_lesson_list, week_from_lesson_list),
    FormatAdapter("nested_structured",
                  lambda raw: find_structured(raw) is not None,
                  lambda raw: week_from_structured(find_structured(raw))),
]


def describe_payload(raw: Any) -> str:
    """Короткое описание формы данных для логов."""
    if raw is None:
        return "None"
    if isinstance(raw, Mapping):
        parts = [f"dict keys: {', '.join(map(str, list(raw.keys())[:10]))}"]
        data = raw.get('data')
        if isinstance(data, Mapping):
            parts.append(f"data keys: {', '.join(map(str, list(data.keys())[:10]))}")
        return "; ".join(parts)
    if isinstance(raw, list):
        return f"list of {len(raw)} items"
    return f"{type(raw).__name__}"


class AdapterChain:
    """Упорядоченная цепочка адаптеров. Не хранит состояния между вызовами."""

    def __init__(self, adapters: Optional[Sequence[FormatAdapter]] = None):
        self.adapters = list(adapters if adapters is not None else DEFAULT_ADAPTERS)

    def try_transform(self, raw: Any) -> AdapterResult:
        for adapter in self.adapters:
            result = adapter(raw)
            if isinstance(result, Recognized):
                log.info(f"Формат расписания распознан адаптером '{adapter.name}' "
                         f"(дней: {len(result.week)})")
                return result
        return NOT_RECOGNIZED

    def transform(self, raw: Any) -> Recognized:
        """
        Возвращает распознанную неделю.
        :raises FormatUnrecognized: если ни один адаптер не подошел.
        """
        result = self.try_transform(raw)
        if not isinstance(result, Recognized):
            shape = describe_payload(raw)
            log.error(f"Не удалось распознать формат расписания ({shape})")
            raise FormatUnrecognized(shape)
        return result


def transform_timetable_data(raw: Any) -> AdapterResult:
    """Прогоняет данные через цепочку по умолчанию."""
    return AdapterChain().try_transform(raw)
