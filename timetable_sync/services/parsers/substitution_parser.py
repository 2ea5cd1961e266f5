# timetable_sync/services/parsers/substitution_parser.py

import logging
import re
from collections.abc import Mapping
from datetime import datetime
from typing import Any, List, Optional

from .common_structs import SubstitutionRecord, WEEKDAYS
from .format_adapters import weekday_from_field

from timetable_sync.services.utils.data_validator import clean_str, coerce_bool, coerce_int


log = logging.getLogger(__name__)

# "Mo., 26.05.2025 - KW 22"
DAY_HEADER_PATTERN = re.compile(r'([A-Za-zÄÖÜäöü]+)\., (\d{2}\.\d{2}\.\d{4}) - KW (\d+)')
CANCEL_WORDS = ('entfällt', 'entfall', 'cancel')


def _day_index(value: Any) -> Optional[int]:
    key = weekday_from_field(value)
    return WEEKDAYS.index(key) if key else None


def _record_from_item(item: Mapping) -> Optional[SubstitutionRecord]:
    day_index = _day_index(item.get('dayIndex', item.get('day')))
    period_index = coerce_int(item.get('periodIndex', item.get('period')), None)
    if day_index is None or period_index is None or period_index < 0:
        log.warning(f"Пропуск записи замены без корректного дня/урока: {dict(item)}")
        return None

    return SubstitutionRecord(
        day_index=day_index,
        period_index=period_index,
        subject=clean_str(item.get('subject')) or None,
        cancelled=coerce_bool(item.get('cancelled')),
        substitution=coerce_bool(item.get('substitution')),
        new_teacher=clean_str(item.get('newTeacher') or item.get('teacher')) or None,
        new_room=clean_str(item.get('newRoom') or item.get('room')) or None,
        new_subject=clean_str(item.get('newSubject')) or None,
        info=clean_str(item.get('info') or item.get('note')),
    )


def parse_substitution_list(items: List[Any]) -> List[SubstitutionRecord]:
    records = []
    for item in items:
        if not isinstance(item, Mapping):
            continue
        record = _record_from_item(item)
        if record:
            records.append(record)
    return records


def _split_subjects(cell: str) -> List[str]:
    # В ячейке "Fach" встречается пара предметов через несколько пробелов: " PhÜ(NTG)  PhÜ(NTG)"
    return [part for part in re.split(r'\s{2,}', cell.strip()) if part]


def parse_substitution_text(raw_text: str) -> List[SubstitutionRecord]:
    """
    Разбирает текстовый план замен (строки через табуляцию).
    Заголовок дня: "Mo., 26.05.2025 - KW 22", затем строка "Std. Vertretung Fach Raum Info".
    """
    records: List[SubstitutionRecord] = []
    day_index: Optional[int] = None
    in_entries = False

    for line in str(raw_text).splitlines():
        header = DAY_HEADER_PATTERN.search(line)
        if header:
            in_entries = False
            try:
                weekday = datetime.strptime(header.group(2), '%d.%m.%Y').weekday()
            except ValueError:
                weekday = None
            day_index = weekday if weekday is not None and weekday < len(WEEKDAYS) else None
            if day_index is None:
                log.info(f"План замен: день '{header.group(0)}' вне учебной недели, пропуск.")
            continue

        if 'Std.' in line and 'Vertretung' in line and 'Fach' in line and 'Raum' in line:
            in_entries = True
            continue

        if not in_entries or day_index is None:
            continue

        parts = [part.strip() for part in line.split('\t')]
        if len(parts) < 5 or not re.match(r'^\d+\.', parts[0]):
            continue

        period_number = coerce_int(parts[0].rstrip('.'), None)
        if not period_number:
            continue

        subjects = _split_subjects(line.split('\t')[2])
        subject = subjects[0] if subjects else None
        new_subject = subjects[1] if len(subjects) > 1 and subjects[1] != subjects[0] else None
        info = parts[4]
        cancelled = any(word in info.lower() for word in CANCEL_WORDS)

        records.append(SubstitutionRecord(
            day_index=day_index,
            period_index=period_number - 1,
            subject=subject,
            cancelled=cancelled,
            substitution=not cancelled and bool(parts[1] or info),
            new_teacher=parts[1] or None,
            new_room=parts[3] or None,
            new_subject=new_subject,
            info=info,
        ))

    return records


def parse_substitution_feed(payload: Any) -> List[SubstitutionRecord]:
    """
    Превращает ответ ленты замен в список SubstitutionRecord.
    Понимает {substitutions: [...]}, голый список записей и текстовый план (rawData).
    Неизвестная форма -> пустой список.
    """
    if isinstance(payload, Mapping):
        if isinstance(payload.get('substitutions'), list):
            return parse_substitution_list(payload['substitutions'])
        if isinstance(payload.get('rawData'), str):
            return parse_substitution_text(payload['rawData'])
        return []
    if isinstance(payload, list):
        return parse_substitution_list(payload)
    if isinstance(payload, str):
        return parse_substitution_text(payload)
    return []
