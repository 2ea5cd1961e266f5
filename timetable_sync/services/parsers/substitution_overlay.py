# timetable_sync/services/parsers/substitution_overlay.py

import logging
from dataclasses import replace
from typing import Dict, Iterable, Optional, Tuple

from .common_structs import Lesson, SubstitutionRecord, WEEKDAYS, Week, copy_week
from .format_adapters import POSITIONAL_DAY_PATTERN


log = logging.getLogger(__name__)

NOTE_SEPARATOR = " | "
DEFAULT_CANCEL_NOTE = "Lesson cancelled"

LookupKey = Tuple


def _day_index_for(day_key: str) -> Optional[int]:
    if day_key in WEEKDAYS:
        return WEEKDAYS.index(day_key)
    match = POSITIONAL_DAY_PATTERN.match(day_key)
    if match:
        return int(match.group(1)) - 1
    return None


def build_lookup(records: Iterable[SubstitutionRecord]) -> Dict[LookupKey, SubstitutionRecord]:
    """Ключи (день, урок, предмет) и (день, урок). При совпадении ключей побеждает последняя запись."""
    lookup: Dict[LookupKey, SubstitutionRecord] = {}
    for record in records:
        lookup[(record.day_index, record.period_index)] = record
        if record.subject:
            lookup[(record.day_index, record.period_index, record.subject.lower())] = record
    return lookup


def find_record(lookup: Dict[LookupKey, SubstitutionRecord], day_index: int,
                lesson: Lesson) -> Optional[SubstitutionRecord]:
    period_index = lesson.period_number - 1
    for key in ((day_index, period_index, lesson.subject.lower()), (day_index, period_index)):
        record = lookup.get(key)
        if record is not None:
            return record
    return None


def _append_note(notes: str, text: str) -> str:
    if not text or text in notes:
        return notes
    return f"{notes}{NOTE_SEPARATOR}{text}" if notes else text


def merge_substitution(lesson: Lesson, record: SubstitutionRecord) -> Lesson:
    """
    Вливает одну запись замены в урок. Повторное применение той же записи ничего не меняет:
    поля перезаписываются только если отличаются, заметки добавляются только если их еще нет.
    """
    notes = lesson.notes
    teacher, room, subject = lesson.teacher, lesson.room, lesson.subject
    is_cancelled, is_substitution = lesson.is_cancelled, lesson.is_substitution

    if record.cancelled:
        is_cancelled = True
        notes = _append_note(notes, record.info or DEFAULT_CANCEL_NOTE)

    if record.substitution:
        is_substitution = True
        if record.new_teacher and record.new_teacher != teacher:
            notes = _append_note(notes, f"Teacher: {teacher or '—'} → {record.new_teacher}")
            teacher = record.new_teacher
        if record.new_room and record.new_room != room:
            notes = _append_note(notes, f"Room: {room or '—'} → {record.new_room}")
            room = record.new_room
        if record.new_subject and record.new_subject != subject:
            notes = _append_note(notes, f"Subject: {subject or '—'} → {record.new_subject}")
            subject = record.new_subject

    if record.info and record.info not in notes:
        notes = f"{record.info}{NOTE_SEPARATOR}{notes}" if notes else record.info

    return replace(lesson, notes=notes, teacher=teacher, room=room, subject=subject,
                   is_cancelled=is_cancelled, is_substitution=is_substitution)


def apply_substitutions(week: Week, records: Iterable[SubstitutionRecord]) -> Week:
    """
    Накладывает ленту замен на неделю. Исходная неделя не меняется, возвращается новая.
    """
    lookup = build_lookup(records)
    result = copy_week(week)
    if not lookup:
        return result

    applied = 0
    for day_key, day in result.items():
        day_index = _day_index_for(day_key)
        if day_index is None:
            continue
        for i, lesson in enumerate(day.lessons):
            record = find_record(lookup, day_index, lesson)
            if record is None:
                continue
            day.lessons[i] = merge_substitution(lesson, record)
            applied += 1

    log.info(f"План замен применен: затронуто уроков - {applied}")
    return result
