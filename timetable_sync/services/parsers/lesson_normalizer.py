# timetable_sync/services/parsers/lesson_normalizer.py

import logging
from typing import Any, List, Mapping, Tuple

from .common_structs import Lesson

from timetable_sync.services.utils.bell_schedule import format_period_time, resolve_period_times
from timetable_sync.services.utils.data_validator import clean_str, coerce_bool, coerce_int


log = logging.getLogger(__name__)

UNKNOWN_SUBJECT = "Unknown Subject"

_CANCEL_MARKERS = ('entfall', 'entfäll', 'cancel')
_SUBSTITUTION_MARKERS = ('vertret', 'substit', 'ersatz')


def detect_lesson_status(item: Mapping[str, Any]) -> Tuple[bool, bool]:
    """
    Определяет отмену и замену по разным полям, которые встречаются у источников:
    code/type ('cancelled', 'substitution', 'vertretung') или текст info.
    """
    code = clean_str(item.get('code')).lower()
    kind = clean_str(item.get('type')).lower()
    info = clean_str(item.get('info')).lower()

    is_cancelled = (code == 'cancelled' or kind == 'cancelled'
                    or any(marker in info for marker in _CANCEL_MARKERS))
    is_substitution = (code == 'substitution' or kind in ('substitution', 'vertretung')
                       or any(marker in info for marker in _SUBSTITUTION_MARKERS))
    return is_cancelled, is_substitution


def _first_present(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None and value != '':
            return value
    return None


def normalize_lesson(raw: Any, index: int = 0) -> Lesson:
    """
    Превращает "сырую" запись урока в Lesson, в котором заполнены все обязательные поля.
    Время урока никогда не берется из записи - только из звонкового расписания.

    :param raw: Запись из внешнего источника (обычно dict).
    :param index: Позиция записи в списке; номер урока по умолчанию = index + 1.
    """
    if not isinstance(raw, Mapping):
        log.warning(f"Запись урока #{index + 1} не является объектом: {raw!r}")
        start, end = resolve_period_times(index + 1)
        return Lesson(period_number=index + 1, start_time=start, end_time=end,
                      subject=f"{UNKNOWN_SUBJECT} {index + 1}",
                      notes="Error processing this lesson data")

    period_number = coerce_int(_first_present(raw, 'periodNumber', 'period', 'lesson', 'stunde'), None)
    if period_number is None or period_number < 0:
        period_number = index + 1

    start, end = resolve_period_times(period_number)
    detected_cancel, detected_substitution = detect_lesson_status(raw)

    return Lesson(
        period_number=period_number,
        start_time=start,
        end_time=end,
        subject=clean_str(_first_present(raw, 'subject', 'content', 'fach'), UNKNOWN_SUBJECT),
        teacher=clean_str(_first_present(raw, 'teacher', 'lehrer')),
        room=clean_str(_first_present(raw, 'room', 'raum')),
        notes=clean_str(_first_present(raw, 'notes', 'note')),
        is_cancelled=coerce_bool(raw.get('isCancelled')) or detected_cancel,
        is_substitution=coerce_bool(raw.get('isSubstitution')) or detected_substitution,
        # Подпись источника ("1.08:10 - 08:55") сохраняется, время - всегда из звонков
        period_label=clean_str(raw.get('periodLabel')) or format_period_time(period_number),
    )


def normalize_lessons(raw_lessons: Any) -> List[Lesson]:
    """Нормализует список уроков. Не-объекты пропускаются, результат отсортирован по номеру."""
    if not isinstance(raw_lessons, list):
        return []

    lessons = [normalize_lesson(item, i) for i, item in enumerate(raw_lessons) if isinstance(item, Mapping)]
    lessons.sort(key=lambda lesson: lesson.period_number)
    return lessons
