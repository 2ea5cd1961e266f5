from timetable_sync.services.parsers.lesson_normalizer import (
    UNKNOWN_SUBJECT,
    detect_lesson_status,
    normalize_lesson,
    normalize_lessons,
)


def test_times_come_from_bell_schedule_not_from_record():
    lesson = normalize_lesson({"periodNumber": 3, "subject": "Ph", "startTime": "07:00", "endTime": "07:45"})

    assert (lesson.start_time, lesson.end_time) == ("10:00", "10:45")
    assert lesson.period_label == "10:00 - 10:45"


def test_missing_subject_and_period_use_defaults():
    lesson = normalize_lesson({"room": "12"}, index=4)

    assert lesson.subject == UNKNOWN_SUBJECT
    assert lesson.period_number == 5
    assert lesson.room == "12"


def test_period_aliases_and_string_numbers():
    assert normalize_lesson({"period": "2"}).period_number == 2
    assert normalize_lesson({"stunde": 6.0}).period_number == 6


def test_garbage_period_falls_back_to_index():
    lesson = normalize_lesson({"period": "n/a", "subject": "D"}, index=1)
    assert lesson.period_number == 2


def test_flags_are_coerced_to_bool():
    lesson = normalize_lesson({"subject": "M", "isCancelled": "false", "isSubstitution": 1})

    assert lesson.is_cancelled is False
    assert lesson.is_substitution is True


def test_status_detected_from_code_and_info():
    assert detect_lesson_status({"code": "cancelled"}) == (True, False)
    assert detect_lesson_status({"type": "vertretung"}) == (False, True)
    assert detect_lesson_status({"info": "Unterricht entfällt"}) == (True, False)
    assert detect_lesson_status({"info": "Vertretung durch Hr. Meier"}) == (False, True)
    assert detect_lesson_status({}) == (False, False)


def test_non_mapping_record_becomes_placeholder():
    lesson = normalize_lesson("garbage", index=0)

    assert lesson.period_number == 1
    assert lesson.subject.startswith(UNKNOWN_SUBJECT)
    assert lesson.notes == "Error processing this lesson data"


def test_normalize_lessons_skips_non_mappings_and_sorts():
    lessons = normalize_lessons([{"period": 3, "subject": "C"}, None, "x", {"period": 1, "subject": "A"}])

    assert [l.subject for l in lessons] == ["A", "C"]


def test_normalize_lessons_keeps_duplicate_periods_in_order():
    lessons = normalize_lessons([
        {"period": 2, "subject": "First"},
        {"period": 1, "subject": "Early"},
        {"period": 2, "subject": "Second"},
    ])

    assert [l.subject for l in lessons] == ["Early", "First", "Second"]


def test_normalize_lessons_rejects_non_list():
    assert normalize_lessons({"period": 1}) == []


def test_source_period_label_is_kept():
    lesson = normalize_lesson({"periodNumber": 1, "subject": "M", "periodLabel": " 1.08:10 - 08:55 "})

    assert lesson.period_label == "1.08:10 - 08:55"
    assert lesson.start_time == "08:10"
