import pytest

from timetable_sync.errors import FormatUnrecognized
from timetable_sync.services.parsers.common_structs import week_to_dict
from timetable_sync.services.parsers.format_adapters import (
    NOT_RECOGNIZED,
    AdapterChain,
    FormatAdapter,
    Recognized,
    canonical_day_key,
    find_structured,
    transform_timetable_data,
)


def test_structured_payload_with_german_days(structured_payload):
    result = transform_timetable_data(structured_payload)

    assert isinstance(result, Recognized)
    assert result.adapter == "structured"
    lesson = result.week["monday"].lessons[0].to_dict()
    assert lesson["periodNumber"] == 1
    assert lesson["startTime"] == "08:10"
    assert lesson["endTime"] == "08:55"
    assert lesson["subject"] == "M"
    assert lesson["room"] == "101"
    assert lesson["isCancelled"] is False
    assert lesson["isSubstitution"] is False


def test_structured_period_numbers_come_from_period_strings():
    payload = {
        "days": ["Montag"],
        "periods": ["3.10:00 - 10:45", "4.10.45 - 11.30"],
        "classes": [{"day": 0, "period": 1, "subject": "E"}],
    }

    lesson = transform_timetable_data(payload).week["monday"].lessons[0]

    assert lesson.period_number == 4
    assert (lesson.start_time, lesson.end_time) == ("10:45", "11:30")
    # подпись источника сохраняется как есть
    assert lesson.period_label == "4.10.45 - 11.30"


def test_structured_drops_invalid_indexes(structured_payload, caplog):
    structured_payload["classes"] += [
        {"day": 9, "period": 0, "subject": "X"},
        {"day": 0, "period": 42, "subject": "Y"},
        {"day": "abc", "period": 0, "subject": "Z"},
    ]

    week = transform_timetable_data(structured_payload).week

    subjects = [l.subject for day in week.values() for l in day.lessons]
    assert subjects == ["M"]
    assert "неверным индексом" in caplog.text


def test_structured_with_no_classes_is_an_empty_week(structured_payload):
    structured_payload["classes"] = []

    result = transform_timetable_data(structured_payload)

    assert isinstance(result, Recognized)
    assert all(not day.lessons for day in result.week.values())


def test_week_shape_is_recognized_first():
    payload = {"monday": {"dayName": "Monday", "lessons": [{"period": 2, "subject": "Bio"}]}}

    result = transform_timetable_data(payload)

    assert result.adapter == "week"
    assert result.week["monday"].lessons[0].start_time == "08:55"


def test_wrapped_week():
    result = transform_timetable_data({"data": {"Dienstag": [{"period": 1, "subject": "D"}]}})

    assert result.adapter == "wrapped_week"
    assert result.week["tuesday"].lessons[0].subject == "D"


def test_flat_lesson_list_is_bucketed_by_day():
    payload = [
        {"day": 0, "period": 1, "subject": "M"},
        {"day": "Freitag", "period": 2, "subject": "Sp"},
        {"day": "Wed", "period": 1, "subject": "Ch"},
    ]

    result = transform_timetable_data(payload)

    assert result.adapter == "lesson_list"
    assert set(result.week) == {"monday", "tuesday", "wednesday", "thursday", "friday"}
    assert result.week["friday"].lessons[0].subject == "Sp"
    assert result.week["wednesday"].lessons[0].subject == "Ch"
    assert result.week["tuesday"].lessons == []


def test_day_list_and_numeric_keys():
    day_list = [{"dayName": "Montag", "lessons": [{"period": 1, "subject": "M"}]},
                {"lessons": [{"period": 1, "subject": "E"}]}]
    numeric = {"0": day_list[0], "1": day_list[1]}

    from_list = transform_timetable_data(day_list)
    from_numeric = transform_timetable_data(numeric)

    assert from_list.adapter == "day_list"
    assert from_numeric.adapter == "numeric_keys"
    assert week_to_dict(from_list.week) == week_to_dict(from_numeric.week)
    assert from_list.week["tuesday"].lessons[0].subject == "E"


@pytest.mark.parametrize("wrap", [
    lambda s: {"data": {"structured": s}},
    lambda s: {"structured": s},
    lambda s: {"response": {"payload": s}},
])
def test_nested_structured_is_found(structured_payload, wrap):
    result = transform_timetable_data(wrap(structured_payload))

    assert isinstance(result, Recognized)
    assert result.week["monday"].lessons[0].subject == "M"


def test_structured_search_depth_is_bounded(structured_payload):
    too_deep = {"a": {"b": {"c": {"d": {"e": structured_payload}}}}}
    assert find_structured(too_deep) is None


def test_chain_is_idempotent_on_its_own_output(structured_payload):
    first = transform_timetable_data(structured_payload)
    second = transform_timetable_data(week_to_dict(first.week))

    assert second.week == first.week


@pytest.mark.parametrize("payload", [None, {}, "timetable", 42, [], [1, 2, 3], {"foo": "bar"}])
def test_unrecognized_payloads(payload):
    assert transform_timetable_data(payload) is NOT_RECOGNIZED

    with pytest.raises(FormatUnrecognized):
        AdapterChain().transform(payload)


def test_raising_adapter_is_treated_as_not_recognized(structured_payload):
    def boom(raw):
        raise RuntimeError("broken adapter")

    chain = AdapterChain([FormatAdapter("broken", lambda raw: True, boom)] + AdapterChain().adapters)

    result = chain.try_transform(structured_payload)

    assert result.adapter == "structured"


def test_canonical_day_key():
    assert canonical_day_key("Montag", 0) == "monday"
    assert canonical_day_key("Friday", 4) == "friday"
    assert canonical_day_key("A-Woche", 2) == "day3"
