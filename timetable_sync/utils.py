# timetable_sync/utils.py

from datetime import datetime, time as time_obj
from dataclasses import is_dataclass, asdict


def make_json_serializable(data):
    """
    Рекурсивно преобразует объекты, которые не сериализуются в JSON,
    в подходящий формат (строки, словари, списки).
    """
    # Объекты расписания знают свой JSON-вид (camelCase), он важнее asdict
    to_dict = getattr(data, 'to_dict', None)
    if callable(to_dict) and not isinstance(data, type):
        return make_json_serializable(to_dict())

    if is_dataclass(data) and not isinstance(data, type):
        return make_json_serializable(asdict(data))

    if isinstance(data, dict):
        return {k: make_json_serializable(v) for k, v in data.items()}
    if isinstance(data, (list, tuple)):
        return [make_json_serializable(i) for i in data]
    if isinstance(data, datetime):
        return data.isoformat()
    if isinstance(data, time_obj):
        return data.strftime('%H:%M')

    return data
