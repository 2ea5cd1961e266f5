# timetable_sync/services/utils/data_validator.py

import math
import re
from typing import Any, Optional


def coerce_float(value: Any, default: float) -> float:
    """
    Аккуратно превращает значение в число.
    Вместо NaN/inf и мусора возвращает значение по умолчанию.
    """
    if isinstance(value, bool):
        return default
    try:
        if isinstance(value, str):
            value = value.strip().replace(',', '.')
        result = float(value)
    except (ValueError, TypeError):
        return default
    if math.isnan(result) or math.isinf(result):
        return default
    return result


def coerce_int(value: Any, default: Optional[int]) -> Optional[int]:
    """Целое из строки/числа ('3', 3.0, ' 3. '). Дробные и мусор -> default."""
    if isinstance(value, str):
        match = re.match(r'^\s*(-?\d+)\s*\.?\s*$', value)
        if match:
            return int(match.group(1))
    number = coerce_float(value, float('nan'))
    if math.isnan(number) or not number.is_integer():
        return default
    return int(number)


def coerce_bool(value: Any) -> bool:
    """Аналог '!!' из JS, но строки 'false'/'0'/'' считаются ложью."""
    if isinstance(value, str):
        return value.strip().lower() not in ('', '0', 'false', 'no', 'nein')
    return bool(value)


def clean_str(value: Any, default: str = '') -> str:
    """Приводит значение к строке без пробелов по краям. None -> default."""
    if value is None:
        return default
    if isinstance(value, float) and math.isnan(value):
        return default
    text = str(value).strip()
    return text if text else default
