# timetable_sync/services/core/ingestion.py

import logging
import time
from typing import Any, Optional

from timetable_sync.errors import FormatUnrecognized
from timetable_sync.services.core.fallback import REASON_PARSE_ERROR, classify_failure, fallback_result
from timetable_sync.services.parsers.common_structs import TimetableResult
from timetable_sync.services.parsers.format_adapters import AdapterChain
from timetable_sync.services.parsers.substitution_overlay import apply_substitutions
from timetable_sync.services.parsers.substitution_parser import parse_substitution_feed


log = logging.getLogger(__name__)


def ingest_timetable(raw: Any, substitutions_raw: Any = None,
                     chain: Optional[AdapterChain] = None) -> TimetableResult:
    """
    Полный цикл приема: цепочка адаптеров -> наложение замен.
    Никогда не бросает исключений: любые сбои превращаются в запасные данные.

    :param raw: Ответ источника расписания в любой форме.
    :param substitutions_raw: Ответ ленты замен (необязателен).
    :param chain: Своя цепочка адаптеров, по умолчанию стандартная.
    """
    chain = chain or AdapterChain()

    try:
        recognized = chain.transform(raw)
    except FormatUnrecognized:
        return fallback_result(REASON_PARSE_ERROR)
    except Exception as e:
        log.error(f"Непредвиденная ошибка при разборе расписания: {e}", exc_info=True)
        return fallback_result(classify_failure(e))

    week = recognized.week
    if substitutions_raw is not None:
        try:
            records = parse_substitution_feed(substitutions_raw)
            week = apply_substitutions(week, records)
        except Exception as e:
            # Замены - дополнение, без них расписание все равно показываем
            log.error(f"Не удалось применить план замен: {e}", exc_info=True)

    return TimetableResult(week=week, fetched_at=time.time(), adapter=recognized.adapter)


def result_from_dict(data: Any) -> Optional[TimetableResult]:
    """
    Восстанавливает TimetableResult из снимка (формат TimetableResult.to_dict()).
    Запасные данные и битые снимки -> None.
    """
    if not isinstance(data, dict) or data.get('isFallback'):
        return None

    recognized = AdapterChain().try_transform(data.get('data'))
    if not recognized:
        log.warning("Снимок расписания не удалось разобрать, он будет проигнорирован.")
        return None

    return TimetableResult(
        week=recognized.week,
        fetched_at=data.get('fetchedAt'),
        adapter=data.get('adapter'),
    )
