# timetable_sync/services/clients/upstream_client.py

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

import requests

from config import Config
from timetable_sync.errors import FetchError, FetchHttpError, FetchNetworkError, FetchParseError, FetchTimeout
from timetable_sync.services.core.fallback import (
    REASON_NETWORK_ERROR, REASON_PARSE_ERROR, REASON_TIMEOUT, REASON_UNKNOWN, STATUS_PREFIX, classify_failure,
)


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class UpstreamResponse:
    """Ответ внешнего источника в виде, готовом для отдачи через прокси."""
    status: int
    body: Any
    error: Optional[str] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and 200 <= self.status < 300

    def raise_for_failure(self) -> None:
        """Переводит неудачный ответ в исключение FetchError того же смысла."""
        if self.ok:
            return
        if self.reason == REASON_TIMEOUT:
            raise FetchTimeout()
        if self.reason == REASON_NETWORK_ERROR:
            raise FetchNetworkError(self.error)
        if self.reason == REASON_PARSE_ERROR:
            raise FetchParseError(self.error)
        if self.reason and self.reason.startswith(STATUS_PREFIX):
            raise FetchHttpError(self.status)
        raise FetchError(self.error)


def fetch_upstream(url: str, timeout: Optional[float] = None) -> UpstreamResponse:
    """
    Синхронно запрашивает внешний источник для прокси.
    Статус источника сохраняется; сетевые сбои превращаются в 502/504.
    """
    if not url:
        log.error("Адрес внешнего источника не задан в конфигурации.")
        return UpstreamResponse(status=503, body=None, error="Upstream URL is not configured", reason=REASON_UNKNOWN)

    timeout = timeout or Config.FETCH_TIMEOUT
    try:
        log.info(f"Запрос к внешнему источнику: {url}")
        response = requests.get(url, headers={'Accept': 'application/json'}, timeout=timeout)
    # --- Детальная обработка ошибок ---
    except requests.exceptions.Timeout:
        log.error(f"Внешний источник не ответил за {timeout} с: {url}")
        return UpstreamResponse(status=504, body=None, error="Upstream request timed out", reason=REASON_TIMEOUT)
    except requests.exceptions.ConnectionError as e:
        log.error(f"Сетевая ошибка при запросе к источнику: {e}")
        return UpstreamResponse(status=502, body=None, error="Upstream is unreachable", reason=REASON_NETWORK_ERROR)
    except requests.exceptions.RequestException as e:
        log.error(f"Непредвиденная ошибка requests при запросе к источнику: {e}", exc_info=True)
        return UpstreamResponse(status=502, body=None, error="Upstream request failed", reason=REASON_NETWORK_ERROR)

    if response.status_code != 200:
        log.warning(f"Внешний источник ответил статусом {response.status_code}")
        return UpstreamResponse(status=response.status_code, body=None,
                                error=f"Upstream returned status {response.status_code}",
                                reason=classify_failure(status=response.status_code))

    try:
        body = response.json()
    except ValueError:
        log.error(f"Внешний источник вернул не JSON: {response.text[:200]!r}")
        return UpstreamResponse(status=502, body=None, error="Upstream returned invalid JSON", reason=REASON_PARSE_ERROR)

    return UpstreamResponse(status=200, body=body)


class UpstreamTimetableClient:
    """
    Клиент движка для серверной стороны: ходит прямо во внешние источники
    через fetch_upstream, не блокируя цикл событий.
    """

    def __init__(self, timetable_url: Optional[str] = None, substitution_url: Optional[str] = None,
                 timeout: Optional[float] = None):
        self.timetable_url = timetable_url if timetable_url is not None else Config.TIMETABLE_UPSTREAM_URL
        self.substitution_url = substitution_url if substitution_url is not None else Config.SUBSTITUTION_UPSTREAM_URL
        self.timeout = timeout

    async def fetch_timetable(self) -> Any:
        response = await asyncio.to_thread(fetch_upstream, self.timetable_url, self.timeout)
        response.raise_for_failure()
        return response.body

    async def fetch_substitutions(self) -> Any:
        """Лента замен необязательна: при любой ошибке возвращается None."""
        if not self.substitution_url:
            return None
        response = await asyncio.to_thread(fetch_upstream, self.substitution_url, self.timeout)
        if not response.ok:
            log.warning(f"План замен недоступен ({response.reason}), расписание будет без замен.")
            return None
        return response.body

    async def close(self) -> None:
        pass
