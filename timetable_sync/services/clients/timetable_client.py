# timetable_sync/services/clients/timetable_client.py

import asyncio
import json
import logging
from typing import Any, Optional

import aiohttp

from config import Config
from timetable_sync.errors import FetchHttpError, FetchNetworkError, FetchParseError, FetchTimeout


log = logging.getLogger(__name__)


class TimetableClient:
    """
    Асинхронный клиент для собственного прокси (/api/timetable, /api/substitute-plan).
    Ошибки aiohttp переводятся в FetchError-исключения.
    """

    def __init__(self, timetable_url: Optional[str] = None, substitution_url: Optional[str] = None,
                 timeout: Optional[float] = None, session: Optional[aiohttp.ClientSession] = None):
        self.timetable_url = timetable_url or Config.TIMETABLE_PROXY_URL
        self.substitution_url = substitution_url or Config.SUBSTITUTION_PROXY_URL
        self.timeout = timeout or Config.FETCH_TIMEOUT
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
            self._owns_session = True
        return self._session

    async def fetch_json(self, url: str) -> Any:
        """
        GET-запрос, ответ разбирается как JSON.

        :raises FetchTimeout, FetchHttpError, FetchNetworkError, FetchParseError:
        """
        session = self._get_session()
        headers = {"Accept": "application/json"}
        try:
            async with session.get(url, headers=headers) as resp:
                text = await resp.text()
                if resp.status != 200:
                    log.warning(f"Источник {url} ответил статусом {resp.status}: {text[:200]}")
                    raise FetchHttpError(resp.status, url)
        except asyncio.TimeoutError as e:
            raise FetchTimeout(self.timeout) from e
        except aiohttp.ClientError as e:
            log.error(f"Сетевая ошибка при запросе {url}: {e}")
            raise FetchNetworkError(str(e)) from e

        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            log.error(f"Ответ {url} не является JSON: {text[:200]!r}")
            raise FetchParseError(str(e)) from e

    async def fetch_timetable(self) -> Any:
        return await self.fetch_json(self.timetable_url)

    async def fetch_substitutions(self) -> Any:
        """Лента замен необязательна: при любой ошибке возвращается None."""
        if not self.substitution_url:
            return None
        try:
            return await self.fetch_json(self.substitution_url)
        except (FetchTimeout, FetchHttpError, FetchNetworkError, FetchParseError) as e:
            log.warning(f"План замен недоступен, расписание будет без замен: {e}")
            return None

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
