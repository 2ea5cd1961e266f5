# timetable_sync/errors.py

"""Ошибки приема расписания и синхронизации."""

from typing import Optional


class SyncError(Exception):
    """Базовая ошибка движка расписания."""


class FormatUnrecognized(SyncError):
    """Ни один адаптер не распознал форму данных."""

    def __init__(self, shape: str = ''):
        super().__init__(f"Unrecognized timetable format: {shape}" if shape else "Unrecognized timetable format")
        self.shape = shape


class FetchError(SyncError):
    """Ошибка получения данных из сети."""


class FetchTimeout(FetchError):
    def __init__(self, timeout: Optional[float] = None):
        super().__init__(f"Request timed out after {timeout}s" if timeout else "Request timed out")
        self.timeout = timeout


class FetchHttpError(FetchError):
    def __init__(self, status: int, url: str = ''):
        super().__init__(f"HTTP {status} from {url}" if url else f"HTTP {status}")
        self.status = status
        self.url = url


class FetchNetworkError(FetchError):
    """Сеть недоступна, соединение сброшено и т.п."""


class FetchParseError(FetchError):
    """Тело ответа не является JSON."""


class PersistentStoreReadError(SyncError):
    """Локальный снимок поврежден. Считается пустым."""


class RemoteWriteError(SyncError):
    """Не удалось отправить данные в удаленное хранилище."""
