# timetable_sync/services/utils/enums.py

from enum import Enum, auto


class CacheState(Enum):
    """Состояние ключа в кэше синхронизатора."""
    EMPTY = auto()     # данных нет ни в памяти, ни в снимке
    LOADING = auto()   # идет загрузка
    FRESH = auto()     # данные в памяти моложе TTL
    STALE = auto()     # данные есть, но TTL истек
    FALLBACK = auto()  # показываются запасные данные


class UpdateStatus(Enum):
    """Статусы завершения операции обновления."""
    SKIPPED = auto()  # Обновление пропущено (троттлинг или уже идет)
    SUCCESS = auto()  # Данные успешно получены и сохранены
    FAILED = auto()  # Произошла ошибка


class RefreshMode(Enum):
    """Кто инициировал обновление."""
    BACKGROUND = auto()
    FOREGROUND = auto()
