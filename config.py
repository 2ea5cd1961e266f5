import os
from dotenv import load_dotenv

# Определяем путь к файлу .env.

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

# Используем BASE_DIR для поиска файла .env
load_dotenv(os.path.join(BASE_DIR, '.env'))


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """
    Класс для хранения конфигурационных переменных.
    Загружает переменные из окружения (из файла .env).
    """
    # --- Источники расписания (прокси берет данные отсюда) ---
    TIMETABLE_UPSTREAM_URL = os.getenv('TIMETABLE_UPSTREAM_URL', '')
    SUBSTITUTION_UPSTREAM_URL = os.getenv('SUBSTITUTION_UPSTREAM_URL', '')

    # Движок ходит только через собственный прокси (same-origin)
    TIMETABLE_PROXY_URL = os.getenv('TIMETABLE_PROXY_URL', 'http://127.0.0.1:5000/api/timetable')
    SUBSTITUTION_PROXY_URL = os.getenv('SUBSTITUTION_PROXY_URL', 'http://127.0.0.1:5000/api/substitute-plan')

    # --- Тайминги (в секундах) ---
    FETCH_TIMEOUT = float(os.getenv('FETCH_TIMEOUT', 5))
    MEMORY_CACHE_TTL = float(os.getenv('MEMORY_CACHE_TTL', 30))
    BACKGROUND_REFRESH_WINDOW = float(os.getenv('BACKGROUND_REFRESH_WINDOW', 300))
    FOREGROUND_REFRESH_WINDOW = float(os.getenv('FOREGROUND_REFRESH_WINDOW', 10))

    # --- Локальный снимок данных ---
    SNAPSHOT_FILE = os.getenv('SNAPSHOT_FILE', os.path.join(BASE_DIR, 'data', 'snapshot.json'))

    # --- Удаленное хранилище документов ---
    REMOTE_STORE_URL = os.getenv('REMOTE_STORE_URL', '')
    REMOTE_STORE_API_KEY = os.getenv('REMOTE_STORE_API_KEY', '')
    REMOTE_DATABASE_ID = os.getenv('REMOTE_DATABASE_ID', 'default')
    SUBJECTS_COLLECTION = os.getenv('SUBJECTS_COLLECTION', 'subjects')
    GRADES_COLLECTION = os.getenv('GRADES_COLLECTION', 'grades')
    SYNC_USER_ID = os.getenv('SYNC_USER_ID', 'local')
    REMOTE_SYNC_ENABLED = _env_bool('REMOTE_SYNC_ENABLED', False)

    REGION_TIMEDELTA = int(os.getenv('REGION_TIMEDELTA', 2))

    # --- Логи (файл пишется только вне debug-режима) ---
    LOG_DIR = os.getenv('LOG_DIR', os.path.join(BASE_DIR, 'logs'))
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

    # Проверка, что числовые настройки имеют смысл
    if FETCH_TIMEOUT <= 0:
        raise ValueError("FETCH_TIMEOUT в файле .env должен быть больше нуля")
    if REMOTE_SYNC_ENABLED and not REMOTE_STORE_URL:
        raise ValueError("Для REMOTE_SYNC_ENABLED необходимо задать REMOTE_STORE_URL в файле .env")
