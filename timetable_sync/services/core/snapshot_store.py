# timetable_sync/services/core/snapshot_store.py

import json
import logging
import os
from typing import Any, Dict, Optional

from config import Config
from timetable_sync.errors import PersistentStoreReadError
from timetable_sync.utils import make_json_serializable


log = logging.getLogger(__name__)

# Ключи-спутники для каждого ресурса
LAST_SYNC_KEY = "lastSyncTimestamp"
LAST_CLOUD_FETCH_KEY = "lastCloudFetchTime"
LAST_BG_FETCH_KEY = "lastBgFetchTime"
PENDING_PUSH_KEY = "pendingPush"


def companion_key(base: str, resource: str) -> str:
    """'lastCloudFetchTime', 'timetable' -> 'lastCloudFetchTime:timetable'"""
    return f"{base}:{resource}"


class SnapshotStore:
    """
    Локальный снимок: словарь "ключ -> JSON", целиком лежит в одном файле.
    Каждая запись переписывает файл через временный файл и os.replace,
    поэтому читатель видит либо старый, либо новый снимок.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path or Config.SNAPSHOT_FILE
        self._entries: Optional[Dict[str, Any]] = None

    def _load(self) -> Dict[str, Any]:
        if self._entries is None:
            try:
                self._entries = self._read_file()
            except PersistentStoreReadError as e:
                log.error(f"Снимок '{self.path}' поврежден, считаем его пустым: {e}")
                self._entries = {}
        return self._entries

    def _read_file(self) -> Dict[str, Any]:
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (json.JSONDecodeError, UnicodeDecodeError, OSError) as e:
            raise PersistentStoreReadError(str(e)) from e

        if not isinstance(data, dict):
            raise PersistentStoreReadError(f"ожидался объект, получен {type(data).__name__}")
        return data

    def _flush(self) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        temp_file = self.path + ".tmp"
        with open(temp_file, 'w', encoding='utf-8') as f:
            json.dump(self._entries, f, ensure_ascii=False, indent=2)
        os.replace(temp_file, self.path)

    def get(self, key: str, default: Any = None) -> Any:
        return self._load().get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.update({key: value})

    def update(self, values: Dict[str, Any]) -> None:
        """Пишет несколько ключей одной заменой файла."""
        entries = self._load()
        entries.update(make_json_serializable(values))
        try:
            self._flush()
        except OSError as e:
            # В памяти значения остаются, следующая запись попробует снова
            log.error(f"Не удалось записать снимок '{self.path}': {e}")

    def delete(self, *keys: str) -> None:
        entries = self._load()
        removed = [key for key in keys if entries.pop(key, None) is not None]
        if removed:
            try:
                self._flush()
            except OSError as e:
                log.error(f"Не удалось записать снимок '{self.path}': {e}")

    def __contains__(self, key: str) -> bool:
        return key in self._load()

    def reload(self) -> None:
        """Сбрасывает прочитанную копию, следующий доступ перечитает файл."""
        self._entries = None
