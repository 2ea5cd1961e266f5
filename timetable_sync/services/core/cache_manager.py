# timetable_sync/services/core/cache_manager.py

"""
Кэш и синхронизатор данных (offline-first).

Порядок выдачи данных для ключа:
1. свежая копия в памяти (моложе MEMORY_CACHE_TTL);
2. локальный снимок, при этом в фоне запускается обновление (не чаще BACKGROUND_REFRESH_WINDOW);
3. если снимка нет - ждем общую для всех загрузку;
4. если и загрузка не удалась - запасные данные ресурса.

Локальные изменения (put) сначала пишутся в снимок, а в удаленное хранилище
уходят в фоне. Пока изменение не подтверждено, результаты загрузки не
перезаписывают локальные данные.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from config import Config
from timetable_sync.services.core.event_bus import SYNC_FAILED, EventBus, updated_event
from timetable_sync.services.core.fallback import classify_failure
from timetable_sync.services.core.snapshot_store import (
    LAST_BG_FETCH_KEY, LAST_CLOUD_FETCH_KEY, LAST_SYNC_KEY, PENDING_PUSH_KEY, SnapshotStore, companion_key,
)
from timetable_sync.services.utils.enums import CacheState, RefreshMode, UpdateStatus


log = logging.getLogger(__name__)


def _identity(value: Any) -> Any:
    return value


@dataclass
class Resource:
    """
    Описание синхронизируемого ресурса.

    :param name: Имя ресурса, из него строятся события ('timetable' -> 'timetableUpdated').
    :param storage_key: Ключ в локальном снимке ('timetableEntries', 'gradeCalculator').
    :param fetch: Корутина загрузки. Ошибка -> путь запасных данных.
    :param encode: Значение -> JSON для снимка.
    :param decode: JSON из снимка -> значение (None, если снимок непригоден).
    :param fallback: Причина сбоя -> запасное значение.
    :param push: Корутина отправки локального значения в удаленное хранилище.
    """
    name: str
    storage_key: str
    fetch: Callable[[], Awaitable[Any]]
    encode: Callable[[Any], Any] = _identity
    decode: Callable[[Any], Any] = _identity
    fallback: Optional[Callable[[str], Any]] = None
    push: Optional[Callable[[Any], Awaitable[Any]]] = None


@dataclass
class CacheEntry:
    key: str
    payload: Any
    # None - значение взято из снимка, свежесть неизвестна
    fetched_at: Optional[float] = None

    def is_fresh(self, now: float, ttl: float) -> bool:
        return self.fetched_at is not None and (now - self.fetched_at) < ttl


@dataclass
class _KeyState:
    fallback: bool = False
    version: int = 0
    notified_reasons: Set[str] = field(default_factory=set)
    last_status: Optional[UpdateStatus] = None


class SyncReconciler:
    """Владеет кэшем в памяти, снимком и фоновыми задачами всех зарегистрированных ресурсов."""

    def __init__(self, store: Optional[SnapshotStore] = None, bus: Optional[EventBus] = None, *,
                 memory_ttl: Optional[float] = None,
                 background_window: Optional[float] = None,
                 foreground_window: Optional[float] = None,
                 fetch_timeout: Optional[float] = None,
                 remote_sync_enabled: Optional[bool] = None,
                 clock: Callable[[], float] = time.time):
        self.store = store or SnapshotStore()
        self.bus = bus or EventBus()
        self.memory_ttl = Config.MEMORY_CACHE_TTL if memory_ttl is None else memory_ttl
        self.background_window = Config.BACKGROUND_REFRESH_WINDOW if background_window is None else background_window
        self.foreground_window = Config.FOREGROUND_REFRESH_WINDOW if foreground_window is None else foreground_window
        self.fetch_timeout = Config.FETCH_TIMEOUT if fetch_timeout is None else fetch_timeout
        self.remote_sync_enabled = Config.REMOTE_SYNC_ENABLED if remote_sync_enabled is None else remote_sync_enabled
        self._clock = clock

        self._resources: Dict[str, Resource] = {}
        self._memory: Dict[str, CacheEntry] = {}
        self._keys: Dict[str, _KeyState] = {}
        self._inflight: Dict[str, asyncio.Task] = {}
        self._pushes: Dict[str, asyncio.Task] = {}

    # --- Регистрация ---

    def register(self, resource: Resource) -> Resource:
        self._resources[resource.name] = resource
        self._keys.setdefault(resource.name, _KeyState())
        return resource

    def _resource(self, key: str) -> Resource:
        try:
            return self._resources[key]
        except KeyError:
            raise KeyError(f"Ресурс '{key}' не зарегистрирован") from None

    # --- Чтение ---

    async def get(self, key: str, force_refresh: bool = False) -> Any:
        """
        Возвращает значение ресурса, не бросая исключений при сбоях сети и формата.

        :param key: Имя зарегистрированного ресурса.
        :param force_refresh: Принудительное обновление (ограничено коротким окном троттлинга).
        """
        resource = self._resource(key)
        now = self._clock()

        if force_refresh:
            return await self._foreground_refresh(resource)

        entry = self._memory.get(key)
        if entry is not None and entry.is_fresh(now, self.memory_ttl):
            log.debug(f"'{key}': отдаем свежие данные из памяти.")
            return entry.payload

        current = self._current_value(resource)
        if current is not None:
            self._schedule_background_refresh(resource)
            return current

        log.info(f"'{key}': данных нет ни в памяти, ни в снимке. Ждем загрузку.")
        return await self._await_refresh(resource, RefreshMode.BACKGROUND)

    def peek(self, key: str) -> Any:
        """Текущее значение из памяти или снимка, без загрузки."""
        return self._current_value(self._resource(key))

    def _current_value(self, resource: Resource) -> Any:
        entry = self._memory.get(resource.name)
        if entry is not None:
            return entry.payload

        raw = self.store.get(resource.storage_key)
        if raw is None:
            return None
        try:
            value = resource.decode(raw)
        except Exception as e:
            log.error(f"'{resource.name}': не удалось разобрать снимок: {e}", exc_info=True)
            return None
        if value is not None:
            self._memory[resource.name] = CacheEntry(key=resource.name, payload=value)
        return value

    # --- Обновление ---

    def _seconds_since(self, stamp_key: str, resource: Resource) -> Optional[float]:
        stamp = self.store.get(companion_key(stamp_key, resource.name))
        if not isinstance(stamp, (int, float)):
            return None
        return self._clock() - stamp

    def _schedule_background_refresh(self, resource: Resource) -> None:
        key = resource.name
        if self.is_pending_push(key):
            # Сначала отправляем локальные изменения, загрузка - после подтверждения
            self._start_push(resource)
            return
        if key in self._inflight:
            log.debug(f"'{key}': загрузка уже идет, отдаем имеющиеся данные.")
            return

        elapsed = self._seconds_since(LAST_CLOUD_FETCH_KEY, resource)
        if elapsed is not None and elapsed < self.background_window:
            log.debug(f"'{key}': фоновое обновление пропущено, прошло {elapsed:.0f} с.")
            return

        log.info(f"'{key}': запускаю фоновое обновление.")
        self._start_refresh(resource, RefreshMode.BACKGROUND)

    async def _foreground_refresh(self, resource: Resource) -> Any:
        key = resource.name
        elapsed = self._seconds_since(LAST_BG_FETCH_KEY, resource)
        if elapsed is not None and elapsed < self.foreground_window:
            current = self._current_value(resource)
            if current is not None:
                log.info(f"'{key}': принудительное обновление пропущено (прошло {elapsed:.1f} с).")
                return current

        if key not in self._inflight:
            log.warning(f"'{key}': принудительное обновление инициировано.")
        return await self._await_refresh(resource, RefreshMode.FOREGROUND)

    def _start_refresh(self, resource: Resource, mode: RefreshMode) -> asyncio.Task:
        key = resource.name
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._refresh(resource, mode))
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._inflight.pop(k, None) if self._inflight.get(k) is t else None)
        return task

    async def _await_refresh(self, resource: Resource, mode: RefreshMode) -> Any:
        # shield: отмена одного ожидающего не отменяет общую загрузку
        value, status = await asyncio.shield(self._start_refresh(resource, mode))
        if status is not UpdateStatus.SUCCESS:
            log.info(f"'{resource.name}': обновление завершилось со статусом {status.name}, отдаем имеющиеся данные.")
        return value

    def last_update_status(self, key: str) -> Optional[UpdateStatus]:
        """Итог последней загрузки ключа (None - загрузок еще не было)."""
        self._resource(key)
        return self._keys[key].last_status

    async def _refresh(self, resource: Resource, mode: RefreshMode):
        """Одна загрузка ресурса. Возвращает (значение, UpdateStatus), не бросает исключений."""
        value, status = await self._pull(resource, mode)
        self._keys[resource.name].last_status = status
        return value, status

    async def _pull(self, resource: Resource, mode: RefreshMode):
        key = resource.name
        started = self._clock()
        stamps = {companion_key(LAST_CLOUD_FETCH_KEY, key): started}
        if mode is RefreshMode.FOREGROUND:
            stamps[companion_key(LAST_BG_FETCH_KEY, key)] = started
        self.store.update(stamps)

        if self.is_pending_push(key):
            pushed = await self._start_push(resource)
            if not pushed:
                return self._current_value(resource), UpdateStatus.SKIPPED

        # Загрузка, начатая до локального изменения, его не перезаписывает
        version = self._keys[key].version
        try:
            value = await asyncio.wait_for(resource.fetch(), timeout=self.fetch_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return self._handle_failure(resource, e), UpdateStatus.FAILED

        if self.is_pending_push(key) or self._keys[key].version != version:
            log.warning(f"'{key}': за время загрузки появились локальные изменения, загруженные данные отброшены.")
            return self._current_value(resource), UpdateStatus.SKIPPED

        self._save(resource, value, fetched_at=self._clock())
        state = self._keys[key]
        state.fallback = False
        state.notified_reasons.clear()
        log.info(f"'{key}': данные обновлены ({mode.name.lower()}).")
        self.bus.publish(updated_event(key), value=value)
        return value, UpdateStatus.SUCCESS

    def _handle_failure(self, resource: Resource, error: Exception) -> Any:
        key = resource.name
        reason = classify_failure(error)
        log.warning(f"'{key}': загрузка не удалась ({reason}): {error}")
        self._notify_failure(resource, reason)

        current = self._current_value(resource)
        if current is not None:
            return current

        self._keys[key].fallback = True
        if resource.fallback is None:
            return None
        return resource.fallback(reason)

    def _notify_failure(self, resource: Resource, reason: str) -> None:
        notified = self._keys[resource.name].notified_reasons
        if reason in notified:
            return
        notified.add(reason)
        self.bus.publish(SYNC_FAILED, resource=resource.name, reason=reason)

    def _save(self, resource: Resource, value: Any, fetched_at: float) -> None:
        key = resource.name
        encoded = resource.encode(value)
        self._memory[key] = CacheEntry(key=key, payload=value, fetched_at=fetched_at)
        self._keys[key].version += 1
        self.store.update({
            resource.storage_key: encoded,
            companion_key(LAST_SYNC_KEY, key): datetime.fromtimestamp(fetched_at).isoformat(),
        })

    # --- Запись ---

    def put(self, key: str, value: Any) -> bool:
        """
        Локальное изменение: сразу в память и снимок, в удаленное хранилище - в фоне.

        :return: False, если значение не удалось сохранить.
        """
        resource = self._resource(key)
        try:
            self._save(resource, value, fetched_at=self._clock())
        except Exception as e:
            log.error(f"'{key}': не удалось сохранить локальное изменение: {e}", exc_info=True)
            return False

        self._keys[key].fallback = False
        if self.remote_sync_enabled and resource.push is not None:
            self.store.set(companion_key(PENDING_PUSH_KEY, key), True)
            try:
                self._start_push(resource)
            except RuntimeError:
                # Нет работающего цикла событий: отправим при следующей синхронизации
                log.info(f"'{key}': отправка изменений отложена до следующей синхронизации.")

        self.bus.publish(updated_event(key), value=value)
        return True

    def is_pending_push(self, key: str) -> bool:
        return bool(self.store.get(companion_key(PENDING_PUSH_KEY, key)))

    def _start_push(self, resource: Resource) -> asyncio.Task:
        key = resource.name
        task = self._pushes.get(key)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._push(resource))
            self._pushes[key] = task
            task.add_done_callback(lambda t, k=key: self._pushes.pop(k, None) if self._pushes.get(k) is t else None)
        return task

    async def _push(self, resource: Resource) -> bool:
        """Отправляет последнее локальное значение, пока оно не перестанет меняться."""
        key = resource.name
        state = self._keys[key]
        if resource.push is None:
            self.store.delete(companion_key(PENDING_PUSH_KEY, key))
            return True
        while self.is_pending_push(key):
            version = state.version
            value = self._current_value(resource)
            try:
                await asyncio.wait_for(resource.push(value), timeout=self.fetch_timeout)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                reason = classify_failure(e)
                log.error(f"'{key}': не удалось отправить изменения ({reason}): {e}")
                self._notify_failure(resource, reason)
                return False

            if state.version == version:
                self.store.delete(companion_key(PENDING_PUSH_KEY, key))
                state.notified_reasons.clear()
                log.info(f"'{key}': локальные изменения отправлены.")
        return True

    # --- Служебное ---

    def invalidate(self, key: str) -> None:
        """Сбрасывает копию в памяти и окно фонового обновления."""
        self._resource(key)
        self._memory.pop(key, None)
        self.store.delete(companion_key(LAST_CLOUD_FETCH_KEY, key))

    def state(self, key: str) -> CacheState:
        resource = self._resource(key)
        if key in self._inflight:
            return CacheState.LOADING
        if self._keys[key].fallback:
            return CacheState.FALLBACK
        entry = self._memory.get(key)
        if entry is not None and entry.is_fresh(self._clock(), self.memory_ttl):
            return CacheState.FRESH
        if entry is not None or resource.storage_key in self.store:
            return CacheState.STALE
        return CacheState.EMPTY

    async def close(self) -> None:
        """Отменяет все фоновые загрузки и отправки."""
        tasks = list(self._inflight.values()) + list(self._pushes.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()
        self._pushes.clear()
        await self.bus.drain()
