# timetable_sync/services/core/runtime.py

import asyncio
import logging
import threading
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Awaitable, Optional

from config import Config
from timetable_sync.services.clients.document_store import DocumentStore, InMemoryDocumentStore, RestDocumentStore
from timetable_sync.services.clients.upstream_client import UpstreamTimetableClient
from timetable_sync.services.core.cache_manager import SyncReconciler
from timetable_sync.services.core.snapshot_store import SnapshotStore
from timetable_sync.services.core.subjects_service import SubjectsRepository, SubjectsService
from timetable_sync.services.core.timetable_service import TimetableService


log = logging.getLogger(__name__)

EXTENSION_KEY = 'timetable_sync'


def _setting(config: dict, name: str) -> Any:
    value = config.get(name)
    return getattr(Config, name) if value is None else value


class ServiceRuntime:
    """
    Один синхронизатор на процесс: свой цикл событий в фоновом потоке,
    чтобы фоновые обновления и отправки переживали отдельный запрос.
    Синхронные обработчики Flask вызывают корутины через run().
    """

    def __init__(self, config: dict):
        self.fetch_timeout = float(_setting(config, 'FETCH_TIMEOUT'))
        remote_sync = bool(_setting(config, 'REMOTE_SYNC_ENABLED'))

        self.reconciler = SyncReconciler(
            SnapshotStore(_setting(config, 'SNAPSHOT_FILE')),
            memory_ttl=_setting(config, 'MEMORY_CACHE_TTL'),
            background_window=_setting(config, 'BACKGROUND_REFRESH_WINDOW'),
            foreground_window=_setting(config, 'FOREGROUND_REFRESH_WINDOW'),
            fetch_timeout=self.fetch_timeout,
            remote_sync_enabled=remote_sync,
        )
        self.timetable = TimetableService(
            UpstreamTimetableClient(
                _setting(config, 'TIMETABLE_UPSTREAM_URL'),
                _setting(config, 'SUBSTITUTION_UPSTREAM_URL'),
                timeout=self.fetch_timeout,
            ),
            self.reconciler,
        )

        store: DocumentStore
        if remote_sync and _setting(config, 'REMOTE_STORE_URL'):
            store = RestDocumentStore(
                base_url=_setting(config, 'REMOTE_STORE_URL'),
                api_key=_setting(config, 'REMOTE_STORE_API_KEY'),
                database_id=_setting(config, 'REMOTE_DATABASE_ID'),
                timeout=self.fetch_timeout,
            )
        else:
            store = InMemoryDocumentStore()
        self.subjects = SubjectsService(
            SubjectsRepository(
                store,
                user_id=_setting(config, 'SYNC_USER_ID'),
                subjects_collection=_setting(config, 'SUBJECTS_COLLECTION'),
                grades_collection=_setting(config, 'GRADES_COLLECTION'),
            ),
            self.reconciler,
        )

        self._lock = threading.Lock()
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever, name='timetable-sync', daemon=True)
        self._thread.start()
        log.info("Цикл синхронизации запущен.")

    @property
    def running(self) -> bool:
        return not self._loop.is_closed()

    def run(self, coro: Awaitable, timeout: Optional[float] = None) -> Any:
        """Выполняет корутину в цикле синхронизатора и ждет результат."""
        if not self.running:
            raise RuntimeError("Цикл синхронизации уже остановлен")
        # Загрузка расписания - до двух запросов плюс разбор
        timeout = self.fetch_timeout * 3 if timeout is None else timeout
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        try:
            return future.result(timeout)
        except FutureTimeoutError:
            future.cancel()
            raise

    async def _close_services(self) -> None:
        await self.timetable.close()
        await self.subjects.repository.store.close()

    def shutdown(self) -> None:
        """Отменяет фоновые задачи, закрывает клиентов и останавливает цикл."""
        with self._lock:
            if not self.running:
                return
            try:
                self.run(self._close_services())
            finally:
                self._loop.call_soon_threadsafe(self._loop.stop)
                self._thread.join(timeout=self.fetch_timeout)
                self._loop.close()
                log.info("Цикл синхронизации остановлен.")


def get_runtime(app) -> ServiceRuntime:
    return app.extensions[EXTENSION_KEY]
