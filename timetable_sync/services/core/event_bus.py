# timetable_sync/services/core/event_bus.py

import asyncio
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Set


log = logging.getLogger(__name__)

SYNC_FAILED = "syncFailed"


def updated_event(resource: str) -> str:
    """'timetable' -> 'timetableUpdated'"""
    return f"{resource}Updated"


class EventBus:
    """
    Простая шина событий: подписчики получают уведомления в порядке публикации.
    Ошибка одного подписчика логируется и не мешает остальным.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[Callable[..., Any]]] = defaultdict(list)
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, event: str, callback: Callable[..., Any]) -> Callable[[], None]:
        """Возвращает функцию отписки."""
        self._subscribers[event].append(callback)
        return lambda: self.unsubscribe(event, callback)

    def unsubscribe(self, event: str, callback: Callable[..., Any]) -> None:
        callbacks = self._subscribers.get(event)
        if callbacks and callback in callbacks:
            callbacks.remove(callback)

    def publish(self, event: str, **payload: Any) -> int:
        """
        Рассылает событие. Корутинные подписчики запускаются задачами в текущем цикле.

        :return: Сколько подписчиков было вызвано.
        """
        callbacks = list(self._subscribers.get(event, ()))
        for callback in callbacks:
            try:
                if asyncio.iscoroutinefunction(callback):
                    task = asyncio.get_running_loop().create_task(self._run_async(event, callback, payload))
                    self._pending.add(task)
                    task.add_done_callback(self._pending.discard)
                else:
                    callback(**payload)
            except Exception as e:
                log.error(f"Подписчик события '{event}' завершился с ошибкой: {e}", exc_info=True)
        return len(callbacks)

    @staticmethod
    async def _run_async(event: str, callback: Callable[..., Any], payload: dict) -> None:
        try:
            await callback(**payload)
        except Exception as e:
            log.error(f"Асинхронный подписчик события '{event}' завершился с ошибкой: {e}", exc_info=True)

    async def drain(self) -> None:
        """Дожидается всех запущенных асинхронных подписчиков."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
