from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional, Set


class Debouncer:
    """
    Откладывает вызов callback(value) на delay секунд после последнего trigger().

    Отменяется только таймер. Уже запущенный callback доживает до конца:
    свежесть ответа проверяет сам callback.
    """

    def __init__(self, delay: float, callback: Callable[[Any], Awaitable[None]]) -> None:
        self.delay = delay
        self.callback = callback
        self._timer: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()

    def trigger(self, value: Any) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = asyncio.create_task(self._fire(value))

    async def _fire(self, value: Any) -> None:
        await asyncio.sleep(self.delay)
        task = asyncio.create_task(self.callback(value))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    @property
    def pending(self) -> bool:
        return (self._timer is not None and not self._timer.done()) or bool(self._inflight)

    async def wait(self) -> None:
        if self._timer is not None and not self._timer.done():
            # отмена ожидающего не задевает таймер
            await asyncio.wait({self._timer})
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    def cancel(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
