from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Iterable, List, TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def gather_bounded(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[R]],
    *,
    limit: int,
) -> List[R]:
    """Führt ``worker`` für alle Elemente mit höchstens ``limit`` parallelen Aufrufen aus.

    Der erste Fehler wird weitergereicht; alle noch laufenden Aufrufe sind bis
    dahin abgebrochen und beendet.
    """
    sem = asyncio.Semaphore(max(1, limit))

    async def _run(item: T) -> R:
        async with sem:
            return await worker(item)

    tasks = [asyncio.create_task(_run(item)) for item in items]
    try:
        return list(await asyncio.gather(*tasks))
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
