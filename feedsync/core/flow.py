from __future__ import annotations

import asyncio
from contextlib import suppress
from typing import Any, AsyncIterator, Callable, Generic, List, Tuple, TypeVar

T = TypeVar("T")

Listener = Callable[[], None]


class StateFlow(Generic[T]):
    """Beobachtbarer Einzelwert.

    Beobachter werden synchron bei jeder Änderung benachrichtigt. Konsumenten
    über ``collect`` sehen immer nur den jeweils neuesten Wert (konfliert),
    nie eine Warteschlange aller Zwischenstände.
    """

    def __init__(self, value: T, *, distinct: bool = True) -> None:
        self._value = value
        self._distinct = distinct
        self._listeners: List[Listener] = []
        self._emissions = 0

    @property
    def value(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        if self._distinct and value == self._value:
            return
        self._value = value
        self._emissions += 1
        for listener in list(self._listeners):
            listener()

    def update(self, transform: Callable[[T], T]) -> T:
        value = transform(self._value)
        self.set(value)
        return value

    def listen(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            with suppress(ValueError):
                self._listeners.remove(listener)

        return _remove

    async def collect(self) -> AsyncIterator[T]:
        changed = asyncio.Event()
        remove = self.listen(changed.set)
        try:
            yield self._value
            while True:
                await changed.wait()
                changed.clear()
                yield self._value
        finally:
            remove()

    async def wait_for(self, predicate: Callable[[T], bool]) -> T:
        """Wartet, bis der aktuelle Wert ``predicate`` erfüllt."""
        changed = asyncio.Event()
        remove = self.listen(changed.set)
        try:
            while not predicate(self._value):
                await changed.wait()
                changed.clear()
            return self._value
        finally:
            remove()

    def stats(self) -> dict:
        return {"emissions": self._emissions, "listeners": len(self._listeners)}


async def combine_latest(*flows: StateFlow[Any]) -> AsyncIterator[Tuple[Any, ...]]:
    """Liefert Schnappschüsse aller Eingänge, sobald sich einer davon ändert.

    Alle Werte eines Schnappschusses werden im selben Schritt gelesen. Ändern
    sich mehrere Eingänge ohne Unterbrechung hintereinander, entsteht genau ein
    Schnappschuss mit allen neuen Werten.
    """
    changed = asyncio.Event()
    removers = [flow.listen(changed.set) for flow in flows]
    try:
        yield tuple(flow.value for flow in flows)
        while True:
            await changed.wait()
            changed.clear()
            yield tuple(flow.value for flow in flows)
    finally:
        for remove in removers:
            remove()
