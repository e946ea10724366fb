"""Signal-aware shutdown that asks the scheduler to stop between batches."""

from __future__ import annotations

import asyncio
import signal
from typing import Callable, Iterable, List


class GracefulShutdown:
    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._callbacks: List[Callable[[], None]] = []
        self._installed: List[int] = []

    def on_trigger(self, callback: Callable[[], None]) -> None:
        self._callbacks.append(callback)

    def install(self, signals: Iterable[int] | None = None) -> None:
        loop = asyncio.get_running_loop()
        targets = list(signals) if signals is not None else [signal.SIGINT, signal.SIGTERM]
        for sig in targets:
            try:
                loop.add_signal_handler(sig, self.trigger)
            except NotImplementedError:  # pragma: no cover - windows fallback
                signal.signal(sig, lambda *_: self.trigger())
            self._installed.append(sig)

    def uninstall(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        for sig in self._installed:
            if loop is not None:
                try:
                    loop.remove_signal_handler(sig)
                except NotImplementedError:  # pragma: no cover - windows fallback
                    signal.signal(sig, signal.SIG_DFL)
        self._installed.clear()

    def trigger(self) -> None:
        if self._event.is_set():
            return
        self._event.set()
        for callback in self._callbacks:
            callback()

    @property
    def event(self) -> asyncio.Event:
        return self._event

    def is_triggered(self) -> bool:
        return self._event.is_set()


__all__ = ["GracefulShutdown"]
