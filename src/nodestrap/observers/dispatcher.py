# src/nodestrap/observers/dispatcher.py
from __future__ import annotations
import logging
from typing import List
from .events import LifecycleEvent

log = logging.getLogger("nodestrap")


class EventBus:
    def __init__(self, observers: List = None):
        self._observers = observers or []

    def emit(self, event: LifecycleEvent) -> None:
        for ob in self._observers:
            try:
                ob.notify(event)
            except Exception:
                # observers must not break a bootstrap
                log.debug("observer %r failed on %s", ob, event, exc_info=True)
