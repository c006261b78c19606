# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/iaasboot/observers/dispatcher.py
from __future__ import annotations
import logging
from typing import Iterable, List
from .events import BaseEvent
from .interface import Observer

log = logging.getLogger("iaasboot")


class EventBus:
    def __init__(self, observers: Iterable[Observer] | None = None):
        self._observers: List[Observer] = list(observers or [])

    def emit(self, event: BaseEvent) -> None:
        for ob in self._observers:
            try:
                ob.notify(event)
            except Exception as e:
                # a broken observer never fails the run
                log.debug(f"observer {ob.__class__.__name__} failed: {e}")
