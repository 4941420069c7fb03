# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

"""
Change notifications for UI refresh.

Listeners are called after a mutation has committed. They receive a
LedgerEvent describing what changed and are expected to re-read whatever
state they display; events never carry authoritative figures.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Literal, Optional

from pydantic import BaseModel, Field

from envelope_ledger.types import utcnow

logger = logging.getLogger("envelope_ledger.events")

LedgerEventKind = Literal[
    "period_created",
    "income_added",
    "income_updated",
    "income_deleted",
    "envelope_created",
    "envelope_updated",
    "envelope_deleted",
    "envelopes_reordered",
    "allocation_changed",
    "transaction_added",
    "transaction_updated",
    "transaction_deleted",
    "split_changed",
    "funds_transferred",
    "month_rolled_over",
    "goal_changed",
    "goal_deleted",
    "recurring_changed",
    "integrity_repaired",
    "activity_undone",
]


class LedgerEvent(BaseModel, frozen=True):
    kind: LedgerEventKind
    period_key: Optional[str] = None
    entity_id: Optional[str] = None
    occurred_at: datetime = Field(default_factory=utcnow)


LedgerListener = Callable[[LedgerEvent], None]


class EventBus:
    """Fan-out of committed ledger events to registered listeners."""

    def __init__(self) -> None:
        self._listeners: list[LedgerListener] = []
        self._lock = threading.Lock()
        # Per-thread buffer of events held back by ``deferred()``.
        self._local = threading.local()

    def subscribe(self, listener: LedgerListener) -> Callable[[], None]:
        """Register ``listener``. Returns a callable that unsubscribes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    @contextmanager
    def deferred(self) -> Iterator[None]:
        """
        Hold back events emitted by this thread inside the block.

        They are delivered, in order, once the outermost block exits cleanly
        and dropped if it raises. Wrap a storage unit of work in it so that
        operations composed of several mutations notify only after commit.
        """
        if getattr(self._local, "pending", None) is not None:
            yield
            return
        self._local.pending = []
        try:
            yield
        except BaseException:
            self._local.pending = None
            raise
        held, self._local.pending = self._local.pending, None
        for event in held:
            self._deliver(event)

    def emit(
        self,
        kind: LedgerEventKind,
        period_key: str | None = None,
        entity_id: str | None = None,
    ) -> None:
        event = LedgerEvent(kind=kind, period_key=period_key, entity_id=entity_id)
        pending = getattr(self._local, "pending", None)
        if pending is not None:
            pending.append(event)
            return
        self._deliver(event)

    def _deliver(self, event: LedgerEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                # The mutation is already committed; a broken listener must not undo it.
                logger.exception(
                    "ledger_listener_failed",
                    extra={"kind": event.kind, "period_key": event.period_key, "entity_id": event.entity_id},
                )
