# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

from __future__ import annotations

import logging

from pydantic import BaseModel

from envelope_ledger.config import LedgerConfig
from envelope_ledger.envelope import available_balance, period_str, require_envelope
from envelope_ledger.errors import InsufficientFundsError, LedgerValidationError
from envelope_ledger.events import EventBus
from envelope_ledger.money import AmountInput, Money, exceeds, require_positive
from envelope_ledger.storage.interface import LedgerStorage
from envelope_ledger.types import Envelope, PeriodKey

logger = logging.getLogger("envelope_ledger.ledger")


class TransferResult(BaseModel, frozen=True):
    from_envelope: Envelope
    to_envelope: Envelope
    amount: Money
    replayed: bool = False


class TransferEngine:
    """
    Moves allocated-but-unspent money between two envelopes of one period.

    Only ``allocated`` changes. Incomes, spent figures and "to be budgeted"
    are untouched.
    """

    def __init__(self, storage: LedgerStorage, config: LedgerConfig, events: EventBus) -> None:
        self._storage = storage
        self._config = config
        self._events = events

    def transfer(
        self,
        period: PeriodKey | str,
        from_envelope_id: str,
        to_envelope_id: str,
        amount: AmountInput,
        idempotency_key: str | None = None,
    ) -> TransferResult:
        """
        Raises InsufficientFundsError when ``amount`` exceeds the source's
        ``allocated - spent``; the error carries that maximum.
        """
        value = require_positive(amount)
        if from_envelope_id == to_envelope_id:
            raise LedgerValidationError(
                "Source and destination envelopes must differ.", field="to_envelope_id"
            )
        key = period_str(period)

        with self._storage.unit_of_work():
            if idempotency_key is not None and self._storage.get_operation(idempotency_key) is not None:
                return TransferResult(
                    from_envelope=require_envelope(self._storage, key, from_envelope_id),
                    to_envelope=require_envelope(self._storage, key, to_envelope_id),
                    amount=value,
                    replayed=True,
                )

            source = require_envelope(self._storage, key, from_envelope_id)
            require_envelope(self._storage, key, to_envelope_id)
            available = available_balance(source)
            if exceeds(value, available):
                raise InsufficientFundsError(value, available, source.name, self._config.currency_symbol)

            from_envelope = self._storage.adjust_envelope(key, from_envelope_id, allocated_delta=-value)
            to_envelope = self._storage.adjust_envelope(key, to_envelope_id, allocated_delta=value)
            if idempotency_key is not None:
                self._storage.record_operation(idempotency_key, f"{from_envelope_id}->{to_envelope_id}")

        logger.info(
            "funds_transferred",
            extra={
                "period_key": key,
                "from_envelope_id": from_envelope_id,
                "to_envelope_id": to_envelope_id,
                "amount": str(value),
            },
        )
        self._events.emit("funds_transferred", key, from_envelope_id)
        return TransferResult(from_envelope=from_envelope, to_envelope=to_envelope, amount=value)
