# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation
from __future__ import annotations

from decimal import Decimal


class LedgerError(Exception):
    """Base class for all envelope-ledger errors."""

    def __init__(self, message: str, code: str = "LEDGER_ERROR") -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class LedgerValidationError(LedgerError):
    """
    Raised when caller input is rejected before any mutation.

    Covers non-positive amounts, malformed numeric strings and missing or
    out-of-range fields. Always recoverable by re-submitting corrected input.

    Attributes:
        field: Name of the offending input, when known.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message, code="VALIDATION_ERROR")
        self.field = field


class InsufficientFundsError(LedgerError):
    """
    Raised when an amount exceeds what can be moved.

    Attributes:
        requested: The amount the caller asked for.
        available: The maximum the operation would have accepted.
        source: What the funds were drawn from (``'to_be_budgeted'`` or an
            envelope name).
    """

    def __init__(
        self,
        requested: Decimal,
        available: Decimal,
        source: str,
        currency_symbol: str = "€",
    ) -> None:
        super().__init__(
            f"Insufficient funds in {source}: requested {currency_symbol}{requested:.2f}, "
            f"max is {currency_symbol}{max(available, Decimal('0')):.2f}.",
            code="INSUFFICIENT_FUNDS",
        )
        self.requested = requested
        self.available = available
        self.source = source


class LimitExceededError(LedgerError):
    """Raised when creating a record would exceed a configured cap."""

    def __init__(self, what: str, limit: int) -> None:
        super().__init__(
            f"Cannot create more than {limit} {what}.",
            code="LIMIT_EXCEEDED",
        )
        self.what = what
        self.limit = limit


class SplitMismatchError(LedgerError):
    """
    Raised when split legs do not add up to the transaction total.

    Attributes:
        expected: The transaction total.
        actual: The sum of the submitted legs.
    """

    def __init__(self, expected: Decimal, actual: Decimal, message: str | None = None) -> None:
        super().__init__(
            message
            or f"Split legs sum to {actual:.2f} but the transaction total is {expected:.2f}.",
            code="SPLIT_MISMATCH",
        )
        self.expected = expected
        self.actual = actual


class InconsistentStateError(LedgerError):
    """Raised when an operation would leave orphaned or contradictory records."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="INCONSISTENT_STATE")


class ConcurrencyConflictError(LedgerError):
    """
    Raised by a storage backend that detected a lost update it could not
    resolve on its own. The in-memory backend serialises writers and never
    raises this.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message, code="CONCURRENCY_CONFLICT")


class NotFoundError(LedgerError):
    """Raised when a referenced record does not exist."""

    def __init__(self, kind: str, identifier: str, period_key: str | None = None) -> None:
        where = f" in period {period_key}" if period_key else ""
        super().__init__(
            f"{kind.capitalize()} {identifier!r} does not exist{where}.",
            code="NOT_FOUND",
        )
        self.kind = kind
        self.identifier = identifier
        self.period_key = period_key
