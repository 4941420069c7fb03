# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

from envelope_ledger.storage.file import RolloverHistoryArchive
from envelope_ledger.storage.interface import LedgerStorage
from envelope_ledger.storage.memory import MemoryStorage

__all__ = ["LedgerStorage", "MemoryStorage", "RolloverHistoryArchive"]
