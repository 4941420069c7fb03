# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

"""
Append-only archive of rollover history.

Entries are stored one JSON object per line (JSON Lines). The file is only
ever opened in append mode for writing and is never truncated or rewritten,
matching the append-only contract of RolloverHistoryEntry.

Reading always parses the entire file from disk so that the in-process view
stays consistent with anything written by concurrent processes.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import aiofiles
from pydantic import ValidationError

from envelope_ledger.storage.interface import LedgerStorage
from envelope_ledger.types import RolloverHistoryEntry

logger = logging.getLogger("envelope_ledger.storage")


class RolloverHistoryArchive:
    """
    Persistent JSON Lines mirror of the rollover audit trail.

    Parameters
    ----------
    file_path:
        Path to the archive file. It is created on first append.
    """

    def __init__(self, file_path: str | Path) -> None:
        self._file_path = Path(file_path)

    @property
    def file_path(self) -> Path:
        return self._file_path

    async def append(self, entry: RolloverHistoryEntry) -> None:
        line = json.dumps(entry.model_dump(mode="json")) + "\n"
        async with aiofiles.open(self._file_path, mode="a", encoding="utf-8") as file_handle:
            await file_handle.write(line)

    async def all(self) -> list[RolloverHistoryEntry]:
        if not self._file_path.exists():
            return []

        entries: list[RolloverHistoryEntry] = []
        async with aiofiles.open(self._file_path, mode="r", encoding="utf-8") as file_handle:
            line_number = 0
            async for line in file_handle:
                line_number += 1
                stripped = line.strip()
                if not stripped:
                    continue
                try:
                    entries.append(RolloverHistoryEntry.model_validate(json.loads(stripped)))
                except (json.JSONDecodeError, ValidationError):
                    logger.warning(
                        "rollover_archive_malformed_line",
                        extra={"path": str(self._file_path), "line": line_number},
                    )
        return entries

    async def query(
        self,
        envelope_id: str | None = None,
        target_month_key: str | None = None,
    ) -> list[RolloverHistoryEntry]:
        entries = await self.all()
        if envelope_id is not None:
            entries = [entry for entry in entries if entry.envelope_id == envelope_id]
        if target_month_key is not None:
            entries = [entry for entry in entries if entry.target_month_key == target_month_key]
        return entries

    async def sync_from(self, storage: LedgerStorage) -> int:
        """
        Append every committed storage entry not yet present in the archive.

        Returns the number of entries written. Safe to call repeatedly.
        """
        archived_ids = {entry.id for entry in await self.all()}
        written = 0
        for entry in storage.list_rollover_history():
            if entry.id in archived_ids:
                continue
            await self.append(entry)
            written += 1
        if written:
            logger.info(
                "rollover_archive_synced",
                extra={"path": str(self._file_path), "written": written},
            )
        return written
