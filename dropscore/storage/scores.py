"""Score store contract and its error taxonomy.

The store is append plus bulk retention only. There is no update and no
delete-by-content, so entries never change once written.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from dropscore.models.entries import ScoreEntry


class StoreError(Exception):
    """Infrastructure failure talking to the score store."""

    def __init__(self, operation: str, key: str | None = None, message: str | None = None):
        self.operation = operation
        self.key = key
        detail = message or type(self).__name__
        super().__init__(f"{operation}({key or ''}): {detail}")


class StoreTimeout(StoreError):
    pass


class StoreUnavailable(StoreError):
    pass


class StoreConflict(StoreError):
    """An id was written twice; points at an id-generation bug."""


class ScoreStore(Protocol):
    async def append(self, entry: ScoreEntry) -> None: ...

    async def query_by_player(self, initials: str) -> list[ScoreEntry]: ...

    async def query_top_n(self, n: int) -> list[ScoreEntry]: ...

    async def query_by_id(self, score_id: str) -> ScoreEntry | None: ...

    async def count_outranking(self, entry: ScoreEntry) -> int: ...

    async def purge_older_than(self, cutoff: datetime) -> int: ...

    async def count(self) -> int: ...

    async def ping(self) -> bool: ...
