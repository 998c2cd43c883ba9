"""Port for persisted (match, channel) -> resolution mappings."""

from __future__ import annotations

from datetime import timedelta
from typing import Protocol, runtime_checkable

from signalrelay.domain.entities import Mapping


@runtime_checkable
class MappingStorePort(Protocol):
    """Async interface for mapping rows and their success telemetry.

    Every method may raise ``StoreError``; callers degrade to
    "no mapping available" instead of failing the request.
    """

    async def get(
        self, match_key: str, channel_index: int | None = None
    ) -> Mapping | None: ...

    async def list(self, match_key: str) -> list[Mapping]: ...

    async def upsert(
        self,
        match_key: str,
        channel_key: str,
        resolved_id: str,
        domain: str,
        *,
        channel_label: str = "",
        source_url: str = "",
    ) -> Mapping: ...

    async def record_success(self, match_key: str, resolved_id: str) -> None: ...

    async def record_failure(self, match_key: str, resolved_id: str) -> None: ...

    async def due_for_refresh(
        self,
        max_age: timedelta,
        min_age: timedelta,
        *,
        limit: int = 50,
    ) -> list[Mapping]: ...

    async def stats(self) -> dict[str, int]: ...
