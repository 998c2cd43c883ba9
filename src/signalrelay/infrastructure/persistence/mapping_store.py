"""Mapping persistence backed by CachePort (diskcache/redis)."""

from __future__ import annotations

import asyncio
import builtins
import json
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import structlog

from signalrelay.domain.entities import RESOLVED_ID_RE, Mapping, is_commentary
from signalrelay.domain.ports.cache import CachePort

log = structlog.get_logger(__name__)

# Cache key listing every match key that has at least one row.
_MATCHES_KEY: str = "mapping:_matches"

_PREFERRED_MARKERS: tuple[str, ...] = ("高清", "直播②")
_PREFERRED_CHANNEL_INDEX = 2


def _row_key(match_key: str, channel_key: str) -> str:
    return f"mapping:{match_key}:{channel_key}"


def _index_key(match_key: str) -> str:
    return f"mapping:_index:{match_key}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _serialize(mapping: Mapping) -> str:
    return json.dumps(mapping.to_dict(), ensure_ascii=False)


def _deserialize(data: str) -> Mapping:
    d = json.loads(data)
    return Mapping(
        match_key=d["matchKey"],
        channel_key=d["channelKey"],
        resolved_id=d["resolvedId"],
        domain=d["domain"],
        channel_label=d.get("channelLabel", ""),
        source_url=d.get("sourceUrl", ""),
        success_count=int(d.get("successCount", 0)),
        fail_count=int(d.get("failCount", 0)),
        last_verified_at=datetime.fromisoformat(d["lastVerifiedAt"]),
        created_at=datetime.fromisoformat(d["createdAt"]),
        updated_at=datetime.fromisoformat(d["updatedAt"]),
    )


def validate_resolved_id(resolved_id: str) -> None:
    """Numeric ids must be 4-8 digits; anything else must be a URL."""
    if not resolved_id:
        raise ValueError("resolved_id must not be empty")
    if resolved_id.isdigit() and not RESOLVED_ID_RE.match(resolved_id):
        raise ValueError(f"resolved_id {resolved_id!r} must be 4-8 digits")
    if not resolved_id.isdigit() and not resolved_id.startswith("http"):
        raise ValueError(f"resolved_id {resolved_id!r} is neither an id nor a URL")


def select_best(rows: list[Mapping]) -> Mapping | None:
    """Pick the mapping to serve when the caller names no channel.

    Commentary rows are skipped.  A row labelled HD/"直播②" or sitting
    on channel 2 wins, then any "直播" row, then the best success rate.
    """
    eligible = [r for r in rows if not is_commentary(r.channel_label)]
    if not eligible:
        return None
    for row in eligible:
        label = row.channel_label
        if any(m in label for m in _PREFERRED_MARKERS):
            return row
        if row.channel_index == _PREFERRED_CHANNEL_INDEX:
            return row
    for row in eligible:
        if "直播" in row.channel_label:
            return row
    return max(eligible, key=lambda r: r.success_rate)


class CacheMappingStore:
    """Stores mapping rows via CachePort.

    Key schema:
    - ``mapping:{match}:{channel}`` -> JSON Mapping row
    - ``mapping:_index:{match}`` -> JSON list of channel keys
    - ``mapping:_matches`` -> JSON list of match keys

    All mutations run under one ``asyncio.Lock`` so read-increment-write
    sequences are atomic within the process.  Backend failures surface
    as ``StoreError``.
    """

    def __init__(self, cache: CachePort, retention_days: int = 7) -> None:
        self.cache = cache
        self.ttl = retention_days * 86_400
        self._lock = asyncio.Lock()

    # -- reads ---------------------------------------------------------------

    async def get(
        self, match_key: str, channel_index: int | None = None
    ) -> Mapping | None:
        if channel_index is not None:
            return await self._load_row(match_key, str(channel_index))
        return select_best(await self.list(match_key))

    async def list(self, match_key: str) -> builtins.list[Mapping]:
        """Rows of *match_key*, most successful first, channel key breaking ties."""
        rows: builtins.list[Mapping] = []
        for channel_key in await self._load_list(_index_key(match_key)):
            row = await self._load_row(match_key, channel_key)
            if row is not None:
                rows.append(row)
        rows.sort(key=lambda r: (-r.success_count, _channel_sort_key(r.channel_key)))
        return rows

    async def due_for_refresh(
        self,
        max_age: timedelta,
        min_age: timedelta,
        *,
        limit: int = 50,
    ) -> builtins.list[Mapping]:
        """Rows verified more than *min_age* but less than *max_age* ago, oldest first."""
        now = _now()
        due: builtins.list[Mapping] = []
        for match_key in await self._load_list(_MATCHES_KEY):
            for row in await self.list(match_key):
                age = now - row.last_verified_at
                if min_age < age < max_age:
                    due.append(row)
        due.sort(key=lambda r: r.last_verified_at)
        return due[:limit]

    async def stats(self) -> dict[str, int]:
        matches = await self._load_list(_MATCHES_KEY)
        rows = 0
        successes = 0
        failures = 0
        for match_key in matches:
            for row in await self.list(match_key):
                rows += 1
                successes += row.success_count
                failures += row.fail_count
        return {
            "matches": len(matches),
            "mappings": rows,
            "successTotal": successes,
            "failTotal": failures,
        }

    # -- writes --------------------------------------------------------------

    async def upsert(
        self,
        match_key: str,
        channel_key: str,
        resolved_id: str,
        domain: str,
        *,
        channel_label: str = "",
        source_url: str = "",
    ) -> Mapping:
        """Create or overwrite the target of a channel slot; counters survive."""
        validate_resolved_id(resolved_id)
        async with self._lock:
            now = _now()
            existing = await self._load_row(match_key, channel_key)
            if existing is None:
                row = Mapping(
                    match_key=match_key,
                    channel_key=channel_key,
                    resolved_id=resolved_id,
                    domain=domain,
                    channel_label=channel_label,
                    source_url=source_url,
                    last_verified_at=now,
                    created_at=now,
                    updated_at=now,
                )
            else:
                row = Mapping(
                    match_key=match_key,
                    channel_key=channel_key,
                    resolved_id=resolved_id,
                    domain=domain,
                    channel_label=channel_label or existing.channel_label,
                    source_url=source_url,
                    success_count=existing.success_count,
                    fail_count=existing.fail_count,
                    last_verified_at=existing.last_verified_at,
                    created_at=existing.created_at,
                    updated_at=now,
                )
            await self._save_row(row)
            await self._add_to_list(_index_key(match_key), channel_key)
            await self._add_to_list(_MATCHES_KEY, match_key)
        log.debug(
            "mapping_upserted",
            match_key=match_key,
            channel_key=channel_key,
            resolved_id=resolved_id,
            created=existing is None,
        )
        return row

    async def record_success(self, match_key: str, resolved_id: str) -> None:
        await self._bump(match_key, resolved_id, success=True)

    async def record_failure(self, match_key: str, resolved_id: str) -> None:
        await self._bump(match_key, resolved_id, success=False)

    # -- internal helpers ----------------------------------------------------

    async def _bump(self, match_key: str, resolved_id: str, *, success: bool) -> None:
        async with self._lock:
            now = _now()
            touched = 0
            for channel_key in await self._load_list(_index_key(match_key)):
                row = await self._load_row(match_key, channel_key)
                if row is None or row.resolved_id != resolved_id:
                    continue
                if success:
                    row = replace(
                        row,
                        success_count=row.success_count + 1,
                        last_verified_at=max(now, row.last_verified_at),
                        updated_at=now,
                    )
                else:
                    row = replace(
                        row, fail_count=row.fail_count + 1, updated_at=now
                    )
                await self._save_row(row)
                touched += 1
        if not touched:
            log.debug("mapping_counter_miss", match_key=match_key, resolved_id=resolved_id)

    async def _load_row(self, match_key: str, channel_key: str) -> Mapping | None:
        key = _row_key(match_key, channel_key)
        data = await self.cache.get(key)
        if data is None:
            return None
        try:
            return _deserialize(data)
        except (json.JSONDecodeError, KeyError, ValueError, TypeError) as e:
            log.error("mapping_deserialize_error", key=key, error=str(e))
            return None

    async def _save_row(self, row: Mapping) -> None:
        await self.cache.set(
            _row_key(row.match_key, row.channel_key), _serialize(row), ttl=self.ttl
        )

    async def _load_list(self, key: str) -> builtins.list[str]:
        data = await self.cache.get(key)
        if data is None:
            return []
        try:
            items = json.loads(data)
        except (json.JSONDecodeError, TypeError):
            return []
        return [str(i) for i in items] if isinstance(items, builtins.list) else []

    async def _add_to_list(self, key: str, item: str) -> None:
        items = await self._load_list(key)
        if item not in items:
            items.append(item)
        # Rewritten every time so the index TTL tracks its newest row.
        await self.cache.set(key, json.dumps(items, ensure_ascii=False), ttl=self.ttl)


def _channel_sort_key(channel_key: str) -> tuple[int, int | str]:
    if channel_key.isdigit():
        return 0, int(channel_key)
    return 1, channel_key
