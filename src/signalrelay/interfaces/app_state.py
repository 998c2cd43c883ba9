"""Application state container for FastAPI dependency injection."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
from starlette.datastructures import State

from signalrelay.infrastructure.config import AppConfig

if TYPE_CHECKING:
    import asyncio

    from signalrelay.application.use_cases import (
        RefreshMatchUseCase,
        ResolveMatchUseCase,
    )
    from signalrelay.domain.ports import CachePort, MappingStorePort
    from signalrelay.infrastructure.proxy.hls_proxy import StreamProxy
    from signalrelay.infrastructure.proxy.session_store import StreamSessionStore
    from signalrelay.infrastructure.ranking.ranker import Ranker
    from signalrelay.infrastructure.refresh.scheduler import RefreshScheduler


class AppState(State):
    """FastAPI application state with all DI resources.

    Lifecycle managed by composition.py::lifespan().
    """

    # Configuration
    config: AppConfig

    # Infrastructure
    cache: CachePort
    http_client: httpx.AsyncClient

    # Domain Ports
    mapping_store: MappingStorePort

    # Shared mutable registries
    ranker: Ranker
    sessions: StreamSessionStore

    # Application Services
    resolve_uc: ResolveMatchUseCase
    refresh_uc: RefreshMatchUseCase
    stream_proxy: StreamProxy

    # Background refresh (optional - requires refresh.enabled=True)
    refresh_scheduler: RefreshScheduler
    _refresh_task: asyncio.Task | None

    # Set once lifespan startup completed
    ready: bool
