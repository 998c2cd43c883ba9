"""Composition root: dependency injection via FastAPI lifespan."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager, suppress
from http.cookiejar import CookieJar as StdCookieJar
from http.cookiejar import DefaultCookiePolicy
from typing import AsyncIterator, cast

import httpx
import structlog
from fastapi import FastAPI

from signalrelay.application.use_cases import RefreshMatchUseCase, ResolveMatchUseCase
from signalrelay.infrastructure.cache.cache_factory import create_cache
from signalrelay.infrastructure.config.schema import AppConfig
from signalrelay.infrastructure.discovery.channel_discovery import ChannelDiscovery
from signalrelay.infrastructure.persistence.mapping_store import CacheMappingStore
from signalrelay.infrastructure.proxy.hls_proxy import (
    CachedManifest,
    ProxiedResource,
    StreamProxy,
)
from signalrelay.infrastructure.proxy.session_store import StreamSessionStore
from signalrelay.infrastructure.proxy.ttl_cache import TtlLruCache
from signalrelay.infrastructure.ranking.ranker import Ranker
from signalrelay.infrastructure.refresh.scheduler import RefreshScheduler
from signalrelay.infrastructure.resolver.extract import ExtractContext
from signalrelay.infrastructure.resolver.page_resolver import PageResolver
from signalrelay.interfaces.app_state import AppState

log = structlog.get_logger(__name__)


def build_http_client(config: AppConfig) -> httpx.AsyncClient:
    """Shared upstream client that never keeps cookies between requests.

    Every candidate carries its own ``CookieJar``; a client-level jar
    would leak one candidate's session into the next.
    """
    no_cookies = StdCookieJar(policy=DefaultCookiePolicy(allowed_domains=[]))
    return httpx.AsyncClient(
        timeout=httpx.Timeout(config.http_timeout_seconds),
        headers={"User-Agent": config.http_user_agent},
        cookies=httpx.Cookies(no_cookies),
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
    )


def _wire_proxy(state: AppState, config: AppConfig, resolver: PageResolver) -> None:
    proxy_cfg = config.proxy
    manifest_cache: TtlLruCache[CachedManifest] = TtlLruCache(
        ttl_seconds=proxy_cfg.manifest_cache_ttl_seconds,
        max_entries=proxy_cfg.manifest_cache_max,
    )
    segment_cache: TtlLruCache[ProxiedResource] = TtlLruCache(
        ttl_seconds=proxy_cfg.segment_cache_ttl_seconds,
        max_entries=proxy_cfg.segment_cache_max,
        max_bytes=proxy_cfg.segment_cache_max_bytes,
    )
    state.stream_proxy = StreamProxy(
        state.http_client,
        sessions=state.sessions,
        manifest_cache=manifest_cache,
        segment_cache=segment_cache,
        resolver=resolver,
        default_referer=proxy_cfg.default_referer,
        force_referer=proxy_cfg.force_referer,
        timeout_seconds=proxy_cfg.timeout_seconds,
        play_domain=config.resolver.entry_domains[0]
        if config.resolver.entry_domains
        else "http://play.jgdhds.com",
    )
    log.info(
        "stream_proxy_initialized",
        manifest_ttl=proxy_cfg.manifest_cache_ttl_seconds,
        segment_ttl=proxy_cfg.segment_cache_ttl_seconds,
        force_referer=proxy_cfg.force_referer,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan Hook: Initialize and cleanup all resources (DI Composition Root).

    Order matters:
        1. Cache (required by the mapping store)
        2. HTTP client (required by resolver, discovery and proxy)
        3. Mapping store, ranker, session store
        4. Resolver + discovery
        5. Use cases and stream proxy
        6. Refresh scheduler (optional background task)
    """
    state = cast(AppState, app.state)
    config = state.config
    state.ready = False

    # 1) Cache (must be first - the mapping store depends on it)
    cache = create_cache(
        backend=config.cache.backend,
        directory=str(config.cache.directory),
        redis_url=config.cache.redis_url,
        max_concurrent=config.cache.max_concurrent,
    )
    await cache.__aenter__()
    state.cache = cache
    log.info("cache_initialized", backend=config.cache.backend)

    # 2) HTTP client without a persistent cookie jar
    state.http_client = build_http_client(config)
    log.info("http_client_initialized", timeout=config.http_timeout_seconds)

    # 3) Shared state: mappings, host health, stream sessions
    state.mapping_store = CacheMappingStore(
        cache=state.cache,
        retention_days=config.mapping.retention_days,
    )
    ranking = config.ranking
    state.ranker = Ranker(
        window_hours=ranking.window_hours,
        prior_score=ranking.prior_score,
        disable_fail_threshold=ranking.disable_fail_threshold,
        disable_fail_rate=ranking.disable_fail_rate,
        promote_success_threshold=ranking.promote_success_threshold,
    )
    state.ranker.seed(config.resolver.entry_domains)
    state.sessions = StreamSessionStore(config.proxy.session_ttl_seconds)
    log.info("registries_initialized", entry_domains=config.resolver.entry_domains)

    # 4) Resolver + discovery
    resolver = PageResolver(
        state.http_client,
        max_hops=config.resolver.max_hops,
        user_agent=config.http_user_agent,
        default_referer=config.http_default_referer,
        timeout_seconds=config.http_timeout_seconds,
        context=ExtractContext(
            cipher_key=config.resolver.cipher_key,
            stream_host=config.resolver.stream_host,
        ),
    )
    discovery = ChannelDiscovery(
        state.http_client,
        entry_domains=config.resolver.entry_domains,
        user_agent=config.http_user_agent,
        default_referer=config.http_default_referer,
        timeout_seconds=config.http_timeout_seconds,
    )

    # 5) Use cases + proxy
    state.resolve_uc = ResolveMatchUseCase(
        store=state.mapping_store,
        resolver=resolver,
        discovery=discovery,
        ranker=state.ranker,
        sessions=state.sessions,
        worker_pool_size=config.resolver.worker_pool_size,
        resolve_timeout_seconds=config.resolver.resolve_timeout_seconds,
        default_referer=config.http_default_referer,
    )
    state.refresh_scheduler = RefreshScheduler(
        store=state.mapping_store,
        resolver=resolver,
        ranker=state.ranker,
        sessions=state.sessions,
        config=config.refresh,
        entry_domains=config.resolver.entry_domains,
    )
    state.refresh_uc = RefreshMatchUseCase(
        refresher=state.refresh_scheduler,
        resolver=state.resolve_uc,
    )
    _wire_proxy(state, config, resolver)

    # 6) Background refresh (optional)
    state._refresh_task = None
    if config.refresh.enabled:
        state._refresh_task = asyncio.create_task(
            state.refresh_scheduler.run_forever()
        )
        log.info("refresh_scheduler_scheduled")

    state.ready = True
    log.info("app_startup_complete")

    try:
        yield
    finally:
        state.ready = False

        if state._refresh_task is not None:
            state._refresh_task.cancel()
            with suppress(asyncio.CancelledError):
                await state._refresh_task
            log.info("refresh_scheduler_stopped")

        await state.resolve_uc.drain_background()

        await state.http_client.aclose()
        log.info("http_client_closed")

        await state.cache.aclose()
        log.info("cache_closed")

        log.info("app_shutdown_complete")
