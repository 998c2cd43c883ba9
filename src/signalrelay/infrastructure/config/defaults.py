"""Hardcoded default configuration values."""

from __future__ import annotations

from typing import Any

DESKTOP_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

MOBILE_USER_AGENT = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 14_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/14.0 Mobile/15E148 Safari/604.1"
)

ENTRY_DOMAINS: list[str] = [
    "http://play.jgdhds.com",
    "http://play.sportsteam7777.com",
    "http://play.sportsteam368.com",
]

DEFAULT_CONFIG: dict[str, Any] = {
    "app_name": "signalrelay",
    "environment": "dev",
    "http": {
        "timeout_seconds": 8.0,
        "user_agent": DESKTOP_USER_AGENT,
        "default_referer": "https://www.jrs80.com/",
    },
    "logging": {
        "level": "INFO",
        "format": None,  # Derived from environment in schema.py
    },
    "cache": {
        "dir": "./.cache/signalrelay",
        "backend": "diskcache",
    },
    "resolver": {
        "max_hops": 4,
        "worker_pool_size": 2,
        "resolve_timeout_seconds": 45.0,
        "entry_domains": list(ENTRY_DOMAINS),
    },
    "ranking": {
        "window_hours": 6.0,
        "prior_score": 0.1,
        "disable_fail_threshold": 5,
        "disable_fail_rate": 0.7,
    },
    "refresh": {
        "enabled": True,
        "interval_minutes": 20.0,
        "min_age_minutes": 20.0,
        "max_age_minutes": 120.0,
        "batch_size": 50,
    },
    "proxy": {
        "manifest_cache_ttl_seconds": 5.0,
        "manifest_cache_max": 500,
        "segment_cache_ttl_seconds": 15.0,
        "segment_cache_max": 200,
    },
}
