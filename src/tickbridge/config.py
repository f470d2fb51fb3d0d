from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import find_dotenv, load_dotenv

DEFAULT_RPC_URL = "https://rpc.qubic.org"


@dataclass(slots=True, frozen=True)
class Settings:
    rpc_url: str = DEFAULT_RPC_URL
    timeout_s: float = 30.0
    max_connections: int = 32
    http2: bool = True
    page_size: int = 500
    safety_buffer: int = 10
    snapshot_ttl_s: float = 30.0
    rate_limit_retries: int = 3
    backoff_base_s: float = 1.0
    fallback_epoch: int | None = None
    latest_fallback_candidates: int = 5
    adjacent_page_walk: int = 5
    binary_search_probes: int = 8
    binary_search_high_page: int = 1000
    adjacent_epochs: int = 2
    forward_epoch_probe: int = 1
    timestamp_epoch_lookback: int = 5
    max_empty_pages: int = 3
    probe_page_limit: int = 2
    log_level: str = "INFO"


def _env(name: str) -> str | None:
    raw = os.getenv(name, "").strip()
    return raw or None

def _env_int(name: str, default: int | None) -> int | None:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e

def _env_count(name: str, default: int, *, minimum: int = 1) -> int:
    v = _env_int(name, default)
    if v < minimum:
        raise ValueError(f"{name} must be at least {minimum}, got {v}")
    return v

def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e

def _env_bool(name: str, default: bool) -> bool:
    raw = _env(name)
    if raw is None:
        return default
    v = raw.lower()
    if v in ("1", "true", "yes", "on"):
        return True
    if v in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


def load_settings(*, dotenv: bool = True) -> Settings:
    """Build Settings from TICKBRIDGE_* env vars (and a .env file when present)."""
    if dotenv:
        load_dotenv(find_dotenv(usecwd=True))
    d = Settings()
    return Settings(
        rpc_url=_env("TICKBRIDGE_RPC_URL") or _env("QUBIC_RPC_URL") or d.rpc_url,
        timeout_s=_env_float("TICKBRIDGE_TIMEOUT_S", d.timeout_s),
        max_connections=_env_count("TICKBRIDGE_MAX_CONNECTIONS", d.max_connections),
        http2=_env_bool("TICKBRIDGE_HTTP2", d.http2),
        page_size=_env_count("TICKBRIDGE_PAGE_SIZE", d.page_size),
        safety_buffer=_env_count("TICKBRIDGE_SAFETY_BUFFER", d.safety_buffer, minimum=0),
        snapshot_ttl_s=_env_float("TICKBRIDGE_SNAPSHOT_TTL_S", d.snapshot_ttl_s),
        rate_limit_retries=_env_count("TICKBRIDGE_RATE_LIMIT_RETRIES", d.rate_limit_retries, minimum=0),
        backoff_base_s=_env_float("TICKBRIDGE_BACKOFF_BASE_S", d.backoff_base_s),
        fallback_epoch=_env_int("TICKBRIDGE_FALLBACK_EPOCH", d.fallback_epoch),
        latest_fallback_candidates=_env_count(
            "TICKBRIDGE_LATEST_FALLBACK_CANDIDATES", d.latest_fallback_candidates, minimum=0
        ),
        adjacent_page_walk=_env_count("TICKBRIDGE_ADJACENT_PAGE_WALK", d.adjacent_page_walk, minimum=0),
        binary_search_probes=_env_count("TICKBRIDGE_BINARY_SEARCH_PROBES", d.binary_search_probes, minimum=0),
        binary_search_high_page=_env_count("TICKBRIDGE_BINARY_SEARCH_HIGH_PAGE", d.binary_search_high_page),
        adjacent_epochs=_env_count("TICKBRIDGE_ADJACENT_EPOCHS", d.adjacent_epochs, minimum=0),
        forward_epoch_probe=_env_count("TICKBRIDGE_FORWARD_EPOCH_PROBE", d.forward_epoch_probe, minimum=0),
        timestamp_epoch_lookback=_env_count(
            "TICKBRIDGE_TIMESTAMP_EPOCH_LOOKBACK", d.timestamp_epoch_lookback, minimum=0
        ),
        max_empty_pages=_env_count("TICKBRIDGE_MAX_EMPTY_PAGES", d.max_empty_pages),
        probe_page_limit=_env_count("TICKBRIDGE_PROBE_PAGE_LIMIT", d.probe_page_limit),
        log_level=(_env("TICKBRIDGE_LOG_LEVEL") or d.log_level).upper(),
    )
