from __future__ import annotations

import os

from book_core.sync_engine import OverflowPolicy, SyncConfig


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "y")


def _env_policy(name: str, default: OverflowPolicy) -> OverflowPolicy:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return OverflowPolicy(raw.strip().lower())
    except ValueError:
        return default


DERIBIT_WS_URL = os.getenv("DERIBIT_WS_URL", "wss://test.deribit.com/ws/api/v2")
INSTRUMENT = os.getenv("INSTRUMENT", "ETH-PERPETUAL")
BOOK_INTERVAL = os.getenv("BOOK_INTERVAL", "100ms")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Reconciliation
MAX_CONSECUTIVE_RESYNCS = _env_int("MAX_CONSECUTIVE_RESYNCS", 5)
STABLE_AFTER_DELTAS = _env_int("STABLE_AFTER_DELTAS", 10)
BUFFER_PENDING_DELTAS = _env_bool("BUFFER_PENDING_DELTAS", True)
RESYNC_BUFFER_MAX = _env_int("RESYNC_BUFFER_MAX", 10_000)
RESYNC_BUFFER_POLICY = _env_policy("RESYNC_BUFFER_POLICY", OverflowPolicy.DROP_OLDEST)
RESYNC_BACKOFF_S = _env_float("RESYNC_BACKOFF_S", 0.5)
RESYNC_BACKOFF_MAX_S = _env_float("RESYNC_BACKOFF_MAX_S", 10.0)

# WS transport
WS_OPEN_TIMEOUT_S = _env_float("WS_OPEN_TIMEOUT_S", 10.0)
WS_PING_INTERVAL_S = _env_float("WS_PING_INTERVAL_S", 20.0)
WS_RECV_TIMEOUT_S = _env_float("WS_RECV_TIMEOUT_S", 1.0)
WS_NO_DATA_TIMEOUT_S = _env_float("WS_NO_DATA_TIMEOUT_S", 30.0)
HEARTBEAT_INTERVAL_S = _env_int("HEARTBEAT_INTERVAL_S", 10)

RENDER_INTERVAL_S = _env_float("RENDER_INTERVAL_S", 0.5)


def sync_config(**overrides) -> SyncConfig:
    """Build the reconciliation config from the environment, with overrides."""
    values = dict(
        max_consecutive_resyncs=MAX_CONSECUTIVE_RESYNCS,
        stable_after_deltas=STABLE_AFTER_DELTAS,
        buffer_pending_deltas=BUFFER_PENDING_DELTAS,
        max_buffer_size=RESYNC_BUFFER_MAX,
        overflow_policy=RESYNC_BUFFER_POLICY,
        resync_backoff_s=RESYNC_BACKOFF_S,
        resync_backoff_max_s=RESYNC_BACKOFF_MAX_S,
    )
    values.update({k: v for k, v in overrides.items() if v is not None})
    return SyncConfig(**values)
