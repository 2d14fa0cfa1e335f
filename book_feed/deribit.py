"""Deribit JSON-RPC book channel: request builders and message decoding.

Book notifications look like::

    {"jsonrpc": "2.0", "method": "subscription",
     "params": {"channel": "book.ETH-PERPETUAL.100ms",
                "data": {"type": "snapshot" | "change", "timestamp": 1700000000000,
                         "instrument_name": "ETH-PERPETUAL",
                         "change_id": 11, "prev_change_id": 10,
                         "bids": [["new", 3000.5, 12.0], ...],
                         "asks": [["delete", 3001.0, 0.0], ...]}}}

Anything that is not a book notification (subscription acks, heartbeats,
results of public/test) decodes to None.
"""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from book_core.errors import DecodeError
from book_core.types import BookMessage, Delta, LevelUpdate, Snapshot

SUBSCRIBE_REQUEST_ID = 42
HEARTBEAT_REQUEST_ID = 43
TEST_REQUEST_ID = 44


def book_channel(instrument: str, interval: str = "100ms") -> str:
    return f"book.{instrument}.{interval}"


def subscribe_message(instrument: str, interval: str = "100ms") -> Dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": SUBSCRIBE_REQUEST_ID,
        "method": "public/subscribe",
        "params": {"channels": [book_channel(instrument, interval)]},
    }


def set_heartbeat_message(interval_s: int) -> Dict[str, Any]:
    # Deribit rejects intervals below 10s.
    return {
        "jsonrpc": "2.0",
        "id": HEARTBEAT_REQUEST_ID,
        "method": "public/set_heartbeat",
        "params": {"interval": max(10, int(interval_s))},
    }


def public_test_message() -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": TEST_REQUEST_ID, "method": "public/test", "params": {}}


def is_test_request(payload: Any) -> bool:
    if not isinstance(payload, dict) or payload.get("method") != "heartbeat":
        return False
    params = payload.get("params") or {}
    return isinstance(params, dict) and params.get("type") == "test_request"


def error_of(payload: Any) -> Optional[Dict[str, Any]]:
    """Return the JSON-RPC error object of a failed request, if any."""
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        return payload["error"]
    return None


def _parse_level(level: Any, label: str) -> LevelUpdate:
    if isinstance(level, dict):
        status = level.get("status")
        price = level.get("price")
        qty = level.get("qty", level.get("amount"))
    elif isinstance(level, (list, tuple)) and len(level) >= 3:
        status, price, qty = level[0], level[1], level[2]
    else:
        raise DecodeError(f"{label}: malformed level {level!r}")

    if status is None or price is None or qty is None:
        raise DecodeError(f"{label}: incomplete level {level!r}")
    try:
        update = LevelUpdate.create(status, price, qty)
    except (ValueError, ArithmeticError) as exc:
        raise DecodeError(f"{label}: invalid level {level!r}: {exc}") from exc

    if not update.price.is_finite() or not update.quantity.is_finite():
        raise DecodeError(f"{label}: non-finite level {level!r}")
    if update.price <= 0 or update.quantity < Decimal(0):
        raise DecodeError(f"{label}: out-of-range level {level!r}")
    return update


def _parse_levels(levels: Any, label: str) -> Tuple[LevelUpdate, ...]:
    if levels is None:
        return ()
    if not isinstance(levels, list):
        raise DecodeError(f"{label} must be a list")
    return tuple(_parse_level(lv, label) for lv in levels)


_U64_MAX = 2**64 - 1


def _as_int(value: Any, key: str) -> int:
    # unsigned 64-bit; json.loads turns 1e400 into inf, and 10.9 must not truncate
    if isinstance(value, bool):
        raise DecodeError(f"{key} must be int-like (got {value!r})")
    if isinstance(value, float) and not value.is_integer():
        raise DecodeError(f"{key} must be integral (got {value!r})")
    try:
        out = int(value)
    except (TypeError, ValueError, OverflowError) as exc:
        raise DecodeError(f"{key} must be int-like (got {value!r})") from exc
    if not 0 <= out <= _U64_MAX:
        raise DecodeError(f"{key} out of range (got {value!r})")
    return out


def _int_field(data: Dict[str, Any], key: str) -> int:
    if key not in data:
        raise DecodeError(f"book message missing {key!r}")
    return _as_int(data[key], key)


def parse_book_data(data: Dict[str, Any]) -> BookMessage:
    """Turn the `params.data` object of a book notification into a Snapshot/Delta."""
    msg_type = data.get("type")
    sequence = _int_field(data, "change_id")
    bids = _parse_levels(data.get("bids"), "bids")
    asks = _parse_levels(data.get("asks"), "asks")
    instrument = data.get("instrument_name")
    ts = data.get("timestamp")
    timestamp_ms = _as_int(ts, "timestamp") if ts is not None else None

    if msg_type == "snapshot":
        return Snapshot(
            sequence=sequence,
            bids=bids,
            asks=asks,
            instrument=instrument,
            timestamp_ms=timestamp_ms,
        )
    if msg_type == "change":
        return Delta(
            prev_sequence=_int_field(data, "prev_change_id"),
            sequence=sequence,
            bids=bids,
            asks=asks,
            instrument=instrument,
            timestamp_ms=timestamp_ms,
        )
    raise DecodeError(f"unknown book message type {msg_type!r}")


def decode_message(raw: Any) -> Optional[BookMessage]:
    """Decoder for ReconciliationController: raw text/bytes/dict -> Snapshot | Delta | None."""
    if raw is None:
        return None
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError(f"message is not UTF-8: {exc}") from exc
    if isinstance(raw, str):
        try:
            payload = json.loads(raw)
        except ValueError as exc:
            raise DecodeError(f"invalid JSON: {exc}") from exc
    else:
        payload = raw

    if not isinstance(payload, dict):
        raise DecodeError(f"message must be a JSON object (got {type(payload).__name__})")
    if payload.get("method") != "subscription":
        return None

    params = payload.get("params")
    if not isinstance(params, dict):
        raise DecodeError("subscription message missing params")
    channel = str(params.get("channel") or "")
    if not channel.startswith("book."):
        return None
    data = params.get("data")
    if not isinstance(data, dict):
        raise DecodeError(f"{channel}: data must be an object")
    return parse_book_data(data)

