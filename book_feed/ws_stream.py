import contextlib
import json
import logging
import ssl
import time
from typing import Any, Callable, Iterator, Optional

from websockets.exceptions import ConnectionClosed, WebSocketException  # type: ignore
from websockets.sync.client import connect as ws_connect  # type: ignore

from book_core.errors import FeedUnavailable
from book_feed import deribit


class DeribitWSFeed:
    """FeedSource over the Deribit websocket API.

    Every subscribe() opens a fresh connection and sends public/subscribe for
    the book channel; Deribit answers with a snapshot followed by changes.
    The stream yields parsed JSON payloads (raw text when a frame is not
    JSON, so the decoder can report it) and None as an idle tick whenever
    nothing arrived within recv_timeout_s. Transport failures surface as
    FeedUnavailable.
    """

    def __init__(
        self,
        ws_url: str,
        interval: str = "100ms",
        on_status: Optional[Callable[[str, dict], None]] = None,
        insecure_tls: bool = False,
        open_timeout_s: float = 10.0,
        ping_interval_s: float = 20.0,
        recv_timeout_s: float = 1.0,
        no_data_timeout_s: float = 30.0,
        heartbeat_interval_s: int = 10,
    ):
        self.ws_url = ws_url
        self.interval = interval
        self.on_status_cb = on_status
        self.insecure_tls = insecure_tls

        self.open_timeout_s = max(0.1, float(open_timeout_s))
        self.ping_interval_s = max(0.0, float(ping_interval_s))
        self.recv_timeout_s = max(0.01, float(recv_timeout_s))
        self.no_data_timeout_s = max(self.recv_timeout_s, float(no_data_timeout_s))
        self.heartbeat_interval_s = max(0, int(heartbeat_interval_s))

        self._log = logging.getLogger("websocket")

    def _emit_status(self, typ: str, details: dict) -> None:
        try:
            if self.on_status_cb:
                self.on_status_cb(typ, details)
        except Exception:
            self._log.exception("Status callback error (type=%s)", typ)

    def _ssl_context(self) -> Optional[ssl.SSLContext]:
        if not self.insecure_tls:
            return None
        ctx = ssl.create_default_context()
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        return ctx

    def _connect(self):
        connect_kwargs = {
            "open_timeout": self.open_timeout_s,
            "ping_interval": self.ping_interval_s or None,
            "close_timeout": 5,
        }
        ssl_ctx = self._ssl_context()
        if ssl_ctx is not None:
            connect_kwargs["ssl"] = ssl_ctx
        try:
            return ws_connect(self.ws_url, **connect_kwargs)
        except (OSError, WebSocketException) as exc:
            self._emit_status("ws_connect_failed", {"error": str(exc)})
            raise FeedUnavailable(f"connect to {self.ws_url} failed: {exc}") from exc

    def subscribe(self, instrument: str) -> Iterator[Any]:
        return self._stream(instrument)

    def _stream(self, instrument: str) -> Iterator[Any]:
        ws = self._connect()
        self._emit_status("ws_connect", {"url": self.ws_url, "instrument": instrument})
        try:
            if self.heartbeat_interval_s > 0:
                ws.send(json.dumps(deribit.set_heartbeat_message(self.heartbeat_interval_s)))
            ws.send(json.dumps(deribit.subscribe_message(instrument, self.interval)))

            last_data = time.monotonic()
            while True:
                try:
                    msg = ws.recv(timeout=self.recv_timeout_s)
                except TimeoutError:
                    idle_s = time.monotonic() - last_data
                    if idle_s >= self.no_data_timeout_s:
                        self._emit_status("ws_no_data", {"idle_s": idle_s})
                        raise FeedUnavailable(f"no data for {idle_s:.1f}s")
                    yield None
                    continue
                last_data = time.monotonic()

                try:
                    payload = json.loads(msg)
                except ValueError:
                    yield msg
                    continue

                if deribit.is_test_request(payload):
                    ws.send(json.dumps(deribit.public_test_message()))
                    self._emit_status("ws_test_request", {})
                    continue

                err = deribit.error_of(payload)
                if err is not None:
                    if payload.get("id") == deribit.SUBSCRIBE_REQUEST_ID:
                        raise FeedUnavailable(f"subscribe rejected: {err}")
                    self._log.warning("Request id=%s failed: %s", payload.get("id"), err)
                    continue

                yield payload
        except ConnectionClosed as exc:
            self._emit_status("ws_close", {"msg": str(exc)})
            raise FeedUnavailable(f"connection closed: {exc}") from exc
        except (OSError, WebSocketException) as exc:
            self._emit_status("ws_error", {"error": str(exc)})
            raise FeedUnavailable(f"websocket error: {exc}") from exc
        finally:
            with contextlib.suppress(Exception):
                ws.close()
