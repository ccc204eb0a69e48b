#!/usr/bin/env python3
"""
Heartbeat emitter for a tracked page.
Decides on every tick whether to send a heartbeat and sends it.
"""

import threading
import time
from datetime import datetime
from typing import Callable, Dict, Optional

from .activity_monitor import ActivityMonitor
from .config import Config
from .errors import AuthenticationError, AuthorizationError, DocPulseError
from .http_client import HeartbeatClient
from .identity import IdentityStore
from .models import HeartbeatPayload
from .page_selectors import DefaultSelector, PageSelector, PageSnapshot, selector_for

SENT = "sent"
THROTTLED = "throttled"
IDLE = "idle"
NO_IDENTITY = "no_identity"
HALTED = "halted"
FAILED = "failed"


class EmitterLogger:
    """Handles console output for the heartbeat emitter."""

    def __init__(self, verbose: bool = True):
        self.verbose = verbose

    @staticmethod
    def _now() -> str:
        return datetime.now().strftime("%H:%M:%S")

    def log_start(self, domain: str, tick_interval: float) -> None:
        if self.verbose:
            print(f"[{self._now()}] Collector active on {domain} (tick {tick_interval}s)")

    def log_sent(self, title: str, document_id) -> None:
        if self.verbose:
            print(f"[{self._now()}] [OK] Heartbeat logged for: {title} (doc {document_id})")

    def log_throttled(self, document_id) -> None:
        if self.verbose:
            print(f"[{self._now()}] [SKIP] Server throttled heartbeat for doc {document_id}")

    def log_idle(self, idle_seconds: float) -> None:
        if self.verbose:
            print(f"[{self._now()}] [SKIP] Idle for {idle_seconds:.0f}s - skipping heartbeat")

    def log_no_identity(self) -> None:
        if self.verbose:
            print(
                f"[{self._now()}] [SKIP] No synced account - "
                "open the dashboard to run the identity handshake"
            )

    def log_selector_fallback(self, domain: str, error: Exception) -> None:
        print(f"[{self._now()}] [WARN] Selector fetch failed for {domain}: {error}")

    def log_failure(self, error: Exception) -> None:
        print(f"[{self._now()}] [FAIL] Post failed: {error}")

    def log_auth_failure(self, error: Exception) -> None:
        print(
            f"[{self._now()}] [FAIL] API key rejected ({error}) - "
            "heartbeats paused until the key is reconfigured"
        )

    def log_identity_mismatch(self, error: Exception) -> None:
        print(
            f"[{self._now()}] [FAIL] {error} - the synced account does not own this "
            "API key; re-run the identity handshake from the dashboard"
        )

    def log_stop(self) -> None:
        if self.verbose:
            print(f"[{self._now()}] Collector stopped")


class HeartbeatEmitter:
    """Rate-limited heartbeat sender for one page instance.

    Each tick is independent: failures are logged, never retried within the
    tick, and the fixed tick interval is the only backoff.
    """

    def __init__(
        self,
        client: HeartbeatClient,
        monitor: ActivityMonitor,
        identity_store: IdentityStore,
        page_provider: Callable[[], PageSnapshot],
        tick_interval: float = 30,
        min_send_interval: float = 60,
        verbose: bool = True,
    ):
        self.client = client
        self.monitor = monitor
        self.identity_store = identity_store
        self.page_provider = page_provider
        self.tick_interval = tick_interval
        self.min_send_interval = min_send_interval
        self.logger = EmitterLogger(verbose=verbose)

        self.last_sent_at = 0.0
        self.halted = False
        self.selector_cache: Dict[str, PageSelector] = {}
        self.stats = {SENT: 0, THROTTLED: 0, IDLE: 0, NO_IDENTITY: 0, HALTED: 0, FAILED: 0}

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def from_config(
        cls, config: Config, page_provider: Callable[[], PageSnapshot]
    ) -> "HeartbeatEmitter":
        """Build an emitter with its client, monitor and identity store from config."""
        return cls(
            client=HeartbeatClient(config.endpoint, config.api_key),
            monitor=ActivityMonitor(idle_threshold=config.idle_threshold),
            identity_store=IdentityStore(config.data_dir),
            page_provider=page_provider,
            tick_interval=config.get("tick_interval", 30),
            min_send_interval=config.get("min_send_interval", 60),
            verbose=config.verbose_logging,
        )

    def resolve_selector(self, domain: str) -> PageSelector:
        """Get the extraction strategy for a domain, fetching it once."""
        if domain in self.selector_cache:
            return self.selector_cache[domain]

        try:
            descriptor = self.client.fetch_selector(domain)
        except DocPulseError as e:
            # Not cached, so the next tick tries again
            self.logger.log_selector_fallback(domain, e)
            return DefaultSelector()

        selector = selector_for(descriptor)
        self.selector_cache[domain] = selector
        return selector

    def build_payload(self, page: PageSnapshot, email: str) -> HeartbeatPayload:
        target = self.resolve_selector(page.domain).extract(page)
        return HeartbeatPayload(
            doc_identifier=target.doc_identifier,
            domain=page.domain,
            email=email,
            title=target.title,
            url=target.url,
        )

    def tick(self) -> str:
        """Run one scheduling decision and return its outcome."""
        outcome = self._tick()
        self.stats[outcome] += 1
        return outcome

    def _tick(self) -> str:
        if self.halted:
            return HALTED

        now = time.time()
        if now - self.last_sent_at < self.min_send_interval:
            return THROTTLED

        if self.monitor.is_idle():
            self.logger.log_idle(self.monitor.ms_since_last_activity() / 1000)
            return IDLE

        email = self.identity_store.get_email()
        if not email:
            self.logger.log_no_identity()
            return NO_IDENTITY

        payload = self.build_payload(self.page_provider(), email)

        try:
            result = self.client.send_heartbeat(payload)
        except AuthenticationError as e:
            self.halted = True
            self.logger.log_auth_failure(e)
            return FAILED
        except AuthorizationError as e:
            self.logger.log_identity_mismatch(e)
            return FAILED
        except DocPulseError as e:
            self.logger.log_failure(e)
            return FAILED

        self.last_sent_at = time.time()
        if result.get("recorded", True):
            self.logger.log_sent(payload.title or payload.doc_identifier, result.get("document_id"))
        else:
            self.logger.log_throttled(result.get("document_id"))
        return SENT

    def reconfigure(self, api_key: str) -> None:
        """Install a new API key and resume after an authentication halt."""
        self.client.api_key = api_key
        self.halted = False

    def run(self) -> None:
        """Tick until stopped."""
        page = self.page_provider()
        self.logger.log_start(page.domain, self.tick_interval)

        while not self._stop_event.wait(self.tick_interval):
            try:
                self.tick()
            except Exception as e:
                # Extraction bugs must not kill the collector
                self.logger.log_failure(e)

        self.logger.log_stop()

    def start(self) -> None:
        """Start ticking on a background thread so the page is never blocked."""
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run, name="docpulse-emitter", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None
