"""
Identity binding between the dashboard and the injected script.

The script owns a private key-value store with a single well-known slot,
the synced account email. The dashboard fills that slot over the page's
window messaging channel:

    dashboard -> script   SYNC_IDENTITY {email}
    script -> dashboard   SYNC_SUCCESS
    dashboard -> script   PING_SCRIPT_REQUEST
    script -> dashboard   PING_SCRIPT_RESPONSE   (also sent once on load)
"""

import json
import threading
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .config import Config
from .errors import HandshakeError
from .utils import normalize_email

SYNC_IDENTITY = "SYNC_IDENTITY"
SYNC_SUCCESS = "SYNC_SUCCESS"
PING_SCRIPT_REQUEST = "PING_SCRIPT_REQUEST"
PING_SCRIPT_RESPONSE = "PING_SCRIPT_RESPONSE"

Message = Dict[str, Any]
Listener = Callable[[Message], None]


class IdentityStore:
    """Persistent single-slot store for the synced account email."""

    EMAIL_KEY = "synced_email"

    def __init__(self, data_dir: str):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.store_file = self.data_dir / "identity.json"
        self._lock = threading.Lock()
        self._values = self._load()

    def _load(self) -> Dict[str, Any]:
        if not self.store_file.exists():
            return {}
        try:
            with open(self.store_file, "r", encoding="utf-8") as f:
                data = json.load(f)
            return data if isinstance(data, dict) else {}
        except (json.JSONDecodeError, IOError) as e:
            print(f"Warning: Could not read identity store: {e}")
            return {}

    def _save(self) -> None:
        with open(self.store_file, "w", encoding="utf-8") as f:
            json.dump(self._values, f, ensure_ascii=False)

    def get_email(self) -> Optional[str]:
        """Return the bound email, or None if the handshake never ran."""
        with self._lock:
            return self._values.get(self.EMAIL_KEY) or None

    def set_email(self, email: str) -> bool:
        """Bind an email, replacing any previous one.

        Returns:
            True if the stored value changed.
        """
        email = normalize_email(email)
        with self._lock:
            if self._values.get(self.EMAIL_KEY) == email:
                return False
            self._values[self.EMAIL_KEY] = email
            self._save()
            return True

    def clear(self) -> None:
        with self._lock:
            self._values.pop(self.EMAIL_KEY, None)
            self._save()


class WindowChannel:
    """In-page message bus; every posted message reaches every listener."""

    def __init__(self):
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()

    def add_listener(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def post_message(self, message: Message) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(message)
            except Exception as e:
                # A failing listener must not break delivery to the others
                print(f"Warning: Message listener failed on {message.get('type')}: {e}")


class ScriptMessenger:
    """Injected-script side of the handshake."""

    def __init__(self, channel: WindowChannel, store: IdentityStore):
        self.channel = channel
        self.store = store
        self.channel.add_listener(self.handle_message)

    def announce(self) -> None:
        """Advertise presence once on load for dashboards already open."""
        self.channel.post_message({"type": PING_SCRIPT_RESPONSE})

    def handle_message(self, message: Message) -> None:
        message_type = message.get("type")

        if message_type == SYNC_IDENTITY:
            email = normalize_email(message.get("email"))
            if not email:
                return
            if self.store.set_email(email):
                print(f"[Identity] Synced account {email}")
            self.channel.post_message({"type": SYNC_SUCCESS})
        elif message_type == PING_SCRIPT_REQUEST:
            self.channel.post_message({"type": PING_SCRIPT_RESPONSE})

    def detach(self) -> None:
        self.channel.remove_listener(self.handle_message)


class HandshakeStatus(Enum):
    SYNCED = "synced"
    FAILED = "failed"
    NOT_INSTALLED = "not_installed"


class DashboardHandshake:
    """Dashboard side of the handshake.

    Listens from construction onwards so the script's on-load announcement
    is not missed, then waits on events with a timeout instead of blocking
    page rendering indefinitely.
    """

    def __init__(self, channel: WindowChannel, timeout: float = 3.0):
        self.channel = channel
        self.timeout = timeout
        self.script_detected = threading.Event()
        self._synced = threading.Event()
        self.channel.add_listener(self.handle_message)

    @classmethod
    def from_config(cls, config: Config, channel: WindowChannel) -> "DashboardHandshake":
        return cls(channel, timeout=config.get("handshake_timeout", 3.0))

    def handle_message(self, message: Message) -> None:
        message_type = message.get("type")
        if message_type == PING_SCRIPT_RESPONSE:
            self.script_detected.set()
        elif message_type == SYNC_SUCCESS:
            self._synced.set()

    def detect_script(self, timeout: Optional[float] = None) -> bool:
        """Probe for the injected script."""
        if self.script_detected.is_set():
            return True
        self.channel.post_message({"type": PING_SCRIPT_REQUEST})
        return self.script_detected.wait(self.timeout if timeout is None else timeout)

    def sync_identity(self, email: str) -> HandshakeStatus:
        """Push the signed-in account email to the script.

        Raises:
            HandshakeError: email is blank or malformed.
        """
        email = normalize_email(email)
        if not email or "@" not in email:
            raise HandshakeError(f"Cannot sync invalid email: {email!r}")

        self._synced.clear()
        self.channel.post_message({"type": SYNC_IDENTITY, "email": email})

        if self._synced.wait(self.timeout):
            return HandshakeStatus.SYNCED
        # A dashboard opened after the script loaded missed its announcement
        if self.detect_script():
            return HandshakeStatus.FAILED
        return HandshakeStatus.NOT_INSTALLED

    def detach(self) -> None:
        self.channel.remove_listener(self.handle_message)
