#!/usr/bin/env python3
"""
HTTP client for the docpulse ingestion server.
Handles all HTTP communication from the heartbeat emitter.
"""

from typing import Any, Dict, Optional

import requests

from .errors import TransientIOError, error_for_status
from .models import HeartbeatPayload, SelectorDescriptor

# (connect, read) seconds
REQUEST_TIMEOUT = (5, 15)


class HeartbeatClient:
    """HTTP client for selector lookups and heartbeat submission."""

    def __init__(self, endpoint: str, api_key: str = ""):  # nosec B107
        self.endpoint = endpoint.rstrip("/")
        self.api_key = api_key

    def _get_headers(self) -> Dict[str, str]:
        """Get request headers including the API key if configured."""
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return f"HTTP {response.status_code}"
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
        return f"HTTP {response.status_code}"

    def fetch_selector(self, domain: str) -> Optional[SelectorDescriptor]:
        """Look up the Selector Descriptor for a domain.

        Returns:
            The descriptor, or None when the server has none for the domain.

        Raises:
            TransientIOError: network failure or unreadable response.
        """
        try:
            response = requests.get(
                f"{self.endpoint}/selectors",
                params={"domain": domain},
                headers=self._get_headers(),
                timeout=REQUEST_TIMEOUT,
            )
        except requests.exceptions.RequestException as e:
            raise TransientIOError(f"Selector fetch failed for {domain}: {e}") from e

        if response.status_code != 200:
            raise error_for_status(response.status_code, self._error_message(response))

        if not response.content or not response.content.strip():
            return None
        try:
            data = response.json()
        except ValueError as e:
            raise TransientIOError(f"Invalid selector response for {domain}") from e

        if not data:
            return None
        return SelectorDescriptor.from_dict(data)

    def send_heartbeat(self, payload: HeartbeatPayload) -> Dict[str, Any]:
        """Submit one heartbeat.

        Returns:
            The server response, containing ``document_id``.

        Raises:
            AuthenticationError: API key rejected (401).
            AuthorizationError: email does not match the key's account (403).
            ValidationError: payload rejected (400).
            TransientIOError: network failure or server error.
        """
        try:
            response = requests.post(
                f"{self.endpoint}/heartbeats",
                json=payload.to_dict(),
                headers=self._get_headers(),
                timeout=REQUEST_TIMEOUT,
            )
        except requests.exceptions.RequestException as e:
            raise TransientIOError(
                f"Network error sending heartbeat for {payload.doc_identifier}: {e}"
            ) from e

        if response.status_code not in (200, 201):
            raise error_for_status(response.status_code, self._error_message(response))

        try:
            return response.json()
        except ValueError as e:
            raise TransientIOError("Invalid heartbeat response") from e

    def test_connection(self) -> bool:
        """Test connection to the ingestion server."""
        try:
            response = requests.get(f"{self.endpoint}/health", timeout=REQUEST_TIMEOUT)
            return response.status_code < 500
        except requests.exceptions.RequestException:
            return False
