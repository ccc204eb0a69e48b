#!/usr/bin/env python3
"""
Ingestion endpoint logic for docpulse.
Authenticates heartbeats and records them against documents.
"""

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from .errors import (
    AuthenticationError,
    AuthorizationError,
    DocPulseError,
    ValidationError,
)
from .models import Account, HeartbeatPayload, SelectorDescriptor
from .storage import HeartbeatStore
from .utils import normalize_email


@dataclass
class HeartbeatResult:
    document_id: int
    recorded: bool = True

    def to_dict(self) -> dict:
        return {"document_id": self.document_id, "recorded": self.recorded}


class IngestionLogger:
    """Console output for the ingestion server. Never prints secrets."""

    def __init__(self, verbose: bool = True):
        self.verbose = verbose

    @staticmethod
    def _now() -> str:
        return datetime.now().strftime("%H:%M:%S")

    def log_recorded(
        self, payload: HeartbeatPayload, account: Account, result: HeartbeatResult
    ) -> None:
        if not self.verbose:
            return
        status = "[OK]" if result.recorded else "[SKIP] throttled"
        print(
            f"[{self._now()}] {status} {payload.domain} {payload.doc_identifier} "
            f"-> doc {result.document_id} (account {account.id})"
        )

    def log_rejected(
        self,
        error: DocPulseError,
        domain: Optional[str] = None,
        doc_identifier: Optional[str] = None,
        account_id: Optional[int] = None,
    ) -> None:
        print(
            f"[{self._now()}] [FAIL] {type(error).__name__} ({error.status}): {error} "
            f"domain={domain or '-'} doc={doc_identifier or '-'} "
            f"account={account_id if account_id is not None else '-'}"
        )


class IngestionService:
    """Resolve Selector and Record Heartbeat operations."""

    def __init__(self, store: HeartbeatStore, min_interval: float = 60, verbose: bool = True):
        self.store = store
        self.min_interval = min_interval
        self.logger = IngestionLogger(verbose=verbose)

    def resolve_selector(
        self, domain: Optional[str], api_key: Optional[str] = None
    ) -> Optional[SelectorDescriptor]:
        """Find the Selector Descriptor for a domain.

        An unknown API key is treated like no key: the lookup falls back to
        the first descriptor registered for the domain.
        """
        domain = (domain or "").strip().lower()
        if not domain:
            raise ValidationError("domain required")

        account = self.store.get_account_by_api_key(api_key) if api_key else None
        return self.store.find_selector(domain, account.id if account else None)

    def authenticate(self, api_key: Optional[str]) -> Account:
        account = self.store.get_account_by_api_key(api_key or "")
        if account is None:
            raise AuthenticationError("invalid or missing API key")
        return account

    def record_heartbeat(
        self, api_key: Optional[str], body: Any, now: Optional[float] = None
    ) -> HeartbeatResult:
        """Authenticate, validate and store one heartbeat.

        Raises:
            AuthenticationError: API key does not resolve to an account.
            ValidationError: doc_identifier or domain missing.
            AuthorizationError: email does not match the key's account.
            TransientIOError: the store failed; nothing is retried here.
        """
        domain = body.get("domain") if isinstance(body, dict) else None
        doc_identifier = body.get("doc_identifier") if isinstance(body, dict) else None

        try:
            account = self.authenticate(api_key)
        except AuthenticationError as e:
            self.logger.log_rejected(e, domain, doc_identifier)
            raise

        try:
            payload = HeartbeatPayload.from_dict(body)
            if normalize_email(payload.email) != normalize_email(account.email):
                raise AuthorizationError(
                    "email does not match the account bound to this API key"
                )

            result = self._store_heartbeat(account, payload, now)
        except DocPulseError as e:
            self.logger.log_rejected(e, domain, doc_identifier, account.id)
            raise

        self.logger.log_recorded(payload, account, result)
        return result

    def _store_heartbeat(
        self, account: Account, payload: HeartbeatPayload, now: Optional[float]
    ) -> HeartbeatResult:
        recorded_at = now if now is not None else time.time()

        project_id = None
        if self.store.get_document_by_identifier(payload.doc_identifier) is None:
            project_id = self.match_project(account.id, payload.title)

        document_id, recorded = self.store.record_heartbeat(
            account.id,
            payload,
            recorded_at,
            min_interval=self.min_interval,
            project_id=project_id,
        )
        return HeartbeatResult(document_id=document_id, recorded=recorded)

    def match_project(self, account_id: int, title: Optional[str]) -> Optional[int]:
        """First project of the account with a keyword found in the title."""
        for project in self.store.list_projects(account_id):
            if project.matches_title(title):
                return project.id
        return None
