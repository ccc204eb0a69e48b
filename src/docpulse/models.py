"""Records persisted by the ingestion store and the inbound heartbeat payload."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import ValidationError


@dataclass
class Account:
    id: int
    email: str
    api_key: str
    created_at: float


@dataclass
class SelectorDescriptor:
    """Per-domain extraction rules for a title, document id and canonical URL."""

    domain: str
    title_selector: str = ""
    doc_id_pattern: Optional[str] = None
    doc_id_source: str = "url"
    url_template: Optional[str] = None
    account_id: Optional[int] = None
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "domain": self.domain,
            "title_selector": self.title_selector,
            "doc_id_pattern": self.doc_id_pattern,
            "doc_id_source": self.doc_id_source,
            "url_template": self.url_template,
            "account_id": self.account_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SelectorDescriptor":
        return cls(
            domain=data.get("domain") or "",
            title_selector=data.get("title_selector") or "",
            doc_id_pattern=data.get("doc_id_pattern"),
            doc_id_source=data.get("doc_id_source") or "url",
            url_template=data.get("url_template"),
            account_id=data.get("account_id"),
            id=data.get("id"),
        )


@dataclass
class Project:
    id: int
    account_id: int
    name: str
    color: str = "#94a3b8"
    keywords: List[str] = field(default_factory=list)

    def matches_title(self, title: Optional[str]) -> bool:
        """Check whether any keyword appears in the title (case-insensitive)."""
        if not title:
            return False
        lowered = title.lower()
        return any(k.strip() and k.strip().lower() in lowered for k in self.keywords)


@dataclass
class Document:
    id: int
    doc_identifier: str
    domain: str
    title: Optional[str] = None
    url: Optional[str] = None
    account_id: Optional[int] = None
    project_id: Optional[int] = None
    tag: Optional[str] = None
    auto_tagged: bool = False
    created_at: float = 0.0
    updated_at: float = 0.0


@dataclass
class Heartbeat:
    id: int
    document_id: int
    domain: str
    account_id: Optional[int]
    recorded_at: float


@dataclass
class DailyTotal:
    date: str
    document_id: int
    account_id: int
    domain: str
    project_id: Optional[int]
    total_minutes: int


@dataclass
class HeartbeatPayload:
    """Body of ``POST /heartbeats`` as sent by the emitter."""

    doc_identifier: str
    domain: str
    email: str = ""
    title: Optional[str] = None
    url: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> "HeartbeatPayload":
        """Validate a decoded JSON body.

        Raises:
            ValidationError: body is not an object, or doc_identifier/domain
                are missing or blank.
        """
        if not isinstance(data, dict):
            raise ValidationError("request body must be a JSON object")

        doc_identifier = _clean(data.get("doc_identifier"))
        domain = _clean(data.get("domain"))
        if not doc_identifier or not domain:
            raise ValidationError("doc_identifier and domain required")

        return cls(
            doc_identifier=doc_identifier,
            domain=domain,
            email=_clean(data.get("email")) or "",
            title=_clean(data.get("title")),
            url=_clean(data.get("url")),
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "doc_identifier": self.doc_identifier,
            "domain": self.domain,
            "email": self.email,
        }
        if self.title is not None:
            payload["title"] = self.title
        if self.url is not None:
            payload["url"] = self.url
        return payload


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
