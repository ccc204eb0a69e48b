"""
docpulse - active working time per document, from browser heartbeats.

This package provides:

- Page activity monitoring and rate-limited heartbeat emission
- Identity handshake between the dashboard and the injected script
- An ingestion server with API key + account email authorization
- Idempotent document upsert keyed by a stable identifier
- Scheduled rollup of raw heartbeats into daily per-document totals
"""

__version__ = "1.0.0"
__license__ = "MIT"

from .emitter import HeartbeatEmitter
from .ingestion import IngestionService
from .rollup import RollupAggregator
from .storage import HeartbeatStore

__all__ = [
    "HeartbeatEmitter",
    "HeartbeatStore",
    "IngestionService",
    "RollupAggregator",
]
