#!/usr/bin/env python3
"""
Read-side queries over heartbeats and daily totals.
Feeds dashboard summaries, project breakdowns and focus profiles.
"""

import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from .models import DailyTotal
from .storage import HeartbeatStore
from .utils import day_start_ts, utc_date

UNALLOCATED = "Unallocated"
UNALLOCATED_COLOR = "#94a3b8"


def combined_analytics(
    store: HeartbeatStore, account_id: int, start: date, end: date
) -> List[DailyTotal]:
    """Minutes per (date, document) for an inclusive date range.

    Rolled-up days come from daily totals, everything else is counted from
    raw heartbeats. A heartbeat is either flagged as rolled up (and counted
    in a daily total) or not, so the two sources never overlap.
    """
    merged: Dict[Tuple[str, int], DailyTotal] = {}

    rolled = store.list_daily_totals(account_id, start.isoformat(), end.isoformat())
    live = store.raw_daily_counts(
        account_id, day_start_ts(start), day_start_ts(end + timedelta(days=1))
    )
    for row in rolled + live:
        key = (row.date, row.document_id)
        if key in merged:
            merged[key].total_minutes += row.total_minutes
        else:
            merged[key] = DailyTotal(
                date=row.date,
                document_id=row.document_id,
                account_id=row.account_id,
                domain=row.domain,
                project_id=row.project_id,
                total_minutes=row.total_minutes,
            )

    return [merged[key] for key in sorted(merged)]


def project_breakdown(
    store: HeartbeatStore, account_id: int, start: date, end: date
) -> List[Dict]:
    """Minutes per project over a date range, largest first."""
    projects = {p.id: p for p in store.list_projects(account_id)}
    totals: Dict[Optional[int], Dict] = {}

    for row in combined_analytics(store, account_id, start, end):
        project = projects.get(row.project_id) if row.project_id is not None else None
        key = project.id if project else None
        entry = totals.get(key)
        if entry is None:
            entry = totals[key] = {
                "project_id": key,
                "name": project.name if project else UNALLOCATED,
                "color": project.color if project else UNALLOCATED_COLOR,
                "minutes": 0,
            }
        entry["minutes"] += row.total_minutes

    total_minutes = sum(entry["minutes"] for entry in totals.values())
    breakdown = sorted(totals.values(), key=lambda e: e["minutes"], reverse=True)
    for entry in breakdown:
        entry["hours"] = round(entry["minutes"] / 60, 1)
        entry["percent"] = round(entry["minutes"] / (total_minutes or 1) * 100)
    return breakdown


@dataclass
class FocusProfile:
    """Hourly heartbeat density and fragmentation for one day."""

    day: date
    hours: List[Dict] = field(default_factory=list)

    @property
    def total_minutes(self) -> int:
        return sum(h["heartbeats"] for h in self.hours)

    @property
    def active_hours(self) -> List[Dict]:
        return [h for h in self.hours if h["heartbeats"] > 0]

    @property
    def average_density(self) -> int:
        active = self.active_hours
        if not active:
            return 0
        return round(sum(h["density"] for h in active) / len(active))

    @property
    def peak_hour(self) -> Optional[str]:
        active = self.active_hours
        if not active:
            return None
        return max(active, key=lambda h: h["heartbeats"])["hour"]


def focus_profile(store: HeartbeatStore, account_id: int, day: date) -> FocusProfile:
    """Per-hour heartbeat count, density and distinct documents (UTC hours)."""
    start_ts = day_start_ts(day)
    heartbeats = store.list_heartbeats(
        account_id=account_id, start_ts=start_ts, end_ts=start_ts + 86400
    )

    counts = [0] * 24
    documents: List[set] = [set() for _ in range(24)]
    for heartbeat in heartbeats:
        hour = datetime.fromtimestamp(heartbeat.recorded_at, tz=timezone.utc).hour
        counts[hour] += 1
        documents[hour].add(heartbeat.document_id)

    profile = FocusProfile(day=day)
    for hour in range(24):
        profile.hours.append(
            {
                "hour": f"{hour:02d}:00",
                "heartbeats": counts[hour],
                "density": round(counts[hour] / 60 * 100),
                "documents": len(documents[hour]),
            }
        )
    return profile


def dashboard_summary(
    store: HeartbeatStore, account_id: int, now: Optional[float] = None
) -> Dict[str, int]:
    """Minutes active today plus project and unallocated document counts."""
    now = now if now is not None else time.time()
    today_start = day_start_ts(utc_date(now))
    today = store.list_heartbeats(account_id=account_id, start_ts=today_start)
    return {
        "today_minutes": len(today),
        "projects": store.count_projects(account_id),
        "unallocated": store.count_unallocated(account_id),
    }
