"""
Client-side issue statistics.

Mantis has no aggregation endpoint, so statistics are computed over one large
page of issues (up to STATISTICS_PAGE_SIZE) fetched through the gateway.
"""

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from .models import Issue, IssueFilter

logger = logging.getLogger(__name__)

STATISTICS_PAGE_SIZE = 1000

GROUP_BY_CHOICES = ("status", "priority", "severity", "handler", "reporter")
PERIOD_CHOICES = ("all", "today", "week", "month")

CLOSED_STATUS_MARKERS = ("closed", "resolved")


# ============================================================================
# TIME WINDOWS
# ============================================================================

def period_start(period: str, now: datetime) -> Optional[datetime]:
    """
    Start of the reporting window containing ``now``.

    today -> local midnight, week -> the most recent Sunday at midnight,
    month -> the first of the month at midnight, all -> None (no bound).
    """
    if now.tzinfo is not None:
        now = now.astimezone()
    midnight = datetime(now.year, now.month, now.day)
    if period == "today":
        start = midnight
    elif period == "week":
        # weekday(): Monday=0 ... Sunday=6; weeks start on Sunday
        start = midnight - timedelta(days=(now.weekday() + 1) % 7)
    elif period == "month":
        start = midnight.replace(day=1)
    else:
        return None

    # Localize last: across a DST change the boundary's offset differs from now's
    if now.tzinfo is not None:
        return start.astimezone()
    return start


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Aware local datetime for an ISO-8601 string, or None if it cannot be read."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    # Naive timestamps are taken as local time
    return parsed.astimezone()


def filter_by_period(issues: Iterable[Issue], period: str, now: Optional[datetime] = None) -> List[Issue]:
    now = (now or datetime.now()).astimezone()
    start = period_start(period, now)
    if start is None:
        return list(issues)

    selected = []
    for issue in issues:
        created_at = parse_timestamp(issue.get("created_at"))
        if created_at is not None and created_at >= start:
            selected.append(issue)
    return selected


# ============================================================================
# GROUPED COUNTS
# ============================================================================

def group_key(issue: Issue, group_by: str) -> str:
    """Name of the issue's value along the grouping dimension."""
    ref = issue.get(group_by) or {}
    name = ref.get("name") if isinstance(ref, dict) else None
    if name:
        return name
    return "unassigned" if group_by == "handler" else "unknown"


def group_statistics(gateway, group_by: str, period: str = "all",
                     project_id: Optional[int] = None, now: Optional[datetime] = None) -> dict:
    """
    Count issues per status/priority/severity/handler/reporter.

    Args:
        gateway: MantisGateway used to fetch the issues
        group_by: one of GROUP_BY_CHOICES
        period: one of PERIOD_CHOICES; filters on the creation timestamp
        project_id: restrict to one project (optional)
        now: reference time for the period boundaries (defaults to now)

    Returns:
        dict: {"total", "groupedBy", "period", "data": {key: count}}, or
        {"error": "No issues found"} when nothing falls in the period
    """
    if group_by not in GROUP_BY_CHOICES:
        raise ValueError(f"group_by must be one of {', '.join(GROUP_BY_CHOICES)}, got {group_by!r}")
    if period not in PERIOD_CHOICES:
        raise ValueError(f"period must be one of {', '.join(PERIOD_CHOICES)}, got {period!r}")

    issues = gateway.list_issues(IssueFilter(project_id=project_id, page_size=STATISTICS_PAGE_SIZE))
    filtered = filter_by_period(issues, period, now)
    logger.debug(f"Grouping {len(filtered)} of {len(issues)} issues by {group_by} for period {period}")

    if not filtered:
        return {"error": "No issues found"}

    counts = Counter(group_key(issue, group_by) for issue in filtered)
    return {
        "total": len(filtered),
        "groupedBy": group_by,
        "period": period,
        "data": dict(counts),
    }


# ============================================================================
# ASSIGNMENT ROLL-UP
# ============================================================================

def is_closed(issue: Issue) -> bool:
    status_name = ((issue.get("status") or {}).get("name") or "").lower()
    return any(marker in status_name for marker in CLOSED_STATUS_MARKERS)


def _new_bucket(user_id: int, name: str, email: str) -> dict:
    return {
        "id": user_id,
        "name": name,
        "email": email,
        "issueCount": 0,
        "openIssues": 0,
        "closedIssues": 0,
        "issues": [],
    }


def _count(bucket: dict, issue: Issue) -> None:
    bucket["issueCount"] += 1
    bucket["issues"].append(issue.get("id"))
    if is_closed(issue):
        bucket["closedIssues"] += 1
    else:
        bucket["openIssues"] += 1


def assignment_statistics(gateway, project_id: Optional[int] = None, include_unassigned: bool = True,
                          status_filter: Optional[List[int]] = None) -> dict:
    """
    Roll issues up per handler.

    Each distinct handler is looked up once through the gateway, one request
    after another. Handlers are sorted by issue count, busiest first; ties keep
    the order in which handlers were first seen. Unassigned issues go into a
    synthetic "Unassigned" bucket (id 0) appended last, when requested.

    Returns:
        dict: {"totalIssues", "assignedIssues", "unassignedIssues", "userStatistics": [...]}
    """
    issues = gateway.list_issues(IssueFilter(project_id=project_id, page_size=STATISTICS_PAGE_SIZE))
    if status_filter:
        allowed = set(status_filter)
        issues = [issue for issue in issues if (issue.get("status") or {}).get("id") in allowed]

    # dicts keep insertion order, so this is first-seen order
    handler_ids = {}
    for issue in issues:
        handler_id = (issue.get("handler") or {}).get("id")
        if handler_id:
            handler_ids.setdefault(handler_id, None)

    buckets = {}
    for handler_id in handler_ids:
        user = gateway.get_user(handler_id)
        buckets[handler_id] = _new_bucket(user.get("id", handler_id), user.get("name", ""), user.get("email") or "")

    unassigned = _new_bucket(0, "Unassigned", "")
    for issue in issues:
        handler_id = (issue.get("handler") or {}).get("id")
        if handler_id:
            _count(buckets[handler_id], issue)
        else:
            _count(unassigned, issue)

    user_statistics = sorted(
        (bucket for bucket in buckets.values() if bucket["issueCount"] > 0),
        key=lambda bucket: bucket["issueCount"],
        reverse=True,
    )
    if include_unassigned and unassigned["issueCount"] > 0:
        user_statistics.append(unassigned)

    return {
        "totalIssues": len(issues),
        "assignedIssues": len(issues) - unassigned["issueCount"],
        "unassignedIssues": unassigned["issueCount"],
        "userStatistics": user_statistics,
    }
