"""
Aggregations over an already filtered work-item collection.

Every function is pure: the same items (and sprints, and "now") give the same result.
Results are plain dicts/lists so they drop straight into the analytics JSON.
"""
from __future__ import annotations

import math
from collections import Counter
from datetime import date, datetime, timedelta, timezone

from work_items import (
    completion_date,
    is_completed,
    is_open,
    is_raid_item,
    points,
    raid_category,
)


VELOCITY_SPRINTS = 6
RAID_TREND_WEEKS = 12
RAID_AGE_BUCKETS = (
    ("< 7d", 7),
    ("7-30d", 30),
    ("30-90d", 90),
    ("90d+", None),
)
RAID_PRIORITY_ORDER = ("P1", "P2", "P3", "P4")
HIGH_PRIORITY_MAX = 2
MAX_ASSIGNEE_BARS = 8
TREND_LABEL = "vs prev sprint"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


# ----------------------------
# Helpers
# ----------------------------
def round_half_up(x, ndigits=0):
    """Rounding with .5 going up, as the dashboard always displayed it."""
    factor = 10 ** ndigits
    value = math.floor(x * factor + 0.5) / factor
    return int(value) if ndigits == 0 else value


def _now(now):
    return now if now is not None else datetime.now(timezone.utc)


def _as_date(d):
    if d is None:
        return datetime.now(timezone.utc).date()
    return d.date() if isinstance(d, datetime) else d


def days_since(dt, now=None) -> int:
    return max(0, math.floor((_now(now) - dt).total_seconds() / 86400))


def week_start(d: date) -> date:
    """Monday of the week containing d."""
    return d - timedelta(days=d.weekday())


def _sum_points(items):
    return sum(points(w) for w in items)


def recent_sprints(sprints):
    """Past/current sprints, most recent start first (unscheduled ones last)."""
    eligible = [s for s in sprints if s.time_frame in ("past", "current")]
    return sorted(eligible, key=lambda s: s.start_date or _EPOCH, reverse=True)


# ----------------------------
# KPIs and distributions
# ----------------------------
def cycle_time_days(items):
    """
    Mean whole days from activation to close.

    Items without both dates, or closed before they were activated, are left out of
    the mean. None when nothing qualifies.
    """
    samples = []
    for w in items:
        if w.activated_date is None or w.closed_date is None:
            continue
        delta = w.closed_date - w.activated_date
        if delta < timedelta(0):
            continue
        samples.append(delta.days)
    if not samples:
        return None
    return sum(samples) / len(samples)


def dashboard_metrics(items):
    counts = Counter(w.state for w in items)
    cycle = cycle_time_days(items)
    return {
        "total_items": len(items),
        "new_count": counts.get("New", 0),
        "active_item_count": counts.get("Active", 0),
        "resolved_count": counts.get("Resolved", 0),
        "closed_count": counts.get("Closed", 0),
        "removed_count": counts.get("Removed", 0),
        "total_story_points": _sum_points(items),
        "completed_story_points": _sum_points(w for w in items if is_completed(w)),
        "active_story_points": _sum_points(w for w in items if w.state == "Active"),
        "average_cycle_time_days": round_half_up(cycle) if cycle is not None else None,
    }


def _distribution(values, label):
    counts = Counter(values)
    total = sum(counts.values()) or 1
    rows = [
        {label: value, "count": count, "percentage": round_half_up(count / total * 100)}
        for value, count in counts.items()
    ]
    rows.sort(key=lambda r: -r["count"])
    return rows


def state_distribution(items):
    return _distribution((w.state for w in items), "state")


def type_distribution(items):
    return _distribution((w.work_item_type for w in items), "type")


# ----------------------------
# Sprint metrics
# ----------------------------
def velocity(items, sprints, last_n=VELOCITY_SPRINTS):
    """Completed story points per sprint for the last N past/current sprints, oldest first."""
    chosen = list(reversed(recent_sprints(sprints)[:last_n]))
    completed = [w for w in items if is_completed(w)]

    data = []
    for sprint in chosen:
        breakdown = Counter()
        sprint_items = [w for w in completed if w.iteration_path == sprint.path]
        for w in sprint_items:
            breakdown[w.project_name] += points(w)
        data.append({
            "sprint_name": sprint.name,
            "sprint_path": sprint.path,
            "completed_points": _sum_points(sprint_items),
            "completed_items": len(sprint_items),
            "project_breakdown": dict(breakdown),
        })

    average = 0
    if data:
        average = round_half_up(sum(d["completed_points"] for d in data) / len(data), 1)
    return {"velocity_data": data, "average_velocity": average}


def burndown(items, sprint, today=None):
    """
    Daily remaining points over a sprint, start and finish days included.

    `actual` is None for days after today: the future is unknown, not zero.
    Empty when the sprint lacks a start or finish date or lasts less than a day.
    """
    if sprint is None or sprint.start_date is None or sprint.finish_date is None:
        return []
    start = sprint.start_date.date()
    total_days = (sprint.finish_date.date() - start).days
    if total_days <= 0:
        return []

    sprint_items = [w for w in items if w.iteration_path == sprint.path]
    total = _sum_points(sprint_items)
    done_on = [(completion_date(w), points(w)) for w in sprint_items]
    done_on = [(d.date(), p) for d, p in done_on if d is not None]
    today = _as_date(today)

    data = []
    for day in range(total_days + 1):
        current = start + timedelta(days=day)
        ideal = total - total / total_days * day
        actual = None
        if current <= today:
            actual = round_half_up(total - sum(p for d, p in done_on if d <= current), 1)
        data.append({
            "day": day,
            "date": current.isoformat(),
            "ideal": round_half_up(ideal, 1),
            "actual": actual,
        })
    return data


def team_workload(items):
    """
    Per-assignee User Story load.

    `velocity` is the completed story points inside the current view (whatever sprint
    or date range the items were filtered to), not an average over past sprints.
    """
    members = {}
    for w in items:
        if w.work_item_type != "User Story" or w.assigned_to is None:
            continue
        key = w.assigned_to.unique_name or w.assigned_to.display_name
        entry = members.get(key)
        if entry is None:
            entry = members[key] = {
                "name": w.assigned_to.display_name,
                "unique_name": w.assigned_to.unique_name,
                "image_url": w.assigned_to.image_url,
                "stories": 0,
                "completed_stories": 0,
                "story_points": 0,
                "velocity": 0,
            }
        entry["stories"] += 1
        entry["story_points"] += points(w)
        if is_completed(w):
            entry["completed_stories"] += 1
            entry["velocity"] += points(w)
    return sorted(members.values(), key=lambda m: -m["story_points"])


def pct_change(current, previous):
    """Whole-percent change; 0 -> positive is a flat 100, 0 -> 0 is no trend (None)."""
    if previous == 0:
        return 100 if current > 0 else None
    return round_half_up((current - previous) / previous * 100)


def sprint_trends(items, sprints):
    """Current vs previous sprint deltas for the KPI cards. Keys are absent when no trend."""
    ordered = recent_sprints(sprints)
    if len(ordered) < 2:
        return {}
    current_paths = {s.path for s in sprints if s.time_frame == "current"} or {ordered[0].path}
    previous_paths = {ordered[1].path}

    current_items = [w for w in items if w.iteration_path in current_paths]
    previous_items = [w for w in items if w.iteration_path in previous_paths]

    def active(ws):
        return [w for w in ws if w.state == "Active"]

    def done(ws):
        return [w for w in ws if is_completed(w)]

    deltas = {
        "active_items": pct_change(len(active(current_items)), len(active(previous_items))),
        "story_points": pct_change(_sum_points(active(current_items)), _sum_points(active(previous_items))),
        "velocity": pct_change(_sum_points(done(current_items)), _sum_points(done(previous_items))),
    }
    cycle = pct_change(cycle_time_days(current_items) or 0, cycle_time_days(previous_items) or 0)
    # shorter cycle time is the improvement
    deltas["cycle_time"] = -cycle if cycle is not None else None

    return {k: {"value": v, "label": TREND_LABEL} for k, v in deltas.items() if v is not None}


# ----------------------------
# RAID (watch list)
# ----------------------------
def _open_raid(items):
    return [w for w in items if is_raid_item(w) and is_open(w)]


def raid_metrics(items, now=None):
    raid = [w for w in items if is_raid_item(w)]
    open_items = [w for w in raid if is_open(w)]
    ages = [days_since(w.created_date, now) for w in open_items]
    return {
        "open_issues": sum(1 for w in open_items if raid_category(w) == "Issue"),
        "open_risks": sum(1 for w in open_items if raid_category(w) == "Risk"),
        "high_priority": sum(1 for w in open_items if w.priority is not None and w.priority <= HIGH_PRIORITY_MAX),
        "avg_age_days": round_half_up(sum(ages) / len(ages)) if ages else 0,
        "total_raid_items": len(raid),
    }


def raid_type_distribution(items):
    counts = Counter(c for c in (raid_category(w) for w in items) if c)
    return [{"category": c, "count": n} for c, n in counts.most_common()]


def raid_priority_distribution(items):
    counts = Counter(
        f"P{w.priority}" if w.priority is not None else "Unset"
        for w in items if is_raid_item(w)
    )
    extra = sorted(p for p in counts if p not in RAID_PRIORITY_ORDER and p != "Unset")
    order = list(RAID_PRIORITY_ORDER) + extra + ["Unset"]
    return [{"priority": p, "count": counts[p]} for p in order if p in counts]


def raid_age_buckets(items, now=None):
    """Open RAID items by days since creation; the last bucket takes every remaining age."""
    counts = [0] * len(RAID_AGE_BUCKETS)
    for w in _open_raid(items):
        age = days_since(w.created_date, now)
        for i, (_, upper) in enumerate(RAID_AGE_BUCKETS):
            if upper is None or age < upper:
                counts[i] += 1
                break
    return [{"bucket": label, "count": counts[i]} for i, (label, _) in enumerate(RAID_AGE_BUCKETS)]


def raid_trend(items, now=None, weeks=RAID_TREND_WEEKS):
    """Created vs resolved RAID items per Monday-aligned week; every week is emitted."""
    this_week = week_start(_as_date(_now(now)))
    buckets = {}
    for i in range(weeks):
        buckets[this_week - timedelta(weeks=weeks - 1 - i)] = {"created": 0, "resolved": 0}

    for w in items:
        if not is_raid_item(w):
            continue
        created = buckets.get(week_start(w.created_date.date()))
        if created is not None:
            created["created"] += 1
        resolved_at = w.closed_date or w.resolved_date
        if resolved_at is not None:
            resolved = buckets.get(week_start(resolved_at.date()))
            if resolved is not None:
                resolved["resolved"] += 1

    return [{"week": wk.isoformat(), **counts} for wk, counts in buckets.items()]


def raid_by_assignee(items, max_bars=MAX_ASSIGNEE_BARS):
    counts = Counter(
        w.assigned_to.display_name if w.assigned_to else "Unassigned"
        for w in _open_raid(items)
    )
    rows = [{"name": n, "count": c} for n, c in counts.most_common()]
    if len(rows) <= max_bars:
        return rows
    other = sum(r["count"] for r in rows[max_bars - 1:])
    return rows[:max_bars - 1] + [{"name": "Other", "count": other}]


def raid_by_project(items):
    counts = Counter(w.project_name for w in items if is_raid_item(w))
    return [{"project": p, "count": c} for p, c in counts.most_common()]


def raid_by_state(items):
    counts = Counter(w.state for w in items if is_raid_item(w))
    return [{"state": s, "count": c} for s, c in counts.most_common()]


RAID_SORT_KEYS = {
    "id": lambda r: r["item"].id,
    "title": lambda r: r["item"].title.casefold(),
    "state": lambda r: r["item"].state,
    "category": lambda r: r["category"],
    "priority": lambda r: r["item"].priority if r["item"].priority is not None else 99,
    "assigned_to": lambda r: (r["item"].assigned_to.display_name if r["item"].assigned_to else "").casefold(),
    "age": lambda r: r["age"],
    "created_date": lambda r: r["item"].created_date,
}


def raid_rows(items, now=None, categories=None, states=None, impacted=False,
              sort_key="created_date", descending=True):
    """
    Watch-list table rows.

    `impacted` lists non-RAID items linked to an Issue or Risk instead of the RAID
    items themselves; category and state filters do not apply in that mode.
    """
    rows = []
    for w in items:
        if impacted:
            if is_raid_item(w) or not (w.has_linked_issue or w.has_linked_risk):
                continue
            category = "Issue" if w.has_linked_issue else "Risk"
        else:
            category = raid_category(w)
            if category is None:
                continue
            if categories is not None and category not in categories:
                continue
            if states is not None and w.state not in states:
                continue
        rows.append({"item": w, "category": category, "age": days_since(w.created_date, now)})
    return sorted(rows, key=RAID_SORT_KEYS[sort_key], reverse=descending)
