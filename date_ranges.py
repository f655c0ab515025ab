"""
Effective start/end dates for timeline layout.

An item without its own end date borrows the closed/target date of the nearest ancestor
that has one; failing that it is treated as still open and ending today. "Today" is only
used for layout and is never written back.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

from work_item_tree import walk


PADDING_DAYS = 7
MIN_TIMELINE_DAYS = 14
EMPTY_TIMELINE_DAYS = 30


def _now(today):
    return today if today is not None else datetime.now(timezone.utc)


def build_lookup(items):
    return {w.id: w for w in items}


def start_date(item):
    return item.activated_date or item.created_date


def inherited_end_date(item, lookup):
    """Closed or target date of the nearest ancestor that has one, else None."""
    visited = set()
    current = item
    while current.parent_id is not None and current.parent_id not in visited:
        visited.add(current.parent_id)
        parent = lookup.get(current.parent_id)
        if parent is None:
            break
        if parent.closed_date:
            return parent.closed_date
        if parent.target_date:
            return parent.target_date
        current = parent
    return None


def end_date(item, lookup=None, today=None):
    if item.closed_date:
        return item.closed_date
    if item.target_date:
        return item.target_date
    if lookup:
        inherited = inherited_end_date(item, lookup)
        if inherited:
            return inherited
    return _now(today)


def group_date_ranges(groups, lookup=None, today=None):
    """group_id -> (min start, max end) over every node of each labelled group."""
    ranges = {}
    for group in groups:
        if not group.label:
            continue
        lo = hi = None
        for node in walk(group.roots):
            s = start_date(node.item)
            e = end_date(node.item, lookup, today)
            lo = s if lo is None or s < lo else lo
            hi = e if hi is None or e > hi else hi
        if lo is not None:
            ranges[group.group_id] = (lo, hi)
    return ranges


def timeline_window(rows, group_ranges, lookup=None, today=None,
                    padding_days=PADDING_DAYS, min_days=MIN_TIMELINE_DAYS):
    """(range start, total days) covering every visible row, padded on both sides."""
    lo = hi = None
    for row in rows:
        if row.kind == "item":
            span = (start_date(row.item), end_date(row.item, lookup, today))
        else:
            span = group_ranges.get(row.group_id)
            if span is None:
                continue
        lo = span[0] if lo is None or span[0] < lo else lo
        hi = span[1] if hi is None or span[1] > hi else hi
    if lo is None:
        return _now(today), EMPTY_TIMELINE_DAYS
    start = lo - timedelta(days=padding_days)
    end = hi + timedelta(days=padding_days)
    return start, max((end.date() - start.date()).days, min_days)


def timeline_bars(rows, range_start, group_ranges, lookup=None, today=None):
    """Bar offsets in calendar days from range_start, one entry per row."""
    bars = []
    for row in rows:
        if row.kind == "item":
            span = (start_date(row.item), end_date(row.item, lookup, today))
            label = row.item.title
        else:
            span = group_ranges.get(row.group_id)
            label = row.label
        bar = {"kind": row.kind, "label": label, "depth": row.depth, "start": None, "end": None}
        if span is not None:
            bar["start"] = (span[0].date() - range_start.date()).days
            bar["end"] = (span[1].date() - range_start.date()).days
        bars.append(bar)
    return bars
