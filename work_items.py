"""
Work-item and sprint records as consumed by the analytics engine.

Upstream values are decoded once here (state/type fall back to safe defaults,
timestamps become timezone-aware datetimes) so nothing downstream ever sees a raw
Azure DevOps payload.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from dateutil import parser as dtparser


# ----------------------------
# Enumerations
# ----------------------------
STATES = ("New", "Active", "Resolved", "Closed", "Removed")
WORK_ITEM_TYPES = ("Epic", "Feature", "User Story", "Bug", "Task", "Issue", "Risk")
TIME_FRAMES = ("past", "current", "future")

DEFAULT_STATE = "New"
DEFAULT_TYPE = "Task"
DEFAULT_TIME_FRAME = "future"

COMPLETED_STATES = frozenset({"Closed", "Resolved"})
OPEN_STATES = frozenset({"New", "Active"})

HIERARCHY_ORDER = {
    "Epic": 0,
    "Feature": 1,
    "User Story": 2,
    "Bug": 3,
    "Task": 4,
    "Issue": 5,
    "Risk": 6,
}
UNKNOWN_RANK = 99

RAID_WORK_ITEM_TYPES = ("Issue", "Risk")
RAID_TAG_CATEGORIES = ("Dependency", "Decision", "Critical Dependency")
ALL_RAID_CATEGORIES = RAID_WORK_ITEM_TYPES + RAID_TAG_CATEGORIES

AREA_SEPARATOR = "\\"


def decode_state(raw) -> str:
    return raw if raw in STATES else DEFAULT_STATE


def decode_type(raw) -> str:
    return raw if raw in WORK_ITEM_TYPES else DEFAULT_TYPE


def decode_time_frame(raw) -> str:
    return raw if raw in TIME_FRAMES else DEFAULT_TIME_FRAME


# ----------------------------
# Records
# ----------------------------
@dataclass(frozen=True)
class Assignee:
    display_name: str
    unique_name: str
    image_url: str | None = None


@dataclass(frozen=True)
class WorkItem:
    id: int
    project_name: str
    title: str
    state: str
    work_item_type: str
    iteration_path: str
    area_path: str
    created_date: datetime
    changed_date: datetime
    assigned_to: Assignee | None = None
    story_points: float | None = None
    priority: int | None = None
    state_change_date: datetime | None = None
    closed_date: datetime | None = None
    resolved_date: datetime | None = None
    target_date: datetime | None = None
    activated_date: datetime | None = None
    tags: str | None = None
    description: str | None = None
    reason: str | None = None
    parent_id: int | None = None
    has_linked_issue: bool = False
    has_linked_risk: bool = False


@dataclass(frozen=True)
class Sprint:
    id: str
    name: str
    path: str
    project_name: str
    start_date: datetime | None = None
    finish_date: datetime | None = None
    time_frame: str = DEFAULT_TIME_FRAME


# ----------------------------
# Helpers
# ----------------------------
def parse_dt(s):
    """ISO timestamp -> aware datetime (naive input is taken as UTC).

    Empty values give None. A malformed string raises ValueError: that is an
    ingestion defect and must not be hidden from the aggregates.
    """
    if s is None or s == "":
        return None
    if isinstance(s, datetime):
        dt = s
    else:
        dt = dtparser.isoparse(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_dt(dt):
    if dt is None:
        return None
    return dt.isoformat().replace("+00:00", "Z")


def hierarchy_rank(work_item_type) -> int:
    return HIERARCHY_ORDER.get(work_item_type, UNKNOWN_RANK)


def parse_tags(tags):
    if not tags:
        return []
    return [t.strip() for t in tags.split(";") if t.strip()]


def raid_category(item: WorkItem):
    """Issue/Risk by type, otherwise Dependency/Decision/Critical Dependency by tag."""
    if item.work_item_type in RAID_WORK_ITEM_TYPES:
        return item.work_item_type
    for tag in parse_tags(item.tags):
        lower = tag.lower()
        if lower == "critical dependency":
            return "Critical Dependency"
        if lower == "dependency":
            return "Dependency"
        if lower == "decision":
            return "Decision"
    return None


def is_raid_item(item: WorkItem) -> bool:
    return raid_category(item) is not None


def is_completed(item: WorkItem) -> bool:
    return item.state in COMPLETED_STATES


def is_open(item: WorkItem) -> bool:
    return item.state in OPEN_STATES


def points(item: WorkItem) -> float:
    return item.story_points or 0


def completion_date(item: WorkItem):
    """Date the item reached its terminal state, by the field that state records."""
    if item.state == "Closed":
        return item.closed_date or item.state_change_date
    if item.state == "Resolved":
        return item.resolved_date or item.state_change_date
    return None


# ----------------------------
# Dict round trip (snapshot cache, analytics JSON)
# ----------------------------
_ITEM_DATE_FIELDS = (
    "created_date", "changed_date", "state_change_date", "closed_date",
    "resolved_date", "target_date", "activated_date",
)


def item_to_dict(item: WorkItem) -> dict:
    d = {
        "id": item.id,
        "project_name": item.project_name,
        "title": item.title,
        "state": item.state,
        "work_item_type": item.work_item_type,
        "iteration_path": item.iteration_path,
        "area_path": item.area_path,
        "assigned_to": None,
        "story_points": item.story_points,
        "priority": item.priority,
        "tags": item.tags,
        "description": item.description,
        "reason": item.reason,
        "parent_id": item.parent_id,
        "has_linked_issue": item.has_linked_issue,
        "has_linked_risk": item.has_linked_risk,
    }
    if item.assigned_to:
        d["assigned_to"] = {
            "display_name": item.assigned_to.display_name,
            "unique_name": item.assigned_to.unique_name,
            "image_url": item.assigned_to.image_url,
        }
    for name in _ITEM_DATE_FIELDS:
        d[name] = format_dt(getattr(item, name))
    return d


def item_from_dict(d: dict) -> WorkItem:
    assignee = d.get("assigned_to")
    return WorkItem(
        id=int(d["id"]),
        project_name=d.get("project_name") or "",
        title=d.get("title") or "",
        state=decode_state(d.get("state")),
        work_item_type=decode_type(d.get("work_item_type")),
        iteration_path=d.get("iteration_path") or "",
        area_path=d.get("area_path") or "",
        created_date=parse_dt(d["created_date"]),
        changed_date=parse_dt(d.get("changed_date") or d["created_date"]),
        assigned_to=Assignee(
            display_name=assignee.get("display_name") or "",
            unique_name=assignee.get("unique_name") or "",
            image_url=assignee.get("image_url"),
        ) if assignee else None,
        story_points=d.get("story_points"),
        priority=d.get("priority"),
        state_change_date=parse_dt(d.get("state_change_date")),
        closed_date=parse_dt(d.get("closed_date")),
        resolved_date=parse_dt(d.get("resolved_date")),
        target_date=parse_dt(d.get("target_date")),
        activated_date=parse_dt(d.get("activated_date")),
        tags=d.get("tags"),
        description=d.get("description"),
        reason=d.get("reason"),
        parent_id=d.get("parent_id"),
        has_linked_issue=bool(d.get("has_linked_issue")),
        has_linked_risk=bool(d.get("has_linked_risk")),
    )


def sprint_to_dict(sprint: Sprint) -> dict:
    return {
        "id": sprint.id,
        "name": sprint.name,
        "path": sprint.path,
        "project_name": sprint.project_name,
        "start_date": format_dt(sprint.start_date),
        "finish_date": format_dt(sprint.finish_date),
        "time_frame": sprint.time_frame,
    }


def sprint_from_dict(d: dict) -> Sprint:
    return Sprint(
        id=str(d.get("id") or d.get("path")),
        name=d.get("name") or "",
        path=d.get("path") or "",
        project_name=d.get("project_name") or "",
        start_date=parse_dt(d.get("start_date")),
        finish_date=parse_dt(d.get("finish_date")),
        time_frame=decode_time_frame(d.get("time_frame")),
    )
