"""
Dashboard filter state.

The state is immutable; every reducer hands back a new FilterState. The same state
drives `apply_filters` and round-trips through the URL fragment so a view can be shared.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime, time, timedelta, timezone
from urllib.parse import parse_qsl, quote, urlencode

from selection import (
    filter_by_area_selections,
    parse_selections,
    toggle_area,
    toggle_project,
)
from work_items import STATES


CURRENT_SPRINT = "__current__"
ARCHIVED_PROJECT_PREFIX = "z"
ARCHIVED_MARKER = "(archived)"
DEFAULT_PAGE = "dashboard"


@dataclass(frozen=True)
class FilterState:
    selected_projects: tuple = ()
    selected_sprint: str | None = None
    selected_resource: str | None = None
    show_archived: bool = False
    date_from: date | None = None
    date_to: date | None = None
    selected_states: frozenset = frozenset(STATES)


# ----------------------------
# Reducers
# ----------------------------
def set_projects(state: FilterState, entries) -> FilterState:
    return replace(state, selected_projects=tuple(dict.fromkeys(entries)))


def toggle_project_selection(state: FilterState, project_name, areas) -> FilterState:
    return replace(state, selected_projects=tuple(
        toggle_project(list(state.selected_projects), project_name, areas)))


def toggle_area_selection(state: FilterState, project_name, area_name, areas) -> FilterState:
    return replace(state, selected_projects=tuple(
        toggle_area(list(state.selected_projects), project_name, area_name, areas)))


def set_sprint(state: FilterState, sprint) -> FilterState:
    return replace(state, selected_sprint=sprint or None)


def set_resource(state: FilterState, unique_name) -> FilterState:
    return replace(state, selected_resource=unique_name or None)


def toggle_archived(state: FilterState) -> FilterState:
    return replace(state, show_archived=not state.show_archived)


def set_date_range(state: FilterState, date_from=None, date_to=None) -> FilterState:
    return replace(state, date_from=date_from, date_to=date_to)


def toggle_state(state: FilterState, work_item_state) -> FilterState:
    states = set(state.selected_states)
    states ^= {work_item_state}
    return replace(state, selected_states=frozenset(states))


# ----------------------------
# Pipeline
# ----------------------------
def _day_start(d: date) -> datetime:
    return datetime.combine(d, time.min, tzinfo=timezone.utc)


def apply_filters(items, state: FilterState):
    """area selection -> resource -> changed-date range (whole `to` day included) -> states"""
    parsed = parse_selections(state.selected_projects)
    out = filter_by_area_selections(items, parsed.area_filters)

    if state.selected_resource:
        out = [w for w in out if w.assigned_to and w.assigned_to.unique_name == state.selected_resource]
    if state.date_from:
        lo = _day_start(state.date_from)
        out = [w for w in out if w.changed_date >= lo]
    if state.date_to:
        hi = _day_start(state.date_to) + timedelta(days=1)
        out = [w for w in out if w.changed_date < hi]
    if not set(STATES) <= set(state.selected_states):
        out = [w for w in out if w.state in state.selected_states]
    return out


def unique_resources(items):
    """Assignees present in items, one per unique name, sorted by display name."""
    people = {}
    for w in items:
        if w.assigned_to and w.assigned_to.unique_name not in people:
            people[w.assigned_to.unique_name] = w.assigned_to
    return sorted(people.values(), key=lambda a: (a.display_name.casefold(), a.unique_name))


def resolve_sprint_path(selected, sprints):
    """Concrete iteration path for a sprint selection; None means no sprint filter."""
    if not selected:
        return None
    if selected == CURRENT_SPRINT:
        for s in sprints:
            if s.time_frame == "current":
                return s.path
        return None
    return selected


def is_archived(project_name) -> bool:
    lower = project_name.lower()
    return lower.startswith(ARCHIVED_PROJECT_PREFIX) or ARCHIVED_MARKER in lower


def visible_projects(project_names, show_archived=False):
    if show_archived:
        return list(project_names)
    return [p for p in project_names if not is_archived(p)]


# ----------------------------
# URL fragment
# ----------------------------
def encode_hash(state: FilterState, page=DEFAULT_PAGE) -> str:
    params = [("page", page)]
    if state.selected_projects:
        params.append(("projects", ",".join(state.selected_projects)))
    if state.selected_sprint:
        params.append(("sprint", state.selected_sprint))
    if state.selected_resource:
        params.append(("resource", state.selected_resource))
    if state.show_archived:
        params.append(("archived", "1"))
    if state.date_from:
        params.append(("from", state.date_from.isoformat()))
    if state.date_to:
        params.append(("to", state.date_to.isoformat()))
    return "#" + urlencode(params, quote_via=quote)


def decode_hash(fragment, base: FilterState | None = None):
    """(page, state) from a fragment; keys that are missing keep their `base` value."""
    state = base or FilterState()
    params = dict(parse_qsl(fragment.lstrip("#"), keep_blank_values=False))
    changes = {}
    if "projects" in params:
        changes["selected_projects"] = tuple(p for p in params["projects"].split(",") if p)
    if "sprint" in params:
        changes["selected_sprint"] = params["sprint"]
    if "resource" in params:
        changes["selected_resource"] = params["resource"]
    if "archived" in params:
        changes["show_archived"] = params["archived"] == "1"
    for key, attr in (("from", "date_from"), ("to", "date_to")):
        if key in params:
            try:
                changes[attr] = date.fromisoformat(params[key])
            except ValueError:
                pass
    return params.get("page", DEFAULT_PAGE), replace(state, **changes)
