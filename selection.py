"""
Project / area-path selection.

A selection entry is either a whole project ("Digital Nexus") or one area of it
("Digital Nexus\\Contracts"). Lists of entries behave as sets; insertion order is kept
only for labels.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from work_items import AREA_SEPARATOR


@dataclass(frozen=True)
class ParsedSelections:
    project_names: list[str]
    # project -> selected area entries ("Project\\Area"); projects missing here are unfiltered
    area_filters: dict[str, list[str]] = field(default_factory=dict)


def area_key(project_name, area_name) -> str:
    return f"{project_name}{AREA_SEPARATOR}{area_name}"


def project_name_from_selection(entry) -> str:
    return entry.split(AREA_SEPARATOR, 1)[0]


def area_name_from_selection(entry):
    """Area part of an entry, None for a whole-project entry."""
    if AREA_SEPARATOR not in entry:
        return None
    return entry.split(AREA_SEPARATOR, 1)[1]


def _unique(entries):
    return list(dict.fromkeys(entries))


def parse_selections(entries) -> ParsedSelections:
    projects = []
    whole = set()
    areas = {}
    for entry in entries:
        project = project_name_from_selection(entry)
        projects.append(project)
        if AREA_SEPARATOR not in entry:
            whole.add(entry)
        else:
            bucket = areas.setdefault(project, [])
            if entry not in bucket:
                bucket.append(entry)
    # a whole-project entry subsumes any area entry for that project
    for project in whole:
        areas.pop(project, None)
    return ParsedSelections(project_names=_unique(projects), area_filters=areas)


def projects_to_fetch(entries):
    return _unique(project_name_from_selection(e) for e in entries)


def filter_by_area_selections(items, area_filters):
    """Exact area-path match for filtered projects; other projects pass through."""
    if not area_filters:
        return list(items)
    out = []
    for item in items:
        wanted = area_filters.get(item.project_name)
        if wanted is None or item.area_path in wanted:
            out.append(item)
    return out


# ----------------------------
# Selector transitions
# ----------------------------
def is_project_fully_selected(selected, project_name, areas) -> bool:
    if project_name in selected:
        return True
    if not areas:
        return False
    return all(area_key(project_name, a) in selected for a in areas)


def is_area_selected(selected, project_name, area_name) -> bool:
    return area_key(project_name, area_name) in selected


def has_any_selection(selected, project_name, areas) -> bool:
    if project_name in selected:
        return True
    return any(area_key(project_name, a) in selected for a in areas or [])


def _without_project(selected, project_name):
    prefix = project_name + AREA_SEPARATOR
    return [s for s in selected if s != project_name and not s.startswith(prefix)]


def toggle_project(selected, project_name, areas):
    """Deselect a fully selected project (areas included), else select it whole."""
    if is_project_fully_selected(selected, project_name, areas):
        return _without_project(selected, project_name)
    return _without_project(selected, project_name) + [project_name]


def toggle_area(selected, project_name, area_name, areas):
    """
    Area checkbox transition.

    - selected area: drop it
    - project selected whole: narrow to just this area
    - otherwise add it, consolidating to the whole project once every area is in
    """
    key = area_key(project_name, area_name)
    if key in selected:
        return [s for s in selected if s != key]
    if project_name in selected:
        return [s for s in selected if s != project_name] + [key]
    new_selected = list(selected) + [key]
    if all(a == area_name or area_key(project_name, a) in new_selected for a in areas or []):
        return _without_project(new_selected, project_name) + [project_name]
    return new_selected


def select_all(project_names):
    return _unique(project_names)


def clear_all():
    return []


def selection_label(selected, project_names, area_paths) -> str:
    """Selector button text for the current selection."""
    if not selected:
        return "No Projects"
    if project_names and all(
        is_project_fully_selected(selected, p, area_paths.get(p)) for p in project_names
    ):
        return "All Projects"

    touched = projects_to_fetch(selected)
    if len(touched) == 1:
        only = touched[0]
        if only in selected:
            return only
        area_entries = [s for s in selected if s.startswith(only + AREA_SEPARATOR)]
        if len(area_entries) == 1:
            return f"{only} > {area_name_from_selection(area_entries[0])}"
        return f"{only} ({len(area_entries)} areas)"
    return f"{len(touched)} Projects"
