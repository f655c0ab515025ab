"""
Work-item hierarchy: forest building, sorting, area grouping and row flattening.

Used by the work-item table and the timeline. Everything here is rebuilt from the flat
item list on every pass; no function mutates the nodes it was given.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field

from work_items import AREA_SEPARATOR, HIERARCHY_ORDER, STATES, WorkItem, hierarchy_rank


AREA_PATH_KEY = "Area Path"
TOP_LEVEL_OPTIONS = (AREA_PATH_KEY, "Epic", "Feature", "User Story", "Bug", "Task")
TYPE_OPTIONS = (AREA_PATH_KEY, "Epic", "Feature", "User Story", "Bug", "Task", "Issue", "Risk")
DEFAULT_SELECTED_TYPES = frozenset({AREA_PATH_KEY, "Epic", "Feature", "User Story"})

TABLE_PAGE_SIZE = 20

ITEM_KEY_PREFIX = "wi:"
GROUP_KEY_PREFIX = "area:"


@dataclass
class TreeNode:
    item: WorkItem
    children: list[TreeNode] = field(default_factory=list)


@dataclass
class AreaGroup:
    group_id: str
    label: str
    roots: list[TreeNode]


@dataclass(frozen=True)
class FlatRow:
    kind: str  # "item" | "group"
    depth: int
    has_children: bool
    item: WorkItem | None = None
    group_id: str = ""
    label: str = ""


def item_key(item_id) -> str:
    return f"{ITEM_KEY_PREFIX}{item_id}"


def group_key(label) -> str:
    return f"{GROUP_KEY_PREFIX}{label}" if label else ""


# ----------------------------
# Sort keys
# ----------------------------
def _activated_or_created(item):
    return item.activated_date or item.created_date


SORT_KEYS = {
    "id": lambda w: w.id,
    "title": lambda w: w.title.casefold(),
    "state": lambda w: w.state,
    "work_item_type": lambda w: w.work_item_type,
    "assigned_to": lambda w: (w.assigned_to.display_name if w.assigned_to else "").casefold(),
    "story_points": lambda w: w.story_points or 0,
    "changed_date": lambda w: w.changed_date,
    "start_date": _activated_or_created,
}


# ----------------------------
# Filters applied before building
# ----------------------------
def filter_by_top_level(items, top_level):
    """'Area Path' keeps everything; a type keeps that type and everything ranked below it."""
    if top_level == AREA_PATH_KEY:
        return list(items)
    min_rank = HIERARCHY_ORDER.get(top_level, 0)
    return [w for w in items if hierarchy_rank(w.work_item_type) >= min_rank]


def filter_by_types(items, selected_types):
    types = set(selected_types) - {AREA_PATH_KEY}
    return [w for w in items if w.work_item_type in types]


def filter_by_states(items, selected_states):
    if selected_states is None or set(STATES) <= set(selected_states):
        return list(items)
    return [w for w in items if w.state in selected_states]


# ----------------------------
# Build
# ----------------------------
def _cycle_members(index):
    """Ids whose parent chain loops back onto itself (self-parents included)."""
    visiting, done = 1, 2
    marks = {}
    on_cycle = set()
    for start in index:
        if start in marks:
            continue
        path = []
        current = start
        while current is not None and current in index and current not in marks:
            marks[current] = visiting
            path.append(current)
            current = index[current].item.parent_id
        if current is not None and marks.get(current) == visiting:
            on_cycle.update(path[path.index(current):])
        for node_id in path:
            marks[node_id] = done
    return on_cycle


def build_tree(items):
    """
    Forest from parent back-references.

    A node hangs under its parent only when the parent id resolves inside `items`;
    missing parents and parent cycles make roots. Every item appears exactly once.
    """
    index = {}
    for item in items:
        if item.id not in index:
            index[item.id] = TreeNode(item)

    on_cycle = _cycle_members(index)
    roots = []
    for node_id, node in index.items():
        parent_id = node.item.parent_id
        if parent_id is not None and parent_id in index and node_id not in on_cycle:
            index[parent_id].children.append(node)
        else:
            roots.append(node)
    return roots


def _ordered(nodes, key, descending):
    ordered = sorted(nodes, key=lambda n: n.item.id)
    if key is not None:
        ordered = sorted(ordered, key=lambda n: key(n.item), reverse=descending)
    return sorted(ordered, key=lambda n: hierarchy_rank(n.item.work_item_type))


def sort_tree(roots, key=None, descending=False):
    """
    New forest ordered at every level by hierarchy rank, then `key`, then id.

    `key` is a name from SORT_KEYS or a callable taking a WorkItem.
    """
    if isinstance(key, str):
        key = SORT_KEYS[key]
    top = _ordered(roots, key, descending)
    new_roots = [TreeNode(n.item) for n in top]
    stack = list(zip(top, new_roots))
    while stack:
        old, new = stack.pop()
        kids = _ordered(old.children, key, descending)
        new.children = [TreeNode(c.item) for c in kids]
        stack.extend(zip(kids, new.children))
    return new_roots


def display_area(item: WorkItem) -> str:
    """Area path below the project root, '' when the item sits at the root."""
    prefix = item.project_name + AREA_SEPARATOR
    if item.area_path.startswith(prefix):
        return item.area_path[len(prefix):]
    return ""


def group_by_area_path(roots):
    buckets = {}
    for root in roots:
        buckets.setdefault(display_area(root.item), []).append(root)
    labels = sorted(buckets, key=lambda label: (label == "", label.casefold(), label))
    return [AreaGroup(group_id=group_key(label), label=label, roots=buckets[label]) for label in labels]


def build_groups(items, grouped=True, key=None, descending=False):
    """build -> sort -> (optionally) bucket by area: the table and timeline pipeline."""
    roots = sort_tree(build_tree(items), key=key, descending=descending)
    if grouped:
        return group_by_area_path(roots)
    return [AreaGroup(group_id="", label="", roots=roots)]


# ----------------------------
# Traversal
# ----------------------------
def walk(roots):
    """Pre-order over a forest, without recursion."""
    stack = list(reversed(roots))
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def count_nodes(roots) -> int:
    return sum(1 for _ in walk(roots))


def _flatten_nodes(nodes, expanded_ids, depth, rows):
    stack = [(n, depth) for n in reversed(nodes)]
    while stack:
        node, d = stack.pop()
        has_children = bool(node.children)
        rows.append(FlatRow(kind="item", depth=d, has_children=has_children, item=node.item))
        if has_children and item_key(node.item.id) in expanded_ids:
            stack.extend((child, d + 1) for child in reversed(node.children))


def flatten_grouped_tree(groups, expanded_ids):
    """
    Display rows, pre-order. A labelled group emits its header and, when expanded, its
    members one level deeper; the unlabelled bucket renders its roots at depth 0.
    """
    rows = []
    for group in groups:
        if group.label:
            rows.append(FlatRow(kind="group", depth=0, has_children=True,
                                group_id=group.group_id, label=group.label))
            if group.group_id in expanded_ids:
                _flatten_nodes(group.roots, expanded_ids, 1, rows)
        else:
            _flatten_nodes(group.roots, expanded_ids, 0, rows)
    return rows


def collect_all_expandable_ids(groups):
    ids = []
    for group in groups:
        if group.label:
            ids.append(group.group_id)
        for node in walk(group.roots):
            if node.children:
                ids.append(item_key(node.item.id))
    return ids


def page_count(rows, page_size=TABLE_PAGE_SIZE) -> int:
    return math.ceil(len(rows) / page_size)


def paginate(rows, page, page_size=TABLE_PAGE_SIZE):
    return rows[page * page_size:(page + 1) * page_size]
