import os
import re
import sys
import time
import random
import argparse
import json as _json
from datetime import datetime, timezone, date
from concurrent.futures import ThreadPoolExecutor
from urllib.parse import quote

# Load .env if present (keeps the PAT out of terminal history)
from dotenv import load_dotenv

import requests
import pandas as pd

from work_items import (
    Assignee, WorkItem, Sprint, AREA_SEPARATOR,
    decode_state, decode_type, decode_time_frame, parse_dt,
    item_to_dict, item_from_dict, sprint_to_dict, sprint_from_dict,
)
from work_item_tree import (
    build_groups, flatten_grouped_tree, collect_all_expandable_ids,
)
from selection import filter_by_area_selections, parse_selections, projects_to_fetch, selection_label
from filters import (
    FilterState, set_projects, apply_filters, unique_resources, resolve_sprint_path, is_archived,
    CURRENT_SPRINT,
)
from date_ranges import build_lookup, group_date_ranges, timeline_window, timeline_bars
from project_report import parse_wiki_page, wiki_page_path, project_reports
import metrics


# ----------------------------
# Config
# ----------------------------
ADO_API_VERSION = "7.1"
WORK_ITEM_BATCH_SIZE = 200  # ADO limit per detail request
MAX_RETRIES = 4
BACKOFF_BASE = 0.5
BACKOFF_CAP = 8.0
MAX_WORKERS = 4

WIQL_ALL_ITEMS = """
  SELECT [System.Id]
  FROM WorkItems
  WHERE [System.TeamProject] = @project
  ORDER BY [System.ChangedDate] DESC
"""

WIQL_ITERATION_ITEMS = """
  SELECT [System.Id]
  FROM WorkItems
  WHERE [System.TeamProject] = @project
    AND [System.IterationPath] = '{path}'
  ORDER BY [System.ChangedDate] DESC
"""

PARENT_LINK = "System.LinkTypes.Hierarchy-Reverse"
_WORK_ITEM_URL_ID = re.compile(r"/workItems/(\d+)$", re.IGNORECASE)
_ISSUE_RISK_URL = re.compile(r"/(Issue|Risk)/", re.IGNORECASE)


def _q(name):
    return quote(name, safe="")


def wiql_for(iteration_path=None):
    if not iteration_path:
        return WIQL_ALL_ITEMS
    return WIQL_ITERATION_ITEMS.format(path=iteration_path.replace("'", "''"))


class AdoError(RuntimeError):
    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class AdoAuthError(AdoError):
    """401/403: the PAT is missing a scope, expired or wrong."""


# ----------------------------
# Azure DevOps client
# ----------------------------
def backoff_delay(attempt, base=BACKOFF_BASE, cap=BACKOFF_CAP):
    return min(cap, base * (2 ** (attempt - 1))) + random.random() * 0.2


def parse_retry_after(headers):
    if not headers:
        return None
    v = headers.get("Retry-After") or headers.get("retry-after")
    if v is None:
        return None
    try:
        return float(v)
    except ValueError:
        return None


class AdoClient:
    def __init__(self, organization=None, pat=None, base_url=None, session=None):
        self.organization = organization or os.environ.get("ADO_ORGANIZATION")
        self.pat = pat or os.environ.get("ADO_PAT")
        base = base_url or os.environ.get("ADO_BASE_URL")
        if not base and self.organization:
            base = f"https://dev.azure.com/{self.organization}"
        if not base or not self.pat:
            raise RuntimeError("Missing env vars. Set ADO_ORGANIZATION (or ADO_BASE_URL) and ADO_PAT.")
        self.base = base.rstrip("/")

        self.session = session or requests.Session()
        self.session.auth = ("", self.pat)
        self.session.headers.update({"Accept": "application/json"})

    def _request(self, method, path, params=None, json=None, timeout=60):
        url = self.base + path
        query = {"api-version": ADO_API_VERSION}
        query.update(params or {})
        attempt = 0
        while True:
            attempt += 1
            try:
                r = self.session.request(method, url, params=query, json=json, timeout=timeout)
            except (requests.ConnectionError, requests.Timeout) as e:
                if attempt > MAX_RETRIES:
                    raise AdoError(f"{method} {url} failed: {e}") from e
                time.sleep(backoff_delay(attempt))
                continue

            if r.status_code in (401, 403):
                raise AdoAuthError(f"{method} {url} failed {r.status_code}: {r.text[:500]}", r.status_code)
            if (r.status_code == 429 or r.status_code >= 500) and attempt <= MAX_RETRIES:
                time.sleep(parse_retry_after(r.headers) or backoff_delay(attempt))
                continue
            if r.status_code >= 400:
                raise AdoError(f"{method} {url} failed {r.status_code}: {r.text[:500]}", r.status_code)
            return r.json()

    def _get(self, path, params=None, timeout=60):
        return self._request("GET", path, params=params, timeout=timeout)

    def _post(self, path, body, timeout=60):
        return self._request("POST", path, json=body, timeout=timeout)

    def list_projects(self):
        data = self._get("/_apis/projects", params={"$top": 100})
        return [
            {
                "id": p.get("id"),
                "name": p.get("name", ""),
                "description": p.get("description"),
                "state": p.get("state"),
                "visibility": p.get("visibility"),
                "is_archived": is_archived(p.get("name", "")),
            }
            for p in data.get("value", [])
        ]

    def list_teams(self, project):
        data = self._get(f"/_apis/projects/{_q(project)}/teams")
        return [{"id": t.get("id"), "name": t.get("name", ""), "project_name": project} for t in data.get("value", [])]

    def list_iterations(self, project, team):
        path = f"/{_q(project)}/{_q(team)}/_apis/work/teamsettings/iterations"
        data = self._get(path)
        sprints = []
        for it in data.get("value", []):
            attrs = it.get("attributes") or {}
            sprints.append(Sprint(
                id=str(it.get("id")),
                name=it.get("name", ""),
                path=it.get("path", ""),
                project_name=project,
                start_date=parse_dt(attrs.get("startDate")),
                finish_date=parse_dt(attrs.get("finishDate")),
                time_frame=decode_time_frame(attrs.get("timeFrame")),
            ))
        return sprints

    def list_area_paths(self, project):
        """Names of the project's immediate child areas, sorted; [] when the lookup fails."""
        try:
            data = self._get(f"/{_q(project)}/_apis/wit/classificationnodes/areas",
                             params={"$depth": 2})
        except AdoError as e:
            print(f"  {project}: area path fetch failed ({e})", file=sys.stderr)
            return []
        return sorted(child.get("name", "") for child in data.get("children") or [])

    def query_ids(self, project, wiql):
        data = self._post(f"/{_q(project)}/_apis/wit/wiql", {"query": wiql})
        return [wi["id"] for wi in data.get("workItems") or []]

    def work_item_details(self, ids):
        """Raw work items in batches of 200 with relations; a failed batch is reported and skipped."""
        raw = []
        for i in range(0, len(ids), WORK_ITEM_BATCH_SIZE):
            batch = ids[i:i + WORK_ITEM_BATCH_SIZE]
            params = {"ids": ",".join(str(x) for x in batch), "$expand": "Relations"}
            try:
                data = self._get("/_apis/wit/workitems", params=params)
            except AdoAuthError:
                raise
            except AdoError as e:
                print(f"  batch {i // WORK_ITEM_BATCH_SIZE + 1} failed ({e})", file=sys.stderr)
                continue
            raw.extend(data.get("value") or [])
        return raw

    def wiki_page(self, project, page_path):
        """Markdown of a project-wiki page, None when there is no project wiki or no such page."""
        encoded = _q(project)
        wikis = self._get(f"/{encoded}/_apis/wiki/wikis").get("value") or []
        project_wiki = next((w for w in wikis if w.get("type") == "projectWiki"), None)
        if project_wiki is None:
            return None
        try:
            page = self._get(f"/{encoded}/_apis/wiki/wikis/{project_wiki['id']}/pages",
                             params={"path": page_path, "includeContent": "true"})
        except AdoError as e:
            if e.status_code == 404:
                return None
            raise
        return page.get("content") or None


# ----------------------------
# Mapping
# ----------------------------
def _related_id(rel):
    m = _WORK_ITEM_URL_ID.search(rel.get("url") or "")
    return int(m.group(1)) if m else None


def map_work_item(raw, type_lookup=None):
    """ADO REST work item -> WorkItem. type_lookup: id -> work item type of the fetched batch."""
    type_lookup = type_lookup or {}
    f = raw.get("fields") or {}
    parent_id = None
    linked_issue = linked_risk = False
    for rel in raw.get("relations") or []:
        url = rel.get("url") or ""
        m = _ISSUE_RISK_URL.search(url)
        if m:
            kind = m.group(1).lower()
            linked_issue = linked_issue or kind == "issue"
            linked_risk = linked_risk or kind == "risk"
        name = ((rel.get("attributes") or {}).get("name") or "").lower()
        linked_issue = linked_issue or "issue" in name
        linked_risk = linked_risk or "risk" in name

        related = _related_id(rel)
        if related is None:
            continue
        if rel.get("rel") == PARENT_LINK:
            parent_id = related
        related_type = type_lookup.get(related)
        linked_issue = linked_issue or related_type == "Issue"
        linked_risk = linked_risk or related_type == "Risk"

    who = f.get("System.AssignedTo")
    assignee = None
    if isinstance(who, dict):
        assignee = Assignee(
            display_name=who.get("displayName", ""),
            unique_name=who.get("uniqueName", ""),
            image_url=who.get("imageUrl"),
        )

    created = parse_dt(f.get("System.CreatedDate"))
    return WorkItem(
        id=int(raw["id"]),
        project_name=f.get("System.TeamProject", ""),
        title=f.get("System.Title", ""),
        state=decode_state(f.get("System.State")),
        work_item_type=decode_type(f.get("System.WorkItemType")),
        iteration_path=f.get("System.IterationPath", ""),
        area_path=f.get("System.AreaPath", ""),
        created_date=created,
        changed_date=parse_dt(f.get("System.ChangedDate")) or created,
        assigned_to=assignee,
        story_points=f.get("Microsoft.VSTS.Scheduling.StoryPoints"),
        priority=f.get("Microsoft.VSTS.Common.Priority"),
        state_change_date=parse_dt(f.get("Microsoft.VSTS.Common.StateChangeDate")),
        closed_date=parse_dt(f.get("Microsoft.VSTS.Common.ClosedDate")),
        resolved_date=parse_dt(f.get("Microsoft.VSTS.Common.ResolvedDate")),
        target_date=parse_dt(f.get("Microsoft.VSTS.Scheduling.TargetDate")),
        activated_date=parse_dt(f.get("Microsoft.VSTS.Common.ActivatedDate")),
        tags=f.get("System.Tags"),
        description=f.get("System.Description"),
        reason=f.get("System.Reason"),
        parent_id=parent_id,
        has_linked_issue=linked_issue,
        has_linked_risk=linked_risk,
    )


def map_work_items(raw_items):
    type_lookup = {r["id"]: (r.get("fields") or {}).get("System.WorkItemType") for r in raw_items}
    return [map_work_item(r, type_lookup) for r in raw_items]


# ----------------------------
# Fetch (per-project fan-out)
# ----------------------------
def fetch_project_items(client, project, iteration_path=None):
    ids = client.query_ids(project, wiql_for(iteration_path))
    if not ids:
        return []
    return map_work_items(client.work_item_details(ids))


def fetch_project_sprints(client, project):
    teams = client.list_teams(project)
    if not teams:
        return []
    return client.list_iterations(project, teams[0]["name"])


def _fan_out(fn, projects, max_workers=MAX_WORKERS):
    """Run fn(project) concurrently. Returns ({project: result} for successes, {project: error})."""
    ok, failed = {}, {}
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = {p: pool.submit(fn, p) for p in projects}
        for p, fut in futures.items():
            try:
                ok[p] = fut.result()
            except AdoAuthError:
                raise
            except (AdoError, requests.RequestException, ValueError) as e:
                failed[p] = str(e)
                print(f"  {p}: fetch failed ({e})", file=sys.stderr)
    return ok, failed


def fetch_work_items(client, projects, iteration_path=None, max_workers=MAX_WORKERS):
    """Items of every project that fetched; failed projects are reported and skipped."""
    ok, failed = _fan_out(lambda p: fetch_project_items(client, p, iteration_path), projects, max_workers)
    items = []
    for p in projects:
        items.extend(ok.get(p, []))
    return items, failed


def fetch_sprints(client, projects, max_workers=MAX_WORKERS):
    ok, failed = _fan_out(lambda p: fetch_project_sprints(client, p), projects, max_workers)
    sprints = []
    for p in projects:
        sprints.extend(ok.get(p, []))
    return sprints, failed


def fetch_area_paths(client, projects):
    return {p: client.list_area_paths(p) for p in projects}


def fetch_wiki_pages(client, projects, area_filters=None):
    """project -> parsed ProjectOptics page (None when absent or unreadable)."""
    area_filters = area_filters or {}
    pages = {}
    for p in projects:
        areas = area_filters.get(p) or []
        area = areas[0].split(AREA_SEPARATOR, 1)[1] if areas else None
        try:
            pages[p] = parse_wiki_page(client.wiki_page(p, wiki_page_path(area)))
        except AdoError as e:
            print(f"  {p}: wiki fetch failed ({e})", file=sys.stderr)
            pages[p] = None
    return pages


# ----------------------------
# Snapshot cache
# ----------------------------
def _snapshot_path(cache_dir, project):
    safe = re.sub(r"[^A-Za-z0-9._-]+", "_", project)
    return os.path.join(cache_dir, f"{safe}.json")


def save_snapshot(cache_dir, project, items, sprints, synced_at=None):
    os.makedirs(cache_dir, exist_ok=True)
    synced_at = synced_at or datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    payload = {
        "project": project,
        "synced_at": synced_at,
        "work_items": [item_to_dict(w) for w in items],
        "sprints": [sprint_to_dict(s) for s in sprints],
    }
    path = _snapshot_path(cache_dir, project)
    with open(path, "w", encoding="utf-8") as f:
        _json.dump(payload, f, indent=2, ensure_ascii=False)
    return path


def load_snapshot(cache_dir, project):
    """(items, sprints, synced_at) for a cached project, None when nothing is cached."""
    path = _snapshot_path(cache_dir, project)
    if not os.path.exists(path):
        return None
    with open(path, encoding="utf-8") as f:
        payload = _json.load(f)
    items = [item_from_dict(d) for d in payload.get("work_items", [])]
    sprints = [sprint_from_dict(d) for d in payload.get("sprints", [])]
    return items, sprints, payload.get("synced_at")


# ----------------------------
# View models
# ----------------------------
def row_to_dict(row):
    if row.kind == "group":
        return {"kind": "group", "depth": row.depth, "has_children": row.has_children,
                "group_id": row.group_id, "label": row.label}
    w = row.item
    return {
        "kind": "item",
        "depth": row.depth,
        "has_children": row.has_children,
        "id": w.id,
        "title": w.title,
        "work_item_type": w.work_item_type,
        "state": w.state,
        "assigned_to": w.assigned_to.display_name if w.assigned_to else None,
        "story_points": w.story_points,
        "changed_date": w.changed_date.date().isoformat(),
    }


def raid_row_to_dict(row):
    w = row["item"]
    return {
        "id": w.id,
        "title": w.title,
        "category": row["category"],
        "state": w.state,
        "priority": w.priority,
        "assigned_to": w.assigned_to.display_name if w.assigned_to else "Unassigned",
        "project_name": w.project_name,
        "age_days": row["age"],
        "created_date": w.created_date.date().isoformat(),
    }


def build_results(items, sprints, state=None, today=None, area_paths=None, wiki_pages=None,
                  all_projects=None):
    """
    Every dashboard view model for one filter state, JSON-ready.

    `all_projects` is the selectable project list the selection label is measured against;
    it defaults to the projects with area paths, then the projects present in `items`.
    """
    state = state or FilterState()
    today = today or datetime.now(timezone.utc)
    area_paths = area_paths or {}

    area_filtered = filter_by_area_selections(items, parse_selections(state.selected_projects).area_filters)
    filtered = apply_filters(items, state)
    sprint_path = resolve_sprint_path(state.selected_sprint, sprints)
    view = [w for w in filtered if w.iteration_path == sprint_path] if sprint_path else filtered
    sprint = next((s for s in sprints if s.path == sprint_path), None)
    if sprint is None:
        sprint = next((s for s in sprints if s.time_frame == "current"), None)

    groups = build_groups(view, grouped=True)
    expanded = set(collect_all_expandable_ids(groups))
    rows = flatten_grouped_tree(groups, expanded)

    timeline_groups = build_groups(view, grouped=True, key="start_date")
    timeline_rows = flatten_grouped_tree(timeline_groups, expanded)
    lookup = build_lookup(items)
    ranges = group_date_ranges(timeline_groups, lookup, today)
    range_start, range_days = timeline_window(timeline_rows, ranges, lookup, today)

    universe = list(all_projects or sorted(area_paths) or sorted({w.project_name for w in items}))
    project_names = projects_to_fetch(state.selected_projects) or universe
    return {
        "selection_label": selection_label(list(state.selected_projects), universe, area_paths),
        "selected_sprint": sprint_path,
        "dashboard_metrics": metrics.dashboard_metrics(view),
        "sprint_trends": metrics.sprint_trends(filtered, sprints),
        "state_distribution": metrics.state_distribution(view),
        "type_distribution": metrics.type_distribution(view),
        "velocity": metrics.velocity(filtered, sprints),
        "burndown": metrics.burndown(filtered, sprint, today) if sprint else [],
        "burndown_sprint": sprint.name if sprint else None,
        "team_workload": metrics.team_workload(view),
        "resources": [{"display_name": a.display_name, "unique_name": a.unique_name}
                      for a in unique_resources(area_filtered)],
        "work_item_rows": [row_to_dict(r) for r in rows],
        "timeline": {
            "start": range_start.date().isoformat(),
            "days": range_days,
            "bars": timeline_bars(timeline_rows, range_start, ranges, lookup, today),
        },
        "raid_metrics": metrics.raid_metrics(filtered, today),
        "raid_type_distribution": metrics.raid_type_distribution(filtered),
        "raid_priority_distribution": metrics.raid_priority_distribution(filtered),
        "raid_age_buckets": metrics.raid_age_buckets(filtered, today),
        "raid_trend": metrics.raid_trend(filtered, today),
        "raid_by_assignee": metrics.raid_by_assignee(filtered),
        "raid_by_project": metrics.raid_by_project(filtered),
        "raid_by_state": metrics.raid_by_state(filtered),
        "raid_rows": [raid_row_to_dict(r) for r in metrics.raid_rows(filtered, today)],
        "impacted_rows": [raid_row_to_dict(r) for r in metrics.raid_rows(filtered, today, impacted=True)],
        "project_reports": project_reports(filtered, sprints, project_names, wiki_pages),
    }


# ----------------------------
# Main
# ----------------------------
def _parse_day(s):
    return date.fromisoformat(s) if s else None


def _days(value):
    return "n/a" if value is None else f"{value} days"


def parse_args(argv=None):
    ap = argparse.ArgumentParser(description="Azure DevOps delivery analytics -> ado_analytics_latest.json")
    ap.add_argument("--projects", help="Comma-separated selection: Project or Project\\Area (default: ADO_PROJECTS or all active projects)")
    ap.add_argument("--sprint", help=f"Iteration path, or '{CURRENT_SPRINT}' / 'current' for the current sprint")
    ap.add_argument("--resource", help="Unique name of one assignee")
    ap.add_argument("--from", dest="date_from", type=_parse_day, help="Changed on or after (YYYY-MM-DD)")
    ap.add_argument("--to", dest="date_to", type=_parse_day, help="Changed on or before (YYYY-MM-DD)")
    ap.add_argument("--cache", help="Snapshot cache directory")
    ap.add_argument("--offline", action="store_true", help="Read the snapshot cache only, no API calls")
    ap.add_argument("--out", help="Output directory (default: next to this script)")
    return ap.parse_args(argv)


def main(argv=None):
    load_dotenv()
    args = parse_args(argv)
    run_ts = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

    entries = args.projects or os.environ.get("ADO_PROJECTS") or ""
    entries = [e.strip() for e in entries.split(",") if e.strip()]
    sprint = CURRENT_SPRINT if args.sprint == "current" else args.sprint
    state = FilterState(
        selected_projects=tuple(entries),
        selected_sprint=sprint,
        selected_resource=args.resource,
        date_from=args.date_from,
        date_to=args.date_to,
    )

    items, sprints, area_paths, wiki_pages = [], [], {}, {}
    all_projects = None
    failures = {}
    if args.offline:
        if not args.cache:
            raise RuntimeError("--offline needs --cache")
        print(f"Reading snapshot cache from {args.cache}...")
        for p in projects_to_fetch(entries):
            snap = load_snapshot(args.cache, p)
            if snap is None:
                print(f"  {p}: not cached")
                continue
            p_items, p_sprints, synced_at = snap
            items.extend(p_items)
            sprints.extend(p_sprints)
            print(f"  {p}: {len(p_items)} items, {len(p_sprints)} sprints (synced {synced_at})")
    else:
        client = AdoClient()
        print("Listing projects...")
        all_projects = [p["name"] for p in client.list_projects() if not p["is_archived"]]
        if not entries:
            entries = all_projects
            state = set_projects(state, all_projects)
        projects = projects_to_fetch(entries)
        print(f"Projects: {', '.join(projects)}")

        print("\nPulling work items...")
        items, failures = fetch_work_items(client, projects)
        print(f"Work items pulled: {len(items)}")
        print("Pulling sprints...")
        sprints, sprint_failures = fetch_sprints(client, projects)
        failures.update(sprint_failures)
        print(f"Sprints pulled: {len(sprints)}")
        area_paths = fetch_area_paths(client, projects)
        wiki_pages = fetch_wiki_pages(client, projects, parse_selections(entries).area_filters)

        if args.cache:
            for p in projects:
                if p in failures:
                    continue
                save_snapshot(args.cache, p,
                              [w for w in items if w.project_name == p],
                              [s for s in sprints if s.project_name == p], run_ts)
            print(f"Snapshot cache updated: {args.cache}")

    results = {"run_iso_ts": run_ts, "projects": projects_to_fetch(entries), "fetch_failures": failures}
    results.update(build_results(items, sprints, state, area_paths=area_paths, wiki_pages=wiki_pages,
                                 all_projects=all_projects))
    results["work_items"] = [item_to_dict(w) for w in items]
    results["sprints"] = [sprint_to_dict(s) for s in sprints]

    m = results["dashboard_metrics"]
    print(f"\nSelection: {results['selection_label']}")
    print(f"Items in view: {m['total_items']} · story points {m['total_story_points']:g} "
          f"(completed {m['completed_story_points']:g}) · avg cycle time {_days(m['average_cycle_time_days'])}")
    vel = results["velocity"]["velocity_data"]
    if vel:
        df = pd.DataFrame(vel)
        print("\nVelocity (completed story points per sprint):")
        print(df[["sprint_name", "completed_points", "completed_items"]].to_string(index=False))
        print(f"Average velocity: {results['velocity']['average_velocity']}")
    else:
        print("\nNo past or current sprints; velocity not computed.")
    r = results["raid_metrics"]
    print(f"\nRAID: {r['open_issues']} open issues, {r['open_risks']} open risks, "
          f"{r['high_priority']} high priority, avg age {r['avg_age_days']} days")

    out_dir = args.out or os.path.dirname(os.path.abspath(__file__))
    os.makedirs(out_dir, exist_ok=True)
    latest_path = os.path.join(out_dir, "ado_analytics_latest.json")
    ts_path = os.path.join(out_dir, f"ado_analytics_{run_ts.replace(':', '-')}.json")
    for path in (latest_path, ts_path):
        with open(path, "w", encoding="utf-8") as f:
            _json.dump(results, f, indent=2, ensure_ascii=False)
    print(f"\nResults saved to: {latest_path}")
    print(f"              and: {ts_path}")
    print("\nDone.")


if __name__ == "__main__":
    main()
