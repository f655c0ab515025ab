#!/usr/bin/env python3
"""
Per-project status report: progress, RAG status, milestones and watch list, merged with
the fields the team keeps on its ProjectOptics wiki page.

Run on an analytics export to write project_reports.json + PROJECT_REPORTS.md:
    python project_report.py [ado_analytics_latest.json]
"""
from __future__ import annotations

import json
import os
import re
import sys

from metrics import round_half_up
from work_items import is_completed, item_from_dict, points, sprint_from_dict


GREEN_THRESHOLD = 75
YELLOW_THRESHOLD = 50
WIKI_PAGE_ROOT = "/ProjectOptics"
WATCH_LIST_TYPES = ("Issue", "Risk")
WATCH_LIST_EXCLUDED_STATES = ("Closed", "Removed")

_HEADING_RE = re.compile(r"^#\s+(.+)$", re.MULTILINE)


# ----------------------------
# Wiki page
# ----------------------------
def wiki_page_path(area_name=None) -> str:
    return f"{WIKI_PAGE_ROOT}-{area_name}" if area_name else WIKI_PAGE_ROOT


def _split_sections(markdown):
    """lowercased `# Heading` -> trimmed body, in page order"""
    sections = {}
    matches = list(_HEADING_RE.finditer(markdown))
    for i, m in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(markdown)
        sections[m.group(1).strip().lower()] = markdown[m.end():end].strip()
    return sections


def _parse_table(body):
    fields = {}
    rows = [line for line in body.split("\n") if line.strip().startswith("|")]
    # header + separator rows
    for line in rows[2:]:
        cells = [c.strip() for c in line.split("|") if c.strip()]
        if len(cells) >= 2:
            fields[cells[0]] = cells[1]
    return fields


def parse_wiki_page(markdown):
    """
    Structured content of a ProjectOptics page, or None for a blank page.

    Sections are matched by heading, case-insensitively: a two-column `Project Data`
    table, `Accomplishments`, the first heading starting with `Look Ahead` and
    `Description`. Section bodies are kept as raw markdown.
    """
    if not markdown or not markdown.strip():
        return None
    sections = _split_sections(markdown)
    look_ahead = next((k for k in sections if k.startswith("look ahead")), None)
    return {
        "fields": _parse_table(sections["project data"]) if "project data" in sections else {},
        "accomplishments": sections.get("accomplishments"),
        "look_ahead": sections[look_ahead] if look_ahead else None,
        "description": sections.get("description"),
    }


# ----------------------------
# Report
# ----------------------------
def status_for(progress_percent) -> str:
    if progress_percent >= GREEN_THRESHOLD:
        return "green"
    if progress_percent >= YELLOW_THRESHOLD:
        return "yellow"
    return "red"


def _day(dt):
    return dt.date().isoformat() if dt else None


def _end_date(items, sprints, project_name):
    targets = [w.target_date for w in items if w.target_date]
    if targets:
        return _day(max(targets))
    finishes = [s.finish_date for s in sprints if s.project_name == project_name and s.finish_date]
    return _day(max(finishes)) if finishes else None


def _milestones(items):
    features = [w for w in items if w.work_item_type == "Feature" and w.state == "Active"]
    # dated first, ascending; undated keep input order
    features.sort(key=lambda w: (w.target_date is None, w.target_date.date() if w.target_date else None))
    return [
        {"id": w.id, "name": w.title, "state": w.state, "target_date": _day(w.target_date)}
        for w in features
    ]


def _watch_list(items):
    return [
        {
            "id": w.id,
            "type": w.work_item_type,
            "title": w.title,
            "owner": w.assigned_to.display_name if w.assigned_to else "Unassigned",
        }
        for w in items
        if w.work_item_type in WATCH_LIST_TYPES and w.state not in WATCH_LIST_EXCLUDED_STATES
    ]


def project_report(items, sprints, project_name, wiki=None):
    """Status report for one project; items of other projects are ignored."""
    wiki = wiki or {}
    fields = wiki.get("fields") or {}
    report = {
        "project_name": project_name,
        "progress_percent": 0,
        "overall_status": "red",
        "end_date": None,
        "last_modified": None,
        "total_story_points": 0,
        "milestones": [],
        "watch_list": [],
        "program_manager": fields.get("Program Manager"),
        "project_manager": fields.get("Project Manager"),
        "accomplishments": wiki.get("accomplishments"),
        "look_ahead": wiki.get("look_ahead"),
        "description": wiki.get("description"),
        "wiki_fields": fields,
    }

    mine = [w for w in items if w.project_name == project_name]
    if not mine:
        return report

    stories = [w for w in mine if w.work_item_type == "User Story"]
    total = sum(points(w) for w in stories)
    done = sum(points(w) for w in stories if is_completed(w))
    progress = round_half_up(done / total * 100) if total > 0 else 0

    report.update({
        "progress_percent": progress,
        "overall_status": status_for(progress),
        "end_date": _end_date(mine, sprints, project_name),
        "last_modified": _day(max(w.changed_date for w in mine)),
        "total_story_points": sum(points(w) for w in mine),
        "milestones": _milestones(mine),
        "watch_list": _watch_list(mine),
    })
    return report


def project_reports(items, sprints, project_names, wiki_pages=None):
    wiki_pages = wiki_pages or {}
    return [project_report(items, sprints, p, wiki_pages.get(p)) for p in project_names]


# ----------------------------
# Markdown export
# ----------------------------
STATUS_LABELS = {"green": "On track", "yellow": "At risk", "red": "Off track"}


def report_markdown(report) -> str:
    r = report
    lines = [
        f"## {r['project_name']}",
        "",
        f"- **Status:** {STATUS_LABELS[r['overall_status']]} ({r['overall_status']}) · **{r['progress_percent']}%** of story points done",
        f"- **End date:** {r['end_date'] or 'N/A'} · **Last modified:** {r['last_modified'] or 'N/A'}",
        f"- **Total story points:** {r['total_story_points']:g}",
    ]
    if r["program_manager"] or r["project_manager"]:
        lines.append(f"- **Program manager:** {r['program_manager'] or 'N/A'} · **Project manager:** {r['project_manager'] or 'N/A'}")
    lines.append("")

    if r["description"]:
        lines.extend(["### Description", "", r["description"], ""])

    lines.extend(["### Milestones", ""])
    if r["milestones"]:
        lines.append("| ID | Feature | Target |")
        lines.append("|---|---|---|")
        for m in r["milestones"]:
            lines.append(f"| {m['id']} | {m['name']} | {m['target_date'] or 'TBD'} |")
    else:
        lines.append("- No active features.")
    lines.append("")

    lines.extend(["### Watch list", ""])
    if r["watch_list"]:
        for w in r["watch_list"]:
            lines.append(f"- **{w['type']} #{w['id']}:** {w['title']} ({w['owner']})")
    else:
        lines.append("- No open issues or risks.")
    lines.append("")

    if r["accomplishments"]:
        lines.extend(["### Accomplishments", "", r["accomplishments"], ""])
    if r["look_ahead"]:
        lines.extend(["### Look ahead", "", r["look_ahead"], ""])
    return "\n".join(lines)


def write_reports(reports, out_dir, run_ts=""):
    json_path = os.path.join(out_dir, "project_reports.json")
    md_path = os.path.join(out_dir, "PROJECT_REPORTS.md")
    with open(json_path, "w", encoding="utf-8") as f:
        json.dump(reports, f, indent=2, ensure_ascii=False)

    lines = ["# Project status reports"]
    if run_ts:
        lines.append(f"*Generated from run: {run_ts}*")
    lines.extend(["", "---", ""])
    for r in reports:
        lines.append(report_markdown(r))
        lines.append("---")
        lines.append("")
    with open(md_path, "w", encoding="utf-8") as f:
        f.write("\n".join(lines))
    return json_path, md_path


def load_data(path=None):
    path = path or os.path.join(os.path.dirname(os.path.abspath(__file__)), "ado_analytics_latest.json")
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def main():
    src = sys.argv[1] if len(sys.argv) > 1 else None
    data = load_data(src)
    reports = data.get("project_reports")
    if reports is None:
        items = [item_from_dict(d) for d in data.get("work_items", [])]
        sprints = [sprint_from_dict(d) for d in data.get("sprints", [])]
        reports = project_reports(items, sprints, data.get("projects", []), data.get("wiki_pages"))
    base = os.path.dirname(os.path.abspath(src)) if src else os.path.dirname(os.path.abspath(__file__))
    json_path, md_path = write_reports(reports, base, data.get("run_iso_ts", ""))
    print(f"Wrote {json_path} and {md_path}")


if __name__ == "__main__":
    main()
