#!/usr/bin/env python3
"""
Generate a single-file HTML dashboard from ado_analytics_latest.json.
Run: python generate_dashboard.py [path/to/ado_analytics_latest.json] [output.html]
Output: ado_dashboard.html
"""
import json
import os
import sys
import html

STATUS_COLORS = {"green": "var(--green)", "yellow": "var(--orange)", "red": "var(--red)"}
STATE_COLORS = {
    "New": "rgba(139,148,158,0.6)",
    "Active": "rgba(88,166,255,0.6)",
    "Resolved": "rgba(163,113,247,0.6)",
    "Closed": "rgba(63,185,80,0.6)",
    "Removed": "rgba(248,81,73,0.6)",
}


def load_data(path=None):
    path = path or os.path.join(os.path.dirname(os.path.abspath(__file__)), "ado_analytics_latest.json")
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def fmt_num(v, empty="—"):
    if v is None:
        return empty
    if isinstance(v, float) and v.is_integer():
        v = int(v)
    return str(v)


def trend_badge(trend):
    """'+12% vs prev sprint' style badge; empty when there is no trend."""
    if not trend:
        return ""
    value = trend["value"]
    color = "var(--green)" if value >= 0 else "var(--red)"
    sign = "+" if value > 0 else ""
    return f'<div class="trend" style="color: {color}">{sign}{value}% {html.escape(trend["label"])}</div>'


def work_item_rows_html(rows):
    if not rows:
        return '<tr><td colspan="6">No work items</td></tr>'
    out = []
    for r in rows:
        indent = f'style="padding-left: {0.6 + r["depth"] * 1.25:.2f}rem"'
        if r["kind"] == "group":
            out.append(f'<tr class="group-row"><td colspan="6" {indent}>▾ {html.escape(r["label"])}</td></tr>')
            continue
        marker = "▾ " if r["has_children"] else ""
        out.append(
            f'<tr data-depth="{r["depth"]}">'
            f'<td>{r["id"]}</td>'
            f'<td {indent}>{marker}{html.escape(r["title"])}</td>'
            f'<td>{html.escape(r["work_item_type"])}</td>'
            f'<td>{html.escape(r["state"])}</td>'
            f'<td>{html.escape(r["assigned_to"] or "Unassigned")}</td>'
            f'<td>{fmt_num(r["story_points"])}</td>'
            f'</tr>'
        )
    return "".join(out)


def raid_rows_html(rows):
    if not rows:
        return '<tr><td colspan="8">None</td></tr>'
    return "".join(
        f'<tr data-project="{html.escape(r["project_name"])}">'
        f'<td>{r["id"]}</td>'
        f'<td>{html.escape(r["title"][:80])}</td>'
        f'<td>{html.escape(r["category"])}</td>'
        f'<td>{html.escape(r["state"])}</td>'
        f'<td>{fmt_num(r["priority"])}</td>'
        f'<td>{html.escape(r["assigned_to"])}</td>'
        f'<td>{r["age_days"]}</td>'
        f'<td>{html.escape(r["created_date"])}</td>'
        f'</tr>'
        for r in rows
    )


def workload_rows_html(members):
    if not members:
        return '<tr><td colspan="5">No assigned user stories</td></tr>'
    return "".join(
        f'<tr><td>{html.escape(m["name"])}</td><td>{m["stories"]}</td><td>{m["completed_stories"]}</td>'
        f'<td>{fmt_num(m["story_points"])}</td><td>{fmt_num(m["velocity"])}</td></tr>'
        for m in members
    )


def _text_block(md):
    # wiki sections are raw markdown; shown preformatted
    return f'<pre class="wiki">{html.escape(md)}</pre>' if md else '<p class="muted">—</p>'


def report_slide_html(report):
    r = report
    color = STATUS_COLORS.get(r["overall_status"], "var(--muted)")
    milestones = "".join(
        f'<tr><td>{m["id"]}</td><td>{html.escape(m["name"])}</td><td>{html.escape(m["target_date"] or "TBD")}</td></tr>'
        for m in r["milestones"]
    ) or '<tr><td colspan="3">No active features</td></tr>'
    watch = "".join(
        f'<tr><td>{w["id"]}</td><td>{html.escape(w["type"])}</td><td>{html.escape(w["title"])}</td><td>{html.escape(w["owner"])}</td></tr>'
        for w in r["watch_list"]
    ) or '<tr><td colspan="4">No open issues or risks</td></tr>'
    return f"""
  <section class="slide">
    <div class="slide-head">
      <h2>{html.escape(r["project_name"])}</h2>
      <span class="status-dot" style="background: {color}"></span>
      <span class="muted">{r["progress_percent"]}% complete · end {html.escape(r["end_date"] or "N/A")} · updated {html.escape(r["last_modified"] or "N/A")} · {fmt_num(r["total_story_points"])} pts</span>
    </div>
    <div class="progress"><div style="width: {min(r["progress_percent"], 100)}%; background: {color}"></div></div>
    <p class="muted">Program manager: {html.escape(r["program_manager"] or "—")} · Project manager: {html.escape(r["project_manager"] or "—")}</p>
    <div class="grid2">
      <div><h3>Description</h3>{_text_block(r["description"])}</div>
      <div><h3>Milestones</h3><table><thead><tr><th>ID</th><th>Feature</th><th>Target</th></tr></thead><tbody>{milestones}</tbody></table></div>
      <div><h3>Accomplishments</h3>{_text_block(r["accomplishments"])}</div>
      <div><h3>Look ahead</h3>{_text_block(r["look_ahead"])}</div>
    </div>
    <h3>Watch list</h3>
    <table><thead><tr><th>ID</th><th>Type</th><th>Title</th><th>Owner</th></tr></thead><tbody>{watch}</tbody></table>
  </section>"""


def render(data):
    run_ts = data.get("run_iso_ts", "")
    m = data.get("dashboard_metrics") or {}
    trends = data.get("sprint_trends") or {}
    raid = data.get("raid_metrics") or {}
    velocity = data.get("velocity") or {}
    vel_rows = velocity.get("velocity_data") or []
    burndown = data.get("burndown") or []
    states = data.get("state_distribution") or []
    types = data.get("type_distribution") or []
    ages = data.get("raid_age_buckets") or []
    raid_trend = data.get("raid_trend") or []
    by_assignee = data.get("raid_by_assignee") or []
    priorities = data.get("raid_priority_distribution") or []
    reports = data.get("project_reports") or []
    projects = data.get("projects") or []
    failures = data.get("fetch_failures") or {}

    failure_note = ""
    if failures:
        failure_note = '<p class="warn">Partial data: ' + ", ".join(
            f"{html.escape(p)} ({html.escape(str(e)[:120])})" for p, e in failures.items()) + "</p>"

    state_legend = "".join(
        f'<span>{html.escape(s["state"])} {s["count"]} ({s["percentage"]}%)</span>' for s in states
    )

    html_out = f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>Azure DevOps Analytics Dashboard — {html.escape(run_ts)}</title>
  <script src="https://cdn.jsdelivr.net/npm/chart.js@4.4.0/dist/chart.umd.min.js"></script>
  <style>
    :root {{ --bg: #0f1419; --card: #1a2332; --text: #e6edf3; --muted: #8b949e; --accent: #58a6ff; --green: #3fb950; --orange: #d29922; --red: #f85149; }}
    * {{ box-sizing: border-box; }}
    body {{ font-family: 'Segoe UI', system-ui, sans-serif; background: var(--bg); color: var(--text); margin: 0; padding: 1rem; line-height: 1.5; }}
    h1 {{ font-size: 1.5rem; margin: 0 0 0.5rem; }}
    h3 {{ font-size: 0.95rem; color: var(--muted); margin: 1rem 0 0.5rem; }}
    .meta, .muted {{ color: var(--muted); font-size: 0.875rem; }}
    .meta {{ margin-bottom: 1.5rem; }}
    .warn {{ color: var(--orange); font-size: 0.875rem; }}
    .cards {{ display: grid; grid-template-columns: repeat(auto-fill, minmax(150px, 1fr)); gap: 0.75rem; margin-bottom: 2rem; }}
    .card {{ background: var(--card); border-radius: 8px; padding: 0.75rem; border: 1px solid #30363d; }}
    .card .value {{ font-size: 1.5rem; font-weight: 700; color: var(--accent); }}
    .card .label {{ font-size: 0.7rem; text-transform: uppercase; color: var(--muted); margin-top: 0.15rem; }}
    .card .trend {{ font-size: 0.75rem; margin-top: 0.25rem; }}
    section {{ margin-bottom: 2rem; }}
    section h2 {{ font-size: 1.125rem; margin-bottom: 1rem; color: var(--muted); border-bottom: 1px solid #30363d; padding-bottom: 0.5rem; }}
    .chart-wrap {{ max-width: 600px; height: 280px; margin-bottom: 1rem; }}
    .grid2 {{ display: grid; grid-template-columns: repeat(auto-fit, minmax(320px, 1fr)); gap: 1.5rem; }}
    table {{ width: 100%; border-collapse: collapse; font-size: 0.85rem; }}
    th, td {{ padding: 0.4rem 0.6rem; text-align: left; border-bottom: 1px solid #30363d; }}
    th {{ color: var(--muted); font-weight: 600; cursor: pointer; user-select: none; white-space: nowrap; }}
    th:hover {{ color: var(--accent); }}
    .group-row td {{ font-weight: 600; color: var(--accent); }}
    .filter {{ margin-bottom: 0.75rem; }}
    .filter input {{ background: var(--card); border: 1px solid #30363d; color: var(--text); padding: 0.4rem 0.6rem; border-radius: 6px; width: 100%; max-width: 240px; }}
    .table-wrap {{ overflow-x: auto; }}
    .summary-stats {{ display: flex; flex-wrap: wrap; gap: 1rem; margin-bottom: 1rem; font-size: 0.875rem; }}
    .summary-stats span {{ color: var(--muted); }}
    .slide {{ background: var(--card); border-radius: 8px; border: 1px solid #30363d; padding: 1rem 1.25rem; page-break-after: always; }}
    .slide-head {{ display: flex; align-items: center; gap: 0.75rem; flex-wrap: wrap; }}
    .slide-head h2 {{ border: none; margin: 0; padding: 0; color: var(--text); }}
    .status-dot {{ width: 14px; height: 14px; border-radius: 50%; display: inline-block; }}
    .progress {{ height: 8px; background: #30363d; border-radius: 4px; margin: 0.75rem 0; overflow: hidden; }}
    .progress div {{ height: 100%; }}
    pre.wiki {{ white-space: pre-wrap; font-family: inherit; font-size: 0.85rem; margin: 0; }}
  </style>
</head>
<body>
  <h1>Azure DevOps Analytics Dashboard</h1>
  <p class="meta">Run: {html.escape(run_ts)} · {html.escape(data.get("selection_label") or "")} · Projects: {html.escape(", ".join(projects))}{" · Sprint: " + html.escape(data["selected_sprint"]) if data.get("selected_sprint") else ""}</p>
  {failure_note}

  <div class="cards">
    <div class="card"><div class="value">{m.get("total_items", 0)}</div><div class="label">Work items</div></div>
    <div class="card"><div class="value">{m.get("active_item_count", 0)}</div><div class="label">Active items</div>{trend_badge(trends.get("active_items"))}</div>
    <div class="card"><div class="value">{fmt_num(m.get("active_story_points", 0))}</div><div class="label">Active story points</div>{trend_badge(trends.get("story_points"))}</div>
    <div class="card"><div class="value" style="color: var(--green)">{fmt_num(m.get("completed_story_points", 0))}</div><div class="label">Completed points</div>{trend_badge(trends.get("velocity"))}</div>
    <div class="card"><div class="value">{fmt_num(m.get("average_cycle_time_days"))}</div><div class="label">Cycle time avg (d)</div>{trend_badge(trends.get("cycle_time"))}</div>
    <div class="card"><div class="value">{fmt_num(velocity.get("average_velocity", 0))}</div><div class="label">Avg velocity</div></div>
    <div class="card"><div class="value" style="color: var(--red)">{raid.get("open_issues", 0)}</div><div class="label">Open issues</div></div>
    <div class="card"><div class="value" style="color: var(--orange)">{raid.get("open_risks", 0)}</div><div class="label">Open risks</div></div>
    <div class="card"><div class="value">{raid.get("high_priority", 0)}</div><div class="label">High priority RAID</div></div>
    <div class="card"><div class="value">{raid.get("avg_age_days", 0)}</div><div class="label">RAID avg age (d)</div></div>
  </div>

  <div class="grid2">
    <section>
      <h2>State distribution</h2>
      <div class="summary-stats">{state_legend}</div>
      <div class="chart-wrap"><canvas id="chartState"></canvas></div>
    </section>
    <section>
      <h2>Work item types</h2>
      <div class="chart-wrap"><canvas id="chartType"></canvas></div>
    </section>
  </div>

  <div class="grid2">
    <section>
      <h2>Velocity (last {len(vel_rows)} sprints)</h2>
      <div class="chart-wrap"><canvas id="chartVelocity"></canvas></div>
    </section>
    <section>
      <h2>Burndown{" — " + html.escape(data["burndown_sprint"]) if data.get("burndown_sprint") else ""}</h2>
      <div class="chart-wrap"><canvas id="chartBurndown"></canvas></div>
    </section>
  </div>

  <section>
    <h2>Team workload (user stories)</h2>
    <div class="table-wrap">
      <table id="tableWorkload">
        <thead><tr><th data-sort="name">Member</th><th data-sort="stories">Stories</th><th data-sort="completed">Completed</th><th data-sort="points">Story points</th><th data-sort="velocity">Velocity</th></tr></thead>
        <tbody>{workload_rows_html(data.get("team_workload") or [])}</tbody>
      </table>
    </div>
  </section>

  <section>
    <h2>Work items</h2>
    <div class="filter"><input type="text" id="filterItems" placeholder="Filter by title, type or person…" /></div>
    <div class="table-wrap">
      <table id="tableItems">
        <thead><tr><th>ID</th><th>Title</th><th>Type</th><th>State</th><th>Assigned to</th><th>Points</th></tr></thead>
        <tbody>{work_item_rows_html(data.get("work_item_rows") or [])}</tbody>
      </table>
    </div>
  </section>

  <div class="grid2">
    <section>
      <h2>RAID aging (open)</h2>
      <div class="chart-wrap"><canvas id="chartRaidAge"></canvas></div>
    </section>
    <section>
      <h2>RAID created vs resolved (weekly)</h2>
      <div class="chart-wrap"><canvas id="chartRaidTrend"></canvas></div>
    </section>
  </div>

  <div class="grid2">
    <section>
      <h2>Open RAID by assignee</h2>
      <div class="chart-wrap"><canvas id="chartRaidAssignee"></canvas></div>
    </section>
    <section>
      <h2>RAID by priority</h2>
      <div class="chart-wrap"><canvas id="chartRaidPriority"></canvas></div>
    </section>
  </div>

  <section>
    <h2>Watch list</h2>
    <div class="filter"><input type="text" id="filterRaid" placeholder="Filter by title, category or owner…" /></div>
    <div class="table-wrap">
      <table id="tableRaid">
        <thead><tr><th data-sort="id">ID</th><th data-sort="title">Title</th><th data-sort="category">Category</th><th data-sort="state">State</th><th data-sort="priority">Priority</th><th data-sort="assigned_to">Assigned to</th><th data-sort="age">Age (d)</th><th data-sort="created">Created</th></tr></thead>
        <tbody>{raid_rows_html(data.get("raid_rows") or [])}</tbody>
      </table>
    </div>
  </section>

  <section>
    <h2>Impacted work items (linked to an issue or risk)</h2>
    <div class="table-wrap">
      <table id="tableImpacted">
        <thead><tr><th data-sort="id">ID</th><th data-sort="title">Title</th><th data-sort="category">Linked</th><th data-sort="state">State</th><th data-sort="priority">Priority</th><th data-sort="assigned_to">Assigned to</th><th data-sort="age">Age (d)</th><th data-sort="created">Created</th></tr></thead>
        <tbody>{raid_rows_html(data.get("impacted_rows") or [])}</tbody>
      </table>
    </div>
  </section>

  <h1>Project reports</h1>
  {"".join(report_slide_html(r) for r in reports) or '<p class="muted">No projects selected.</p>'}

  <script>
    Chart.defaults.color = '#8b949e';
    Chart.defaults.borderColor = '#30363d';
    const STATE_COLORS = {json.dumps(STATE_COLORS)};

    new Chart(document.getElementById('chartState'), {{
      type: 'doughnut',
      data: {{ labels: {json.dumps([s["state"] for s in states])},
        datasets: [{{ data: {json.dumps([s["count"] for s in states])}, backgroundColor: {json.dumps([s["state"] for s in states])}.map(s => STATE_COLORS[s]), borderWidth: 1 }}] }},
      options: {{ responsive: true, maintainAspectRatio: false, plugins: {{ legend: {{ position: 'right' }} }} }}
    }});

    new Chart(document.getElementById('chartType'), {{
      type: 'bar',
      data: {{ labels: {json.dumps([t["type"] for t in types])}, datasets: [{{ label: 'Items', data: {json.dumps([t["count"] for t in types])}, backgroundColor: 'rgba(88,166,255,0.6)' }}] }},
      options: {{ indexAxis: 'y', responsive: true, maintainAspectRatio: false, plugins: {{ legend: {{ display: false }} }} }}
    }});

    new Chart(document.getElementById('chartVelocity'), {{
      type: 'bar',
      data: {{ labels: {json.dumps([v["sprint_name"] for v in vel_rows])},
        datasets: [
          {{ label: 'Completed points', data: {json.dumps([v["completed_points"] for v in vel_rows])}, backgroundColor: 'rgba(63,185,80,0.6)' }},
          {{ type: 'line', label: 'Average', data: {json.dumps([velocity.get("average_velocity", 0)] * len(vel_rows))}, borderColor: '#d29922', pointRadius: 0 }}
        ] }},
      options: {{ responsive: true, maintainAspectRatio: false }}
    }});

    new Chart(document.getElementById('chartBurndown'), {{
      type: 'line',
      data: {{ labels: {json.dumps([b["date"] for b in burndown])},
        datasets: [
          {{ label: 'Ideal', data: {json.dumps([b["ideal"] for b in burndown])}, borderColor: '#8b949e', borderDash: [6, 4], pointRadius: 0 }},
          {{ label: 'Remaining', data: {json.dumps([b["actual"] for b in burndown])}, borderColor: '#58a6ff', spanGaps: false }}
        ] }},
      options: {{ responsive: true, maintainAspectRatio: false }}
    }});

    new Chart(document.getElementById('chartRaidAge'), {{
      type: 'bar',
      data: {{ labels: {json.dumps([a["bucket"] for a in ages])}, datasets: [{{ label: 'Open', data: {json.dumps([a["count"] for a in ages])},
        backgroundColor: ['rgba(63,185,80,0.6)','rgba(88,166,255,0.6)','rgba(210,153,34,0.6)','rgba(248,81,73,0.7)'] }}] }},
      options: {{ responsive: true, maintainAspectRatio: false, plugins: {{ legend: {{ display: false }} }} }}
    }});

    new Chart(document.getElementById('chartRaidTrend'), {{
      type: 'line',
      data: {{ labels: {json.dumps([w["week"] for w in raid_trend])},
        datasets: [
          {{ label: 'Created', data: {json.dumps([w["created"] for w in raid_trend])}, borderColor: '#f85149' }},
          {{ label: 'Resolved', data: {json.dumps([w["resolved"] for w in raid_trend])}, borderColor: '#3fb950' }}
        ] }},
      options: {{ responsive: true, maintainAspectRatio: false }}
    }});

    new Chart(document.getElementById('chartRaidAssignee'), {{
      type: 'bar',
      data: {{ labels: {json.dumps([a["name"] for a in by_assignee])}, datasets: [{{ label: 'Open', data: {json.dumps([a["count"] for a in by_assignee])}, backgroundColor: 'rgba(210,153,34,0.6)' }}] }},
      options: {{ indexAxis: 'y', responsive: true, maintainAspectRatio: false, plugins: {{ legend: {{ display: false }} }} }}
    }});

    new Chart(document.getElementById('chartRaidPriority'), {{
      type: 'bar',
      data: {{ labels: {json.dumps([p["priority"] for p in priorities])}, datasets: [{{ label: 'Items', data: {json.dumps([p["count"] for p in priorities])}, backgroundColor: 'rgba(248,81,73,0.5)' }}] }},
      options: {{ responsive: true, maintainAspectRatio: false, plugins: {{ legend: {{ display: false }} }} }}
    }});

    function setupFilter(inputId, tableId) {{
      const input = document.getElementById(inputId);
      const table = document.getElementById(tableId);
      if (!input || !table) return;
      const tbody = table.querySelector('tbody');
      input.addEventListener('input', function() {{
        const q = this.value.trim().toLowerCase();
        tbody.querySelectorAll('tr').forEach(tr => {{
          if (tr.cells.length < 2) {{ tr.style.display = ''; return; }}
          const text = Array.from(tr.cells).map(c => c.textContent).join(' ').toLowerCase();
          tr.style.display = text.includes(q) ? '' : 'none';
        }});
      }});
    }}

    function setupSort(tableId) {{
      const table = document.getElementById(tableId);
      if (!table) return;
      table.querySelectorAll('thead th[data-sort]').forEach(th => {{
        th.addEventListener('click', () => {{
          const tbody = table.querySelector('tbody');
          const rows = Array.from(tbody.querySelectorAll('tr')).filter(r => r.style.display !== 'none' && r.cells.length > 1);
          const col = Array.from(table.querySelectorAll('thead th')).indexOf(th);
          const desc = th.getAttribute('aria-sort') === 'ascending';
          th.setAttribute('aria-sort', desc ? 'descending' : 'ascending');
          table.querySelectorAll('thead th').forEach(h => {{ if (h !== th) h.removeAttribute('aria-sort'); }});
          const num = (s) => {{ const n = parseFloat(s); return isNaN(n) ? (s||'').toString().toLowerCase() : n; }};
          rows.sort((a, b) => {{
            const va = num(a.cells[col]?.textContent?.trim());
            const vb = num(b.cells[col]?.textContent?.trim());
            const cmp = (typeof va === 'number' && typeof vb === 'number') ? va - vb : String(va).localeCompare(String(vb));
            return desc ? -cmp : cmp;
          }});
          rows.forEach(r => tbody.appendChild(r));
        }});
      }});
    }}

    setupFilter('filterItems', 'tableItems');
    setupFilter('filterRaid', 'tableRaid');
    setupSort('tableWorkload');
    setupSort('tableRaid');
    setupSort('tableImpacted');
  </script>
</body>
</html>"""
    return html_out


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    data = load_data(argv[0] if argv else None)
    out_path = argv[1] if len(argv) > 1 else os.path.join(os.path.dirname(os.path.abspath(__file__)), "ado_dashboard.html")
    with open(out_path, "w", encoding="utf-8") as f:
        f.write(render(data))
    print(f"Written: {out_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main() or 0)
