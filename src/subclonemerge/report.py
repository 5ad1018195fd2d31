from __future__ import annotations

import datetime as _dt
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from jinja2 import Template

logger = logging.getLogger(__name__)


_STYLE = """
    body { font-family: Arial, Helvetica, sans-serif; margin: 24px; }
    code, pre { background: #f6f8fa; padding: 2px 4px; border-radius: 4px; }
    h1, h2, h3 { margin-top: 1.2em; }
    table { border-collapse: collapse; margin-top: 0.6em; }
    th, td { border: 1px solid #ddd; padding: 8px; }
    th { background: #f2f2f2; text-align: left; }
    .card { border: 1px solid #ddd; border-radius: 8px; padding: 12px; }
    .small { color: #666; font-size: 0.9em; }
    .ok { color: #1a7f37; font-weight: bold; }
    .bad { color: #cf222e; font-weight: bold; }
    img { max-width: 100%; height: auto; border: 1px solid #eee; border-radius: 6px; }
"""


_COMPARE_TEMPLATE = Template(
    """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>SubcloneMerge Report</title>
  <style>{{ style }}</style>
</head>
<body>

<h1>SubcloneMerge Report</h1>
<p class="small">Generated: {{ generated_at }}</p>

<h2>Verdict</h2>
<div class="card">
  <table>
    <tr><th>Reference tree (p)</th><td><code>{{ p_ref }}</code></td></tr>
    <tr><th>Derived tree (q)</th><td><code>{{ q_ref }}</code></td></tr>
    <tr><th>Boundary resolution</th><td>{{ result.resolution }}</td></tr>
    <tr><th>Novel events allowed</th><td>{{ "yes" if result.allow_novel_events else "no" }}</td></tr>
    <tr><th>Result</th><td>
      {% if result.compatible %}<span class="ok">compatible</span>{% else %}<span class="bad">incompatible</span>{% endif %}
    </td></tr>
    <tr><th>Nodes in q</th><td>{{ result.nodes }}</td></tr>
    <tr><th>Incompatible nodes</th><td>{{ result.incompatible_nodes }}</td></tr>
    <tr><th>Ambiguous placements</th><td>{{ result.ambiguous_nodes }}</td></tr>
  </table>
</div>

<h2>Placements</h2>
<table>
  <tr><th>Subclone (q)</th><th>Events</th><th>Placeable</th><th>Placed at (p)</th>
      <th>Feasible children</th><th>Ambiguous</th><th>Leftover</th></tr>
  {% for row in result.placements %}
  <tr>
    <td><code>{{ row.node }}</code></td>
    <td>{{ row.implied_events }}</td>
    <td>{% if row.placeable %}yes{% else %}<span class="bad">no</span>{% endif %}</td>
    <td>{{ row.placed_at or "-" }}</td>
    <td>{{ row.child_count }}</td>
    <td>{{ "yes" if row.ambiguous else "" }}</td>
    <td>{{ row.leftover | join(", ") }}</td>
  </tr>
  {% endfor %}
</table>

{% if plots %}
<h2>Plots</h2>
<div class="card">
  <h3>Unexplained events</h3>
  <img src="{{ plots.leftover_counts }}" alt="leftover events per subclone">
</div>
{% endif %}

<h2>Interpretation notes</h2>
<ul>
  <li>A subclone of q is placed at the deepest node of p whose path events it all carries.</li>
  <li>Leftover events are those of the q subclone not found on that path.</li>
  <li>When several branches of p fit, the one leaving fewest leftover events is chosen; such nodes are flagged ambiguous.</li>
</ul>

<hr>
<p class="small">SubcloneMerge {{ version }}</p>
</body>
</html>"""
)


_BATCH_TEMPLATE = Template(
    """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>SubcloneMerge Batch Report</title>
  <style>{{ style }}</style>
</head>
<body>

<h1>SubcloneMerge Batch Report</h1>
<p class="small">Generated: {{ generated_at }}</p>

<h2>Inputs</h2>
<table>
  <tr><th>Reference trees (p)</th><td><code>{{ p_ref }}</code></td><td>{{ summary.p_trees }} tree(s)</td></tr>
  <tr><th>Derived trees (q)</th><td><code>{{ q_ref }}</code></td><td>{{ summary.q_trees }} tree(s)</td></tr>
</table>

<h2>Summary</h2>
<table>
  <tr><th>Pairs compared</th><td>{{ summary.pairs_total }}</td></tr>
  <tr><th>Compatible pairs</th><td>{{ summary.pairs_compatible }}</td></tr>
  <tr><th>p trees with a compatible q</th><td>{{ summary.p_trees_with_match }}</td></tr>
  <tr><th>q trees with a compatible p</th><td>{{ summary.q_trees_with_match }}</td></tr>
</table>

<h2>Compatible pairs</h2>
{% if pairs %}
<table>
  <tr><th>p tree</th><th>q tree</th></tr>
  {% for p_id, q_id in pairs %}
  <tr><td>{{ p_id }}</td><td>{{ q_id }}</td></tr>
  {% endfor %}
</table>
{% else %}
<p>No compatible pairs.</p>
{% endif %}

{% if plots %}
<h2>Compatibility matrix</h2>
<img src="{{ plots.matrix }}" alt="compatibility matrix">
{% endif %}

<hr>
<p class="small">SubcloneMerge {{ version }}</p>
</body>
</html>"""
)


def _generated_at() -> str:
    return _dt.datetime.now().isoformat(timespec="seconds")


def render_report(
    *,
    outdir: str | Path,
    version: str,
    result: Dict[str, Any],
    p_ref: str,
    q_ref: str,
    plots: Optional[Dict[str, str]] = None,
) -> Path:
    """Write ``report.html`` for one comparison; ``result`` is ``MergeResult.to_dict()``."""
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    html = _COMPARE_TEMPLATE.render(
        style=_STYLE,
        generated_at=_generated_at(),
        version=version,
        result=result,
        p_ref=p_ref,
        q_ref=q_ref,
        plots=plots or {},
    )

    out_path = outdir / "report.html"
    out_path.write_text(html, encoding="utf-8")
    return out_path


def render_batch_report(
    *,
    outdir: str | Path,
    version: str,
    summary: Dict[str, Any],
    pairs: List[tuple],
    p_ref: str,
    q_ref: str,
    plots: Optional[Dict[str, str]] = None,
) -> Path:
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    html = _BATCH_TEMPLATE.render(
        style=_STYLE,
        generated_at=_generated_at(),
        version=version,
        summary=summary,
        pairs=pairs,
        p_ref=p_ref,
        q_ref=q_ref,
        plots=plots or {},
    )

    out_path = outdir / "report.html"
    out_path.write_text(html, encoding="utf-8")
    return out_path
