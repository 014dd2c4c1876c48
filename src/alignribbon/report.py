from __future__ import annotations

import datetime as _dt
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from jinja2 import Template

from .models import Interval, WholeReference

logger = logging.getLogger(__name__)


_REPORT_TEMPLATE = Template(
    """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>AlignRibbon Report</title>
  <style>
    body { font-family: Arial, Helvetica, sans-serif; margin: 24px; }
    code, pre { background: #f6f8fa; padding: 2px 4px; border-radius: 4px; }
    h1, h2, h3 { margin-top: 1.2em; }
    table { border-collapse: collapse; margin-top: 0.6em; }
    th, td { border: 1px solid #ddd; padding: 8px; }
    th { background: #f2f2f2; text-align: left; }
    .grid { display: grid; grid-template-columns: 1fr 1fr; gap: 16px; }
    .card { border: 1px solid #ddd; border-radius: 8px; padding: 12px; }
    .small { color: #666; font-size: 0.9em; }
    .filtered { color: #999; }
    img { max-width: 100%; height: auto; border: 1px solid #eee; border-radius: 6px; }
  </style>
</head>
<body>

<h1>AlignRibbon Report</h1>
<p class="small">Generated: {{ generated_at }}</p>

<h2>Run summary</h2>
<div class="grid">
  <div class="card">
    <h3>Inputs</h3>
    <table>
      {% for label, path in inputs %}
      <tr><th>{{ label }}</th><td><code>{{ path }}</code></td></tr>
      {% endfor %}
      {% if locus %}<tr><th>Locus</th><td><code>{{ locus }}</code></td></tr>{% endif %}
    </table>
  </div>
  <div class="card">
    <h3>Settings</h3>
    <table>
      {% for key, value in settings.items() %}
      <tr><th>{{ key }}</th><td>{{ value }}</td></tr>
      {% endfor %}
    </table>
  </div>
</div>

<h2>Reads</h2>
<table>
  <tr><th>Records read</th><td>{{ counts.records_total }}</td></tr>
  <tr><th>Skipped (no CIGAR)</th><td>{{ counts.records_skipped_empty_cigar }}</td></tr>
  <tr><th>Dropped (malformed CIGAR)</th><td>{{ counts.records_malformed_cigar }}</td></tr>
  <tr><th>SA entries dropped</th><td>{{ counts.sa_entries_dropped }}</td></tr>
  <tr><th>Reads</th><td>{{ summary.reads }}</td></tr>
  <tr><th>Paired-end</th><td>{{ summary.paired_end }}</td></tr>
  {% if summary.paired_end %}
  <tr><th>Pairs missing a mate</th><td>{{ counts.pairs_missing_mate }}</td></tr>
  {% else %}
  <tr><th>Duplicate records merged</th><td>{{ counts.duplicates_merged }}</td></tr>
  {% endif %}
  <tr><th>Mapping quality range</th><td>{{ summary.min_mapping_quality }} - {{ summary.max_mapping_quality }}</td></tr>
  <tr><th>Max alignments per read</th><td>{{ summary.max_alignments_per_read }}</td></tr>
  <tr><th>Max read length</th><td>{{ summary.max_read_length }}</td></tr>
  <tr><th>Max indel size</th><td>{{ summary.max_indel_size }}</td></tr>
</table>

<h2>Consolidated intervals</h2>
<p class="small">Virtual axis length: {{ summary.virtual_axis_length }} bp</p>
<table>
  <tr><th>Chrom</th><th>Start</th><th>End</th><th>Size</th><th>Offset</th><th>Alignments</th></tr>
  {% for iv in intervals %}
  <tr{% if not iv.retained %} class="filtered"{% endif %}>
    <td>{{ iv.chrom }}</td><td>{{ iv.start }}</td><td>{{ iv.end }}</td>
    <td>{{ iv.size }}</td><td>{{ iv.cumulative_offset }}</td><td>{{ iv.alignment_count }}</td>
  </tr>
  {% endfor %}
</table>

{% if whole_refs %}
<h2>Whole references</h2>
<table>
  <tr><th>Chrom</th><th>Size</th><th>Offset</th><th>Filtered offset</th></tr>
  {% for ref in whole_refs %}
  <tr><td>{{ ref.chrom }}</td><td>{{ ref.size }}</td><td>{{ ref.cumulative_offset }}</td><td>{{ ref.filtered_offset }}</td></tr>
  {% endfor %}
</table>
{% endif %}

<h2>Plots</h2>
<div class="grid">
  <div class="card">
    <h3>Alignments per interval</h3>
    <img src="{{ plots.interval_counts }}" alt="interval alignment counts">
  </div>
  <div class="card">
    <h3>Read lengths</h3>
    <img src="{{ plots.read_length_hist }}" alt="read length histogram">
  </div>
</div>
<div class="grid" style="margin-top:16px;">
  <div class="card">
    <h3>Alignments per read</h3>
    <img src="{{ plots.alignments_per_read }}" alt="alignments per read">
  </div>
</div>

<h2>Outputs</h2>
<ul>
  <li><code>reads.json</code> (decoded read records)</li>
  <li><code>intervals.json</code> (virtual axis)</li>
  <li><code>summary.json</code> (machine-readable summary)</li>
</ul>

<hr>
<p class="small">AlignRibbon {{ version }}</p>
</body>
</html>"""
)


def render_report(
    *,
    outdir: str | Path,
    version: str,
    summary: Dict[str, Any],
    intervals: Sequence[Interval],
    whole_refs: Sequence[WholeReference],
    settings: Dict[str, Any],
    inputs: List[tuple],
    plots: Dict[str, str],
    locus: Optional[str] = None,
) -> Path:
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    html = _REPORT_TEMPLATE.render(
        generated_at=_dt.datetime.now().isoformat(timespec="seconds"),
        version=version,
        summary=summary,
        counts=summary.get("counts", {}),
        intervals=list(intervals),
        whole_refs=list(whole_refs),
        settings=settings,
        inputs=inputs,
        plots=plots,
        locus=locus,
    )

    out_path = outdir / "report.html"
    out_path.write_text(html, encoding="utf-8")
    logger.debug("Report rendered with %d intervals", len(intervals))
    return out_path
