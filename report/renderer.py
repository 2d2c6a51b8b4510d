"""
Report renderer: HTML/Markdown/CSV/JSON/text views of an AnalysisResult.
HTML and Markdown are produced from the Jinja2 templates in report/templates.
"""

from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
import os
import json
import io
import csv

from jinja2 import Environment, FileSystemLoader, select_autoescape

from scoring.stats import clean_test_name

TEMPLATE_DIR = os.path.join(os.path.dirname(__file__), 'templates')
DATE_FORMAT = '%m-%d-%y %H:%M:%S UTC'

# file extension per output format
EXTENSIONS = {'html': 'html', 'md': 'md', 'csv': 'csv', 'json': 'json', 'text': 'txt'}


def format_date(value: Optional[datetime]) -> str:
    if value is None:
        return ''
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(DATE_FORMAT)


def markdown_cell(value) -> str:
    """Escape pipes so a value stays inside its table cell."""
    return str(value).replace('|', '\\|')


def _environment() -> Environment:
    env = Environment(loader=FileSystemLoader(TEMPLATE_DIR), autoescape=select_autoescape(['html', 'xml', 'html.j2']), trim_blocks=True, lstrip_blocks=True)
    env.filters['report_date'] = format_date
    env.filters['md_cell'] = markdown_cell
    return env


def build_rows(analysis) -> List[Dict[str, Any]]:
    """Table rows in report order (most failures first). Names are cleaned for display only."""
    rows = []
    for name, bucket in analysis.stats.ranked():
        rows.append({
            'name': clean_test_name(name),
            'raw_name': name,
            'failed': bucket.fail_count,
            'passed': bucket.pass_count,
            'links': list(bucket.failing_build_links),
        })
    return rows


def build_context(analysis, generated_at: Optional[str] = None) -> Dict[str, Any]:
    return {
        'project': analysis.project.name,
        'branch': analysis.branch,
        'start': analysis.start,
        'end': analysis.end,
        'build_count': len(analysis.builds),
        'rows': build_rows(analysis),
        'partial': analysis.partial,
        'failures': [f.to_dict() for f in analysis.failures],
        'generated_at': generated_at or datetime.now(timezone.utc).isoformat(),
    }


def render_html(analysis, generated_at: Optional[str] = None) -> str:
    return _environment().get_template('report.html.j2').render(**build_context(analysis, generated_at))


def render_markdown(analysis, generated_at: Optional[str] = None) -> str:
    return _environment().get_template('report.md.j2').render(**build_context(analysis, generated_at))


def render_csv(analysis) -> str:
    """One row per test; failing links are space separated in a single column.

    Partial runs start with a '# PARTIAL' row followed by one '# skipped' row per failed fetch.
    """
    output = io.StringIO()
    writer = csv.writer(output)
    if analysis.partial:
        writer.writerow(['# PARTIAL', f"{len(analysis.failures)} build(s)/job(s) could not be fetched"])
        for f in analysis.failures:
            writer.writerow(['# skipped', f.build_version, f.job_id or '', f.error])
    writer.writerow(['name', 'raw_name', 'fail', 'pass', 'fail_links'])
    for row in build_rows(analysis):
        writer.writerow([row['name'], row['raw_name'], row['failed'], row['passed'], ' '.join(row['links'])])
    return output.getvalue()


def render_json(analysis, generated_at: Optional[str] = None) -> str:
    """Machine-readable export keyed by raw test name, with run metadata."""
    payload = {
        'project': analysis.project.name,
        'branch': analysis.branch,
        'start': analysis.start.isoformat(),
        'end': analysis.end.isoformat(),
        'generated_at': generated_at or datetime.now(timezone.utc).isoformat(),
        'partial': analysis.partial,
        'failures': [f.to_dict() for f in analysis.failures],
        'builds': [b.version for b in analysis.builds],
        'tests': analysis.stats.to_dict(),
    }
    return json.dumps(payload, indent=2)


def render_text(analysis) -> str:
    lines = [
        f"{analysis.project.name} {analysis.branch}",
        f"Start: {format_date(analysis.start)}",
        f"End:   {format_date(analysis.end)}",
    ]
    if analysis.partial:
        lines.append(f"PARTIAL: {len(analysis.failures)} build(s)/job(s) could not be fetched")
    for row in build_rows(analysis):
        lines.append(f"{row['failed']:>5} fail {row['passed']:>5} pass  {row['name']}")
    return "\n".join(lines)


def render(analysis, fmt: str = 'html', generated_at: Optional[str] = None) -> str:
    """Render an AnalysisResult in the requested format (html, md, csv, json, text)."""
    fmt_l = (fmt or 'html').lower()
    if fmt_l in ('md', 'markdown'):
        return render_markdown(analysis, generated_at)
    if fmt_l == 'csv':
        return render_csv(analysis)
    if fmt_l in ('html', 'htm'):
        return render_html(analysis, generated_at)
    if fmt_l == 'json':
        return render_json(analysis, generated_at)
    if fmt_l in ('text', 'txt'):
        return render_text(analysis)
    raise ValueError(f"Unknown output format: {fmt}")
