# powertracker/services/output_formatter.py

from __future__ import annotations

import csv
import logging
import sys
from pathlib import Path
from typing import Iterable, List, Optional, TextIO

from rich import box
from rich.console import Console
from rich.table import Table

from powertracker.errors import OutputError
from powertracker.models.report import UsageReport

LOG = logging.getLogger(__name__)


def _fmt(value: float) -> str:
    return f"{value:f}"


def _fmt_row(values: Iterable[float]) -> List[str]:
    return [_fmt(v) for v in values]


def emit_text(report: UsageReport, stream: Optional[TextIO] = None) -> None:
    """Print one average per line with a trailing comma.

    The list pastes straight into the custom usage pattern field of solar
    modelling tools such as garydoessolar.com's daily modelling utility.
    """
    out = stream or sys.stdout
    for value in report.averages:
        out.write(f"{_fmt(value)},\n")


def _table_width(headers: List[str], rows: List[List[str]]) -> int:
    widths = [len(h) for h in headers]
    for row in rows:
        for idx, cell in enumerate(row):
            widths[idx] = max(widths[idx], len(cell))
    # padding on both sides and one border per cell, plus the closing edge and one spare column
    return sum(w + 3 for w in widths) + 2


def emit_table(report: UsageReport, stream: Optional[TextIO] = None) -> None:
    rows = [_fmt_row(row) for row in report.rows]
    footer = _fmt_row(report.averages)

    table = Table(box=box.SQUARE, show_footer=True, highlight=False)
    for header, avg in zip(report.headers, footer):
        table.add_column(header, footer=avg, justify="right", no_wrap=True)
    for row in rows:
        table.add_row(*row)

    console = Console(
        file=stream or sys.stdout,
        width=_table_width(report.headers, rows + [footer]),
        highlight=False,
    )
    console.print(table)


def write_csv(report: UsageReport, path: str | Path) -> Path:
    """Write headers, one line per day and a final averages line. Overwrites ``path``."""
    target = Path(path).expanduser()
    try:
        fh = target.open("w", newline="", encoding="utf-8")
    except OSError as exc:
        raise OutputError(f"creating file: {exc}") from exc

    # buffered rows only reach the disk on close, so the close is covered too
    try:
        with fh:
            writer = csv.writer(fh)
            writer.writerow(report.headers)
            for row in report.rows:
                writer.writerow(_fmt_row(row))
            writer.writerow(_fmt_row(report.averages))
    except OSError as exc:
        raise OutputError(f"writing {target}: {exc}") from exc

    LOG.info("wrote %d day(s) of results to %s", report.days, target)
    return target


def render(
    report: UsageReport,
    output: str,
    csv_file: str | Path = "results.csv",
    stream: Optional[TextIO] = None,
) -> None:
    mode = (output or "").strip().lower()
    if mode == "text":
        emit_text(report, stream)
    elif mode == "csv":
        write_csv(report, csv_file)
    else:
        if mode and mode != "table":
            LOG.warning("unknown output format '%s'; falling back to table", output)
        emit_table(report, stream)
