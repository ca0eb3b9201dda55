#!/usr/bin/env python3
"""
utils/test_run.py — GroupLedger  ·  Test Runner
━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

Usage (run from the repository root):
  python -m groupledger.utils.test_run                 # full suite
  python -m groupledger.utils.test_run --unit          # unit tests only
  python -m groupledger.utils.test_run --integration   # integration tests only
  python -m groupledger.utils.test_run --coverage      # with coverage gate
  python -m groupledger.utils.test_run -x              # stop on first failure
  python -m groupledger.utils.test_run -k settle       # filter by keyword

Requires the test extra:  pip install -e ".[test]"
"""

from __future__ import annotations

import argparse
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path

import pytest
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.theme import Theme

THEME = Theme({
    "pass":   "bold bright_green",
    "fail":   "bold bright_red",
    "warn":   "bright_yellow",
    "dim":    "dim white",
    "muted":  "bright_black",
    "unit":   "cyan",
    "intg":   "magenta",
    "accent": "bright_cyan",
})

con = Console(theme=THEME, highlight=False)

_TESTS_DIR = Path(__file__).resolve().parent.parent / "tests"


# ═══════════════════════════════════════════════════════════════════════════
#  RESULTS
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class TResult:
    nodeid:   str
    outcome:  str      # passed | failed | skipped
    duration: float
    reason:   str = ""

    @property
    def tier(self) -> str:
        if "/unit/" in self.nodeid:
            return "unit"
        if "/integration/" in self.nodeid:
            return "integration"
        return "other"

    @property
    def module_stem(self) -> str:
        return Path(self.nodeid.split("::")[0]).stem

    @property
    def failed(self) -> bool:
        return self.outcome == "failed"


@dataclass
class Stats:
    results: list[TResult] = field(default_factory=list)
    elapsed: float = 0.0

    def count(self, outcome: str, tier: str | None = None) -> int:
        return sum(
            1 for r in self.results
            if r.outcome == outcome and (tier is None or r.tier == tier)
        )

    @property
    def ok(self) -> bool:
        return bool(self.results) and self.count("failed") == 0


class Collector:
    """pytest plugin that records outcomes and advances the progress bar."""

    def __init__(self, progress: Progress, task_id) -> None:
        self.results: list[TResult] = []
        self._progress = progress
        self._task = task_id

    def pytest_collection_finish(self, session):
        self._progress.update(self._task, total=len(session.items))

    def pytest_runtest_logreport(self, report):
        if report.when != "call" and not (report.when == "setup" and report.outcome != "passed"):
            return

        reason = ""
        if report.failed and report.longrepr:
            lines = [ln.strip() for ln in str(report.longrepr).splitlines() if ln.strip()]
            reason = lines[-1][:120] if lines else ""

        self.results.append(TResult(
            nodeid=report.nodeid,
            outcome=report.outcome,
            duration=report.duration,
            reason=reason,
        ))
        self._progress.advance(self._task)


# ═══════════════════════════════════════════════════════════════════════════
#  RENDERING
# ═══════════════════════════════════════════════════════════════════════════

# (rule, error it maps to, test modules that exercise it)
_RULES = [
    ("sum(shares) == total, exactly", "SHARE_SUM_MISMATCH 422",
     ("test_equal_split", "test_expenses")),
    ("Even split remainder to payer, else first participant", "-",
     ("test_equal_split", "test_expenses")),
    ("Joining by invite token twice is a no-op", "-",
     ("test_groups", "test_service_units")),
    ("A pending request resolves exactly once", "REQUEST_ALREADY_RESOLVED 409",
     ("test_join_requests", "test_join_request_units", "test_concurrent_accept")),
    ("Debts mirror credits, before and after settling", "-",
     ("test_balances",)),
    ("Only payer or creator may delete an expense", "FORBIDDEN 403",
     ("test_expenses", "test_service_units")),
    ("Failed notifications never fail the operation", "-",
     ("test_notifications_units", "test_balances", "test_expenses")),
]


def render_summary(st: Stats) -> None:
    tbl = Table(box=box.ROUNDED, border_style="muted", header_style="bold dim", expand=True)
    tbl.add_column("Tier", style="bold")
    tbl.add_column("Passed", justify="center")
    tbl.add_column("Failed", justify="center")
    tbl.add_column("Skipped", justify="center")

    for tier, style in (("unit", "unit"), ("integration", "intg")):
        failed = st.count("failed", tier)
        tbl.add_row(
            f"[{style}]{tier.capitalize()}[/]",
            f"[pass]{st.count('passed', tier)}[/]",
            f"[{'fail' if failed else 'muted'}]{failed}[/]",
            f"[warn]{st.count('skipped', tier)}[/]",
        )
    con.print(tbl)


def render_rules(st: Stats) -> None:
    ran = {r.module_stem for r in st.results}
    failed = {r.module_stem for r in st.results if r.failed}

    tbl = Table(title="[muted]Ledger rules[/]", title_justify="left",
                box=box.ROUNDED, border_style="muted", header_style="bold dim", expand=True)
    tbl.add_column("Rule", overflow="fold")
    tbl.add_column("Error", no_wrap=True)
    tbl.add_column("", justify="center", width=12)

    for rule, code, modules in _RULES:
        if any(m in failed for m in modules):
            status = "[fail]failing[/]"
        elif any(m in ran for m in modules):
            status = "[pass]covered[/]"
        else:
            status = "[warn]not run[/]"
        tbl.add_row(f"[dim]{rule}[/]", f"[accent]{code}[/]", status)
    con.print(tbl)


def render_failures(st: Stats) -> None:
    failures = [r for r in st.results if r.failed]
    if not failures:
        return

    con.rule(f"[fail] {len(failures)} failed [/]", style="red", align="left")
    for r in failures:
        con.print(f"  [fail]x[/] {escape(r.nodeid)}")
        if r.reason:
            con.print(f"    [dim]{escape(r.reason)}[/]")
    con.print()


def render_verdict(st: Stats, ok: bool) -> None:
    total = len(st.results)
    if ok:
        con.print(Panel(f"[pass]ALL {total} TESTS PASSED[/]  [dim]{st.elapsed:.2f}s[/]",
                        border_style="bright_green"))
    else:
        con.print(Panel(f"[fail]BUILD FAILED[/]  [dim]{st.count('failed')} of {total} failed, "
                        f"{st.elapsed:.2f}s[/]", border_style="bright_red"))


# ═══════════════════════════════════════════════════════════════════════════
#  MAIN
# ═══════════════════════════════════════════════════════════════════════════

def run(
        unit_only: bool = False,
        integration_only: bool = False,
        fail_fast: bool = False,
        with_coverage: bool = False,
        keyword: str = "",
        extra: list[str] | None = None,
) -> int:
    if unit_only:
        paths = [str(_TESTS_DIR / "unit")]
    elif integration_only:
        paths = [str(_TESTS_DIR / "integration")]
    else:
        paths = [str(_TESTS_DIR / "unit"), str(_TESTS_DIR / "integration")]

    pytest_args = [*paths, "--tb=short", "-q"]
    if fail_fast:
        pytest_args.append("-x")
    if keyword:
        pytest_args += ["-k", keyword]
    if with_coverage:
        pytest_args += [
            "--cov=groupledger.app.services",
            "--cov=groupledger.app.schemas",
            "--cov-fail-under=90",
            "--cov-report=term-missing",
        ]
    if extra:
        pytest_args += extra

    con.print("\n  [bold bright_white]G R O U P L E D G E R[/]  [dim]· test suite[/]\n")

    progress = Progress(
        SpinnerColumn("line", style="accent"),
        TextColumn("[dim]{task.description}[/]"),
        BarColumn(bar_width=32, style="muted", complete_style="accent"),
        MofNCompleteColumn(),
        console=con,
    )
    task_id = progress.add_task("running tests", total=None)
    collector = Collector(progress, task_id)

    t0 = time.perf_counter()
    with progress:
        exit_code = pytest.main(pytest_args, plugins=[collector])
    st = Stats(results=collector.results, elapsed=time.perf_counter() - t0)

    con.print()
    render_summary(st)
    render_rules(st)
    render_failures(st)

    ok = st.ok and exit_code == 0
    if with_coverage and exit_code != 0 and st.count("failed") == 0:
        con.print("  [warn]Coverage gate failed[/] [dim](--cov-fail-under=90)[/]\n")
    render_verdict(st, ok)
    return 0 if ok else 1


def _cli() -> None:
    ap = argparse.ArgumentParser(
        prog="python -m groupledger.utils.test_run",
        description="GroupLedger test runner",
    )
    ap.add_argument("--unit", action="store_true", help="Unit tests only")
    ap.add_argument("--integration", action="store_true", help="Integration tests only")
    ap.add_argument("--coverage", action="store_true", help="Coverage gate on services and schemas")
    ap.add_argument("-x", "--fail-fast", action="store_true", help="Stop after first failure")
    ap.add_argument("-k", metavar="EXPR", default="", help="Passed to pytest -k")
    args, remainder = ap.parse_known_args()

    if args.unit and args.integration:
        con.print("[warn]--unit and --integration are mutually exclusive; running full suite.[/]\n")
        args.unit = args.integration = False

    sys.exit(run(
        unit_only=args.unit,
        integration_only=args.integration,
        fail_fast=args.fail_fast,
        with_coverage=args.coverage,
        keyword=args.k,
        extra=remainder,
    ))


if __name__ == "__main__":
    _cli()
