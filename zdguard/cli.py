#!/usr/bin/env python3
"""zdguard CLI — dry-run migrations and report operations that would cause downtime."""
import json
import logging
from pathlib import Path
from typing import Dict, List

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from zdguard import __version__
from zdguard.config import SAFETY_ASSURED_ENV, SCHEMA_LOAD_ENV, GuardConfig
from zdguard.errors import MigrationLoadError
from zdguard.loader import MigrationInfo, load_migration, load_migrations
from zdguard.migration import DOWN, UP, DryRunBackend, MigrationRunner, RunReport
from zdguard.rules import RULES

app = typer.Typer(
    name="zdguard",
    help="\U0001f6e1\ufe0f  zdguard \u2014 Block migrations that lock tables during a rolling deploy",
)
console = Console(stderr=True)
out = Console()

OUTCOME_COLORS = {"blocked": "red bold", "allowed": "green", "exempt": "cyan"}


def _setup_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(message)s", datefmt="[%X]",
                            handlers=[RichHandler(console=console, show_path=False)])


def _render_table(report: RunReport, filepath: str) -> None:
    if report.ok:
        out.print(f"\u2705 [green]{filepath}[/] \u2014 no issues ({len(report.observations)} operations)")
        return
    tbl = Table(title=f"\U0001f6a8 {filepath}", show_lines=True)
    tbl.add_column("Rule", width=8)
    tbl.add_column("Line", width=6)
    tbl.add_column("Operation", min_width=24)
    tbl.add_column("Outcome", width=9)
    tbl.add_column("Hazard", min_width=30)
    for o in report.violations:
        line = str(o.line) if o.line is not None else "?"
        outcome = o.verdict.outcome.value
        tbl.add_row(o.verdict.rule_id, line, o.operation.describe(),
                    f"[{OUTCOME_COLORS[outcome]}]{outcome}[/]", o.verdict.summary)
    out.print(tbl)
    for o in report.violations:
        out.print(f"[bold]{o.verdict.rule_id}[/] {filepath}:{o.line or '?'}\n", highlight=False)
        out.print(o.verdict.message, markup=False, highlight=False)
        out.print()


def _to_json(reports: Dict[str, RunReport]) -> dict:
    return {fp: {
        "migration": r.name,
        "direction": r.direction,
        "ok": r.ok,
        "operations": [{"operation": o.operation.to_dict(), "outcome": o.verdict.outcome.value,
                        "rule_id": o.verdict.rule_id or None, "line": o.line,
                        "message": o.verdict.message or None} for o in r.observations],
    } for fp, r in reports.items()}


def _to_sarif(reports: Dict[str, RunReport]) -> dict:
    results = []
    for fp, r in reports.items():
        for o in r.violations:
            results.append({"ruleId": o.verdict.rule_id, "level": "error",
                "message": {"text": o.verdict.message},
                "locations": [{"physicalLocation": {
                    "artifactLocation": {"uri": fp},
                    "region": {"startLine": o.line or 1}}}]})
    rules = [{"id": r.rule_id, "name": r.name, "shortDescription": {"text": r.summary}}
             for r in RULES]
    return {"version": "2.1.0", "runs": [{"tool": {"driver": {
        "name": "zdguard", "version": __version__, "rules": rules}}, "results": results}]}


def _collect_migrations(paths: List[str]) -> List[MigrationInfo]:
    found: List[MigrationInfo] = []
    for p in paths:
        path = Path(p)
        try:
            if path.is_dir():
                found.extend(load_migrations(path))
            elif path.is_file():
                info = load_migration(path)
                if info is None:
                    console.print(f"[yellow]Warning: no Migration subclass in {p}[/]")
                else:
                    found.append(info)
            else:
                console.print(f"[red]Error: {p} not found[/]")
                raise typer.Exit(1)
        except MigrationLoadError as err:
            console.print(f"[red]Error: {err}[/]")
            raise typer.Exit(1)
    return found


@app.command()
def check(
    paths: List[str] = typer.Argument(..., help="Migration files or directories"),
    down: bool = typer.Option(False, "--down", help="Run the down (rollback) direction"),
    report_all: bool = typer.Option(False, "--all", "-a", help="Report every blocked operation, not just the first"),
    safety_assured: bool = typer.Option(False, "--safety-assured",
                                        help=f"Skip every check (or set {SAFETY_ASSURED_ENV}=1)"),
    schema_load: bool = typer.Option(False, "--schema-load",
                                     help=f"Treat the run as a full schema load (or set {SCHEMA_LOAD_ENV}=1)"),
    fmt: str = typer.Option("text", "--format", "-f", help="Output: text, json, sarif"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every dispatch"),
) -> None:
    """Dry-run migrations and flag operations that are unsafe during a rolling deploy."""
    _setup_logging(verbose)
    migrations = _collect_migrations(paths)
    if not migrations:
        console.print("[yellow]No migrations found[/]")
        raise typer.Exit(0)

    env = GuardConfig.from_env()
    config = GuardConfig(safety_assured=safety_assured or env.safety_assured,
                         schema_load=schema_load or env.schema_load,
                         fail_fast=not report_all)
    direction = DOWN if down else UP
    ordered = list(reversed(migrations)) if down else migrations
    reports: Dict[str, RunReport] = {}
    for info in ordered:
        runner = MigrationRunner(config, DryRunBackend())
        reports[str(info.path)] = runner.run(info.migration_class, direction, name=info.name)

    if fmt == "json":
        print(json.dumps(_to_json(reports), indent=2, default=repr))
    elif fmt == "sarif":
        print(json.dumps(_to_sarif(reports), indent=2))
    else:
        for fp, r in reports.items():
            _render_table(r, fp)
    failed = any(not r.ok for r in reports.values())
    raise typer.Exit(1 if failed else 0)


@app.command("rules")
def list_rules() -> None:
    """List the safety rules and the operations they apply to."""
    tbl = Table(title="zdguard rules")
    tbl.add_column("Rule", width=8)
    tbl.add_column("Name", width=20)
    tbl.add_column("Applies to", min_width=20)
    tbl.add_column("Summary", min_width=30)
    for r in RULES:
        kinds = ", ".join(sorted(k.value for k in r.kinds))
        tbl.add_row(r.rule_id, r.name, kinds, r.summary)
    out.print(tbl)


if __name__ == "__main__":
    app()
